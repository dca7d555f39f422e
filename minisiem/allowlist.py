# minisiem/allowlist.py
import ipaddress
import logging
from typing import FrozenSet, Iterable, List, Union

logger = logging.getLogger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class IpAllowList:
    """
    Addresses that never raise a brute force alert.

    Entries are single addresses or CIDR networks. Note the direction of
    ``is_allowed``: it answers "may this IP be alerted on", so it is True for
    every address NOT in the exempt set.
    """

    def __init__(self, entries: Iterable[str] = ()) -> None:
        self._addresses: set = set()
        self._networks: List[Network] = []

        for entry in entries:
            entry = str(entry).strip()
            if not entry or entry.startswith("#"):
                continue
            self._add(entry)

    def _add(self, entry: str) -> None:
        try:
            if "/" in entry:
                self._networks.append(ipaddress.ip_network(entry, strict=False))
            else:
                self._addresses.add(ipaddress.ip_address(entry))
        except ValueError:
            # keep hostnames and odd values as exact string matches
            logger.warning("Allow-list entry is not an IP or network: %s", entry)
            self._addresses.add(entry)

    @property
    def entries(self) -> FrozenSet[str]:
        return frozenset(
            [str(a) for a in self._addresses] + [str(n) for n in self._networks]
        )

    def is_exempt(self, ip: str) -> bool:
        ip = ip.strip()
        if ip in self._addresses:
            return True
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return False
        if addr in self._addresses:
            return True
        return any(addr.version == net.version and addr in net for net in self._networks)

    def is_allowed(self, ip: str) -> bool:
        """True when the IP is a candidate for alerting."""
        return not self.is_exempt(ip)

    def __len__(self) -> int:
        return len(self._addresses) + len(self._networks)

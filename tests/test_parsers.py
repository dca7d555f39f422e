# tests/test_parsers.py
from minisiem.parsers import parse_auth_log, parse_event, parse_web_log


def test_failed_login_parsing():
    line = (
        "Jan  1 10:15:32 server1 sshd[12345]: Failed password for "
        "invalid user admin from 192.168.1.10 port 54321 ssh2"
    )
    ev = parse_auth_log(line)
    assert ev is not None
    assert ev.level == "ERROR"
    assert ev.source == "auth"
    assert ev.ip == "192.168.1.10"
    assert "login" in ev.message.lower()
    assert "admin" in ev.message


def test_accepted_login_is_info():
    line = "Jan  1 10:16:00 server1 sshd[12346]: Accepted password for bob from 10.1.2.3 port 22 ssh2"
    ev = parse_auth_log(line)
    assert ev.level == "INFO"
    assert ev.ip == "10.1.2.3"


def test_comments_and_blank_lines_are_skipped():
    assert parse_auth_log("# sample log") is None
    assert parse_auth_log("   ") is None
    assert parse_event("web", "") is None


def test_web_log_levels_follow_status():
    ok = parse_web_log('203.0.113.9 - - [01/Jan/2024:10:00:00 +0000] "GET / HTTP/1.1" 200 512')
    missing = parse_web_log('203.0.113.9 - - [01/Jan/2024:10:00:00 +0000] "GET /x HTTP/1.1" 404 0')
    broken = parse_web_log('203.0.113.9 - - [01/Jan/2024:10:00:00 +0000] "GET /y HTTP/1.1" 502 0')

    assert ok.level == "INFO"
    assert missing.level == "WARN"
    assert broken.level == "ERROR"
    assert ok.ip == "203.0.113.9"


def test_rejected_web_login_counts_as_failed_login():
    ev = parse_web_log('198.51.100.7 - - [01/Jan/2024:10:00:00 +0000] "POST /login HTTP/1.1" 401 0')
    assert ev.level == "ERROR"
    assert "login" in ev.message.lower()


def test_unknown_source_keeps_raw_line():
    ev = parse_event("kernel", "something happened")
    assert ev.source == "kernel"
    assert ev.message == "something happened"
    assert ev.ip is None

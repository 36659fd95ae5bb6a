from aiohttp.test_utils import make_mocked_request

from hitcounter.context import HitCounterContext


def _context(path="/", headers=None):
    all_headers = {"Host": "localhost"}
    all_headers.update(headers or {})
    return HitCounterContext(make_mocked_request("GET", path, headers=all_headers))


def test_extra_log_fields():
    extra = _context().extra_log()
    assert extra["method"] == "GET"
    assert extra["host"] == "localhost"
    assert len(extra) == 6


def test_extra_log_uri_keeps_query():
    extra = _context("/api/count?url=github.com").extra_log()
    assert extra["uri"] == "/api/count?url=github.com"


def test_extra_log_headers():
    extra = _context(headers={"Referer": "http://example.com/", "User-Agent": "agent"}).extra_log()
    assert extra["referer"] == "http://example.com/"
    assert extra["user-agent"] == "agent"


def test_extra_log_ip_from_forwarded_header():
    ctx = _context(headers={"X-Forwarded-For": "127.0.0.1, 10.0.0.1"})
    assert ctx.extra_log()["ip"] == "127.0.0.1"
    assert ctx.real_ip == "127.0.0.1"


def test_value_context():
    ctx = _context()
    ctx.with_value("allan", "hi")
    assert ctx.value("allan") == "hi"


def test_with_context_keeps_earlier_values():
    ctx = _context()
    ctx.with_value("allan", "hi")
    ctx.with_value("test", "testhi")
    assert ctx.value("allan") == "hi"
    assert ctx.value("test") == "testhi"


def test_missing_value_is_none():
    assert _context().value("absent") is None
import base64
import json
import logging

import pytest
from aiohttp import test_utils, web

from hitcounter.api import CONTEXT_KEY
from hitcounter.app import (
    DEBUG_KEY,
    LOGGER_KEY,
    add_middleware,
    add_route,
    count_params_middleware,
    create_app,
    main,
)
from hitcounter.handler import create_handler
from hitcounter.settings import Settings
from hitcounter.util import EmptyParamsError


@pytest.fixture
def handler(tmp_path):
    view = tmp_path / "view"
    view.mkdir()
    (view / "index.html").write_text("{% for rank in ranks %}{{ rank }}\n{% endfor %}")
    icons = tmp_path / "icons"
    icons.mkdir()
    (icons / "github.svg").write_text(
        '<svg xmlns="http://www.w3.org/2000/svg"><path d="M0 0"/></svg>'
    )
    return create_handler("localhost:6379", root=tmp_path, phase="", icons_dir=icons)


async def _ok(request):
    return web.Response(text="ok")


def test_add_middleware_rejects_missing_app():
    with pytest.raises(EmptyParamsError):
        add_middleware(None)


def test_add_middleware_debug_and_logger():
    app = web.Application()
    add_middleware(app, debug=False)
    assert app[DEBUG_KEY] is False

    logger = logging.getLogger("hitcounter-test")
    add_middleware(app, logger=logger)
    assert app[DEBUG_KEY] is True
    assert app[LOGGER_KEY] is logger


def test_add_middleware_does_not_stack():
    app = web.Application()
    add_middleware(app)
    first = len(app.middlewares)
    add_middleware(app, debug=False)
    assert first > 0
    assert len(app.middlewares) == first


def test_add_middleware_without_logger_leaves_it_unset():
    app = web.Application()
    add_middleware(app, debug=True, logger=None)
    assert LOGGER_KEY not in app


def test_add_route_rejects_missing(handler):
    with pytest.raises(EmptyParamsError):
        add_route(None, handler)
    with pytest.raises(EmptyParamsError):
        add_route(web.Application(), None)


def test_add_route_registers_endpoints(handler):
    app = web.Application()
    add_route(app, handler)
    paths = {resource.canonical for resource in app.router.resources()}
    expected = {
        "/",
        "/hits.wasm",
        "/ws",
        "/icon/all.json",
        "/icon/{icon}",
        "/healthcheck",
        "/api/count/keep/badge.svg",
        "/api/count/incr/badge.svg",
        "/api/count/graph/dailyhits.svg",
    }
    assert expected <= paths


@pytest.mark.asyncio
async def test_count_params_sets_values():
    request = test_utils.make_mocked_request(
        "GET", "/?url=github.com", headers={"X-Forwarded-For": "127.0.0.1"}
    )
    response = await count_params_middleware(request, _ok)
    assert response.text == "ok"
    ctx = request[CONTEXT_KEY]
    assert ctx.value("host") == "github.com"
    assert ctx.value("path") == ""
    assert ctx.value("title") == ""
    assert ctx.value("edge_flat") is False


@pytest.mark.asyncio
async def test_count_params_reads_options():
    request = test_utils.make_mocked_request(
        "GET",
        "/?url=https://github.com/a/b&edge_flat=true&title=visits&icon=github.svg",
    )
    await count_params_middleware(request, _ok)
    ctx = request[CONTEXT_KEY]
    assert ctx.value("path") == "/a/b"
    assert ctx.value("edge_flat") is True
    assert ctx.value("title") == "visits"
    assert ctx.value("icon") == "github.svg"


@pytest.mark.asyncio
async def test_count_params_invalid_bool_is_false():
    request = test_utils.make_mocked_request("GET", "/?url=github.com&edge_flat=maybe")
    await count_params_middleware(request, _ok)
    assert request[CONTEXT_KEY].value("edge_flat") is False


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["/", "/?url=", "/?url=ftp://example.com/a"])
async def test_count_params_rejects_bad_url(query):
    request = test_utils.make_mocked_request("GET", query)
    with pytest.raises(web.HTTPBadRequest):
        await count_params_middleware(request, _ok)


@pytest.mark.asyncio
async def test_healthcheck_issues_cookie(handler):
    app = create_app(Settings(), handler)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/healthcheck")
        assert resp.status == 200
        assert await resp.text() == "health check!"
        cookie = resp.cookies["ckid"]
        decoded = base64.b64decode(cookie.value).decode("utf-8")
        assert decoded.startswith("127.0.0.1-")
        assert cookie["httponly"]


@pytest.mark.asyncio
async def test_existing_cookie_is_not_replaced(handler):
    app = create_app(Settings(), handler)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/healthcheck", headers={"Cookie": "ckid=abc"})
        assert resp.status == 200
        assert "ckid" not in resp.cookies


@pytest.mark.asyncio
async def test_trailing_slash_is_removed(handler):
    app = create_app(Settings(), handler)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/healthcheck/")
        assert resp.status == 200
        assert await resp.text() == "health check!"


@pytest.mark.asyncio
async def test_www_host_redirects(handler):
    app = create_app(Settings(), handler)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get(
            "/healthcheck", headers={"Host": "www.example.com"}, allow_redirects=False
        )
        assert resp.status == 301
        assert resp.headers["Location"] == "http://example.com/healthcheck"


@pytest.mark.asyncio
async def test_force_https(handler):
    app = create_app(Settings(force_https=True), handler)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get(
            "/healthcheck", headers={"Host": "example.com"}, allow_redirects=False
        )
        assert resp.status == 301
        assert resp.headers["Location"] == "https://example.com/healthcheck"
        assert "max-age=2592000" in resp.headers["Strict-Transport-Security"]

        resp = await client.get("/healthcheck", headers={"X-Forwarded-Proto": "https"})
        assert resp.status == 200
        assert resp.headers["Strict-Transport-Security"].startswith("max-age=2592000")


@pytest.mark.asyncio
async def test_errors_become_empty_responses(handler):
    app = create_app(Settings(), handler)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/api/count/keep/badge.svg")
        assert resp.status == 400
        assert await resp.read() == b""

        resp = await client.get("/no/such/page")
        assert resp.status == 404
        assert await resp.read() == b""


@pytest.mark.asyncio
async def test_icons_through_app(handler):
    app = create_app(Settings(), handler)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        resp = await client.get("/icon/all.json")
        assert resp.status == 200
        assert await resp.json() == [{"name": "github.svg", "url": "/icon/github.svg"}]

        resp = await client.get("/icon/github.svg")
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("image/svg+xml")


@pytest.mark.asyncio
async def test_local_phase_logs_requests(handler, tmp_path):
    log_file = tmp_path / "access.log"
    app = create_app(Settings(phase="local", log_path=str(log_file)), handler)
    async with test_utils.TestClient(test_utils.TestServer(app)) as client:
        await client.get("/healthcheck")
        await client.get("/icon/all.json")
        await client.get("/api/count/keep/badge.svg")

    entries = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert len(entries) == 2
    info, error = entries
    assert info["level"] == "INFO"
    assert info["uri"] == "/icon/all.json"
    assert info["status"] == 200
    assert "latency" in info
    assert error["level"] == "ERROR"
    assert error["status"] == 400
    assert error["error"].endswith("\n")


def test_create_app_requires_redis_address():
    with pytest.raises(EmptyParamsError):
        create_app(Settings())


def test_create_app_applies_settings(handler, tmp_path):
    log_file = tmp_path / "app.log"
    app = create_app(Settings(debug=False, log_path=str(log_file)), handler)
    assert app[DEBUG_KEY] is False
    assert log_file.exists()


@pytest.mark.parametrize("argv", [["--tls"], ["--addr", "bogus"], ["--addr", "host:port"]])
def test_main_rejects_bad_arguments(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    assert exc_info.value.code == 2
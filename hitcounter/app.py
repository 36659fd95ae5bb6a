"""The web application: middleware chain, routes and the server entry point."""

from __future__ import annotations

import argparse
import asyncio
import base64
import inspect
import logging
import os
import socket
import ssl
import time
from email.utils import formatdate
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

from hitcounter.api import CONTEXT_KEY, ApiHandler
from hitcounter.context import HitCounterContext
from hitcounter.handler import Handler, create_handler
from hitcounter.logger import new_logger
from hitcounter.reporting import init_reporting, report_error_with_context
from hitcounter.settings import Settings, get_settings
from hitcounter.util import EmptyParamsError, parse_url

_log = logging.getLogger(__name__)

DEBUG_KEY = web.AppKey("debug", bool)
LOGGER_KEY = web.AppKey("logger", logging.Logger)
PHASE_KEY = web.AppKey("phase", str)
FORCE_HTTPS_KEY = web.AppKey("force_https", bool)
HANDLER_KEY = web.AppKey("handler", Handler)
ERROR_RESPONSE_KEY = web.AppKey("error_response", object)
_INSTALLED_KEY = web.AppKey("middleware_installed", bool)

REQUEST_TIMEOUT = 15.0
COOKIE_NAME = "ckid"
COOKIE_LIFETIME = 24 * 3600
HSTS_VALUE = "max-age=2592000; includeSubdomains; preload"
HEALTHCHECK_URI = "/healthcheck"

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_COUNT_QUERY_PARAMS = ("title", "title_bg", "count_bg", "icon", "icon_color")

Handle = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _request_context(request: web.Request) -> HitCounterContext:
    ctx = request.get(CONTEXT_KEY)
    if ctx is None:
        ctx = HitCounterContext(request)
        request[CONTEXT_KEY] = ctx
    return ctx


def _scheme(request: web.Request) -> str:
    if request.secure:
        return "https"
    headers = request.headers
    for name in ("X-Forwarded-Proto", "X-Forwarded-Protocol"):
        value = headers.get(name)
        if value:
            return value.strip().lower()
    if headers.get("X-Forwarded-Ssl", "") == "on":
        return "https"
    value = headers.get("X-Url-Scheme")
    if value:
        return value.strip().lower()
    return "http"


def _is_websocket(request: web.Request) -> bool:
    return request.headers.get("Upgrade", "").lower() == "websocket"


def _set_ckid_cookie(response: web.StreamResponse, value: str) -> None:
    response.set_cookie(
        COOKIE_NAME,
        value,
        expires=formatdate(time.time() + COOKIE_LIFETIME, usegmt=True),
        path="/",
        httponly=True,
        secure=True,
        samesite="None",
    )


@web.middleware
async def _force_https_middleware(request: web.Request, handler: Handle) -> web.StreamResponse:
    if not request.app.get(FORCE_HTTPS_KEY, False):
        return await handler(request)
    if _scheme(request) != "https":
        raise web.HTTPMovedPermanently(
            f"https://{request.host}{request.raw_path}",
            headers={"Strict-Transport-Security": HSTS_VALUE},
        )
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        exc.headers["Strict-Transport-Security"] = HSTS_VALUE
        raise
    response.headers["Strict-Transport-Security"] = HSTS_VALUE
    return response


@web.middleware
async def _non_www_redirect_middleware(request: web.Request, handler: Handle) -> web.StreamResponse:
    host = request.host
    if host.startswith("www."):
        raise web.HTTPMovedPermanently(f"{_scheme(request)}://{host[4:]}{request.raw_path}")
    return await handler(request)


@web.middleware
async def _context_middleware(request: web.Request, handler: Handle) -> web.StreamResponse:
    ctx = _request_context(request)
    ctx.with_value("start_time", time.perf_counter_ns())
    ctx.with_value("extra_log", ctx.extra_log())
    return await handler(request)


@web.middleware
async def _cookie_middleware(request: web.Request, handler: Handle) -> web.StreamResponse:
    ctx = _request_context(request)
    ckid = request.cookies.get(COOKIE_NAME)
    issued: Optional[str] = None
    if ckid is None:
        raw = f"{ctx.real_ip}-{time.time_ns()}"
        ckid = issued = base64.b64encode(raw.encode("utf-8")).decode("ascii")
    ctx.with_value(COOKIE_NAME, ckid)
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        if issued is not None:
            _set_ckid_cookie(exc, issued)
        raise
    if issued is not None:
        _set_ckid_cookie(response, issued)
    return response


def _latency_fields(start: int) -> dict[str, str]:
    elapsed = time.perf_counter_ns() - start
    return {"latency": str(elapsed), "latency_human": f"{elapsed / 1e6:.3f}ms"}


def _error_response(app: web.Application, exc: BaseException, status: int) -> web.StreamResponse:
    responder = app.get(ERROR_RESPONSE_KEY)
    if callable(responder):
        return responder(exc)
    return web.Response(status=status)


@web.middleware
async def _main_middleware(request: web.Request, handler: Handle) -> web.StreamResponse:
    ctx = _request_context(request)
    start = ctx.value("start_time")
    if start is None:
        start = time.perf_counter_ns()
    extra = ctx.value("extra_log")
    if extra is None:
        extra = ctx.extra_log()
    logger = request.app.get(LOGGER_KEY) or _log

    try:
        if _is_websocket(request):
            response = await handler(request)
        else:
            response = await asyncio.wait_for(handler(request), REQUEST_TIMEOUT)
    except web.HTTPException as exc:
        if exc.status < 400:
            raise
        error: BaseException = exc
        code = exc.status
    except Exception as exc:
        error = exc
        code = 500
    else:
        if extra.get("uri") != HEALTHCHECK_URI:
            extra["status"] = response.status
            extra.update(_latency_fields(start))
            if request.app.get(PHASE_KEY, "") == "local":
                logger.info(extra)
        return response

    extra["status"] = code
    extra["error"] = f"{error}\n"
    if code >= 500:
        report_error_with_context(error, request, None)
        extra.update(_latency_fields(start))
    logger.error(extra)
    return _error_response(request.app, error, code)


def add_middleware(
    app: web.Application,
    debug: bool = True,
    logger: Optional[logging.Logger] = None,
    force_https: bool = False,
    phase: str = "",
) -> None:
    """Configure the application and install the middleware chain once.

    A logger of None leaves the current logger in place.
    """
    if app is None:
        raise EmptyParamsError("add_middleware: empty app")
    app[DEBUG_KEY] = debug
    if logger is not None:
        app[LOGGER_KEY] = logger
    app[PHASE_KEY] = phase
    app[FORCE_HTTPS_KEY] = force_https
    if app.get(_INSTALLED_KEY, False):
        return
    app.middlewares.extend(
        [
            _force_https_middleware,
            web.normalize_path_middleware(
                append_slash=False, remove_slash=True, merge_slashes=False
            ),
            _non_www_redirect_middleware,
            _context_middleware,
            _cookie_middleware,
            _main_middleware,
        ]
    )
    app[_INSTALLED_KEY] = True


async def count_params_middleware(request: web.Request, handler: Handle) -> web.StreamResponse:
    """Validate the ``url`` query and store the badge parameters on the request."""
    ctx = _request_context(request)
    url = request.query.get("url", "")
    if not url:
        raise web.HTTPBadRequest(text="url query string not found")
    try:
        parsed = parse_url(url)
    except ValueError:
        raise web.HTTPBadRequest(text=f"invalid url query string {url}") from None
    if parsed.schema not in ("http", "https"):
        raise web.HTTPBadRequest(text=f"unsupported scheme {parsed.schema}")

    ctx.with_value("host", parsed.host)
    ctx.with_value("path", parsed.path)
    for name in _COUNT_QUERY_PARAMS:
        ctx.with_value(name, request.query.get(name, ""))
    ctx.with_value("edge_flat", request.query.get("edge_flat", "") in _TRUE)
    return await handler(request)


def _with_count_params(view: Handle) -> Handle:
    async def counted(request: web.Request) -> web.StreamResponse:
        return await count_params_middleware(request, view)

    return counted


async def _close_services(app: web.Application) -> None:
    handler = app[HANDLER_KEY]
    await handler.async_task.stop()
    await handler.broadcaster.close()
    client = handler.counter.redis_client
    closer = getattr(client, "aclose", None) or getattr(client, "close", None)
    if closer is not None:
        result = closer()
        if inspect.isawaitable(result):
            await result


def add_route(
    app: web.Application, handler: Handler, api: Optional[ApiHandler] = None
) -> None:
    """Register every endpoint of the server on the application."""
    if app is None or handler is None:
        raise EmptyParamsError("add_route: empty params")
    if api is None:
        api = ApiHandler(handler)

    app[HANDLER_KEY] = handler
    app[ERROR_RESPONSE_KEY] = handler.error_response

    router = app.router
    public = handler.root / "public"
    if public.is_dir():
        router.add_static("/static", public)

    router.add_get("/hits.wasm", handler.wasm)
    router.add_get("/ws", handler.websocket)
    router.add_get("/", handler.index)
    router.add_get("/icon/all.json", handler.icon_all)
    router.add_get("/icon/{icon}", handler.icon)
    router.add_get(HEALTHCHECK_URI, handler.health_check)

    router.add_get("/api/count/keep/badge.svg", _with_count_params(api.keep_count))
    router.add_get("/api/count/incr/badge.svg", _with_count_params(api.incr_count))
    router.add_get(
        "/api/count/graph/dailyhits.svg", _with_count_params(api.daily_hits_in_recently)
    )

    app.on_cleanup.append(_close_services)


def create_app(
    settings: Optional[Settings] = None, handler: Optional[Handler] = None
) -> web.Application:
    """Build the complete application from settings."""
    if settings is None:
        settings = get_settings()
    if handler is None:
        if not settings.redis_addrs:
            raise EmptyParamsError("create_app: no redis address")
        handler = create_handler(settings.redis_addrs[0], phase=settings.phase)

    directory, filename = os.path.split(settings.log_path) if settings.log_path else ("", "")
    logger = new_logger(directory, filename)

    app = web.Application()
    add_middleware(
        app,
        debug=settings.debug,
        logger=logger,
        force_https=settings.force_https,
        phase=settings.phase,
    )
    add_route(app, handler)
    return app


def _split_listen_address(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"invalid address {addr!r}")
    return host.strip("[]"), int(port)


def main(argv: Optional[list[str]] = None) -> None:
    """Run the counter server."""
    parser = argparse.ArgumentParser(prog="hitcounter", description="Page hit counter server.")
    parser.add_argument("--addr", default=":8080", help="address to listen on")
    parser.add_argument("--tls", action="store_true", help="serve over TLS")
    parser.add_argument("--cert", help="certificate chain file for TLS")
    parser.add_argument("--key", help="private key file for TLS")
    args = parser.parse_args(argv)

    if args.tls and not (args.cert and args.key):
        parser.error("--tls requires --cert and --key")
    try:
        host, port = _split_listen_address(args.addr)
    except ValueError as exc:
        parser.error(str(exc))

    logging.basicConfig(level=logging.INFO)
    settings = get_settings()
    try:
        init_reporting(
            settings.sentry_dsn,
            settings.phase,
            settings.phase,
            socket.gethostname(),
            True,
            settings.debug,
        )
    except ValueError as exc:
        _log.warning("error reporting disabled: %s", exc)

    app = create_app(settings)

    ssl_context: Optional[ssl.SSLContext] = None
    if args.tls:
        ssl_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        ssl_context.load_cert_chain(args.cert, args.key)

    web.run_app(app, host=host or None, port=port, ssl_context=ssl_context, print=None)
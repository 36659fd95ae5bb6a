"""HTTP handlers for pages, icons, health checks, the wasm bundle and websockets."""

from __future__ import annotations

import mimetypes
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import jinja2
import redis.asyncio as aioredis
from aiohttp import web

from hitcounter.badge import BadgeWriter, Icon, load_icons
from hitcounter.broadcast import Broadcaster
from hitcounter.counter import Counter
from hitcounter.reporting import report_error
from hitcounter.settings import get_settings
from hitcounter.tasks import AsyncTaskKeeper
from hitcounter.util import EmptyParamsError, get_root

mimetypes.add_type("application/wasm", ".wasm")

RANK_GROUP = "github.com"
_RANK_FETCH = 20
_RANK_SHOW = 10
_ICON_CACHE_CONTROL = "max-age=7200, public"
_DEFAULT_REDIS_PORT = 6379


class _LocalCache:
    """An in-process map whose entries expire after their own time to live."""

    def __init__(
        self,
        default_ttl: float = 24 * 3600,
        cleanup_interval: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._items: dict[Any, tuple[Any, float]] = {}
        self._next_cleanup = clock() + cleanup_interval

    def get(self, key: Any) -> Any:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires = item
        if expires <= self._clock():
            del self._items[key]
            return None
        return value

    def set(self, key: Any, value: Any, ttl: float | None = None) -> None:
        now = self._clock()
        if now >= self._next_cleanup:
            self._items = {k: v for k, v in self._items.items() if v[1] > now}
            self._next_cleanup = now + self.cleanup_interval
        self._items[key] = (value, now + (self.default_ttl if ttl is None else ttl))

    def increment(self, key: Any, delta: int) -> Any:
        value = self.get(key)
        if value is None:
            raise KeyError(key)
        new_value = value + delta
        self._items[key] = (new_value, self._items[key][1])
        return new_value


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, _DEFAULT_REDIS_PORT
    if not port.isdigit():
        raise ValueError(f"invalid redis address {addr!r}")
    return host.strip("[]") or "localhost", int(port)


@dataclass
class Handler:
    """The shared services behind the HTTP handlers."""

    counter: Counter
    local_cache: _LocalCache
    async_task: AsyncTaskKeeper
    broadcaster: Broadcaster
    index_template: jinja2.Template
    badge: BadgeWriter
    icons: dict[str, Icon]
    icons_list: list[dict[str, str]]
    root: Path

    def error_response(self, exc: BaseException) -> web.Response:
        """An empty response carrying the error's HTTP status, or 500."""
        status = exc.status if isinstance(exc, web.HTTPException) else 500
        return web.Response(status=status)

    async def health_check(self, request: web.Request) -> web.Response:
        """Report that the server is up."""
        return web.Response(text="health check!")

    async def icon_all(self, request: web.Request) -> web.Response:
        """List every icon with the URL it is served from."""
        return web.json_response(
            self.icons_list, headers={"Cache-Control": _ICON_CACHE_CONTROL}
        )

    async def icon(self, request: web.Request) -> web.Response:
        """Serve one icon as SVG, or 404."""
        found = self.icons.get(request.match_info.get("icon", ""))
        if found is None:
            return web.Response(status=404)
        return web.Response(
            body=found.origin,
            content_type="image/svg+xml",
            headers={"Cache-Control": _ICON_CACHE_CONTROL},
        )

    async def index(self, request: web.Request) -> web.Response:
        """Render the main page with the most visited repositories."""
        scores = await self.counter.get_rank_total_by_limit(RANK_GROUP, _RANK_FETCH)
        ranks: list[str] = []
        seen: set[str] = set()
        for score in scores:
            if len(ranks) == _RANK_SHOW:
                break
            path = score.name.strip()
            if path.endswith("/"):
                path = path[:-1]
            # Only /profile/project paths are shown.
            if len(path.split("/")) == 3 and path not in seen:
                seen.add(path)
                ranks.append(f"[{len(ranks) + 1}] {RANK_GROUP}{path}")
        html = self.index_template.render(ranks=ranks)
        return web.Response(text=html, content_type="text/html")

    async def wasm(self, request: web.Request) -> web.FileResponse:
        """Serve the gzip-compressed wasm bundle."""
        return web.FileResponse(
            self.root / "view" / "hits.wasm",
            headers={"Content-Encoding": "gzip", "Content-Type": "application/wasm"},
        )

    async def websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Upgrade to a websocket and keep it subscribed to broadcasts."""
        ws = web.WebSocketResponse(max_msg_size=self.broadcaster.max_read_limit)
        await ws.prepare(request)
        await self.broadcaster.register(ws)
        return ws


def create_handler(
    redis_addr: str,
    root: str | Path | None = None,
    phase: str | None = None,
    icons_dir: str | Path | None = None,
) -> Handler:
    """Build the handler services against the Redis server at ``host:port``.

    Raises EmptyParamsError for an empty address and
    jinja2.TemplateNotFound when the page template is missing.
    """
    if not redis_addr:
        raise EmptyParamsError("create_handler: empty redis address")
    host, port = _split_addr(redis_addr)
    root_path = Path(root) if root is not None else get_root()
    if phase is None:
        phase = get_settings().phase

    index_name = "local.html" if phase == "local" else "index.html"
    environment = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(root_path / "view")),
        autoescape=jinja2.select_autoescape(["html"]),
    )
    index_template = environment.get_template(index_name)

    icons = load_icons(icons_dir if icons_dir is not None else root_path / "icons")
    icons_list = [{"name": name, "url": f"/icon/{name}"} for name in sorted(icons)]

    cpus = os.cpu_count() or 1
    client = aioredis.Redis(
        host=host,
        port=port,
        db=0,
        retry_on_timeout=True,
        decode_responses=True,
        max_connections=cpus * 10,
    )

    return Handler(
        counter=Counter(client),
        local_cache=_LocalCache(default_ttl=24 * 3600, cleanup_interval=600),
        async_task=AsyncTaskKeeper(
            queue_size=1000, worker_size=5, timeout=20.0, error_handler=report_error
        ),
        broadcaster=Broadcaster(
            max_read_limit=1024, max_pool_length=500, error_handler=report_error
        ),
        index_template=index_template,
        badge=BadgeWriter(icons),
        icons=icons,
        icons_list=icons_list,
        root=root_path,
    )
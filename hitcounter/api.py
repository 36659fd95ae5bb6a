"""Badge, graph and ranking endpoints under /api/count."""

from __future__ import annotations

import io
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Sequence

import matplotlib
from aiohttp import web
from matplotlib.dates import DateFormatter
from matplotlib.figure import Figure

from hitcounter.badge import generate_badge
from hitcounter.context import HitCounterContext
from hitcounter.counter import Counter, Score
from hitcounter.reporting import report_error
from hitcounter.timefmt import time_to_string
from hitcounter.util import EmptyParamsError

# Key under which the per-request HitCounterContext is stored on a request.
CONTEXT_KEY = "hit_counter_context"

DOMAIN_GROUP = "domain"
GITHUB_GROUP = "github.com"
GITHUB_PROFILE_SUM_GROUP = "github.com-profile-sum"

DEFAULT_TITLE = "hits"
DEFAULT_TITLE_BG = "#555"
DEFAULT_COUNT_BG = "#79c83d"

# More hits than this from one address within the window are not counted.
_IP_LIMIT = 100
_IP_WINDOW = 5.0
# One visitor (address and user agent) is counted at most once per window.
_VISITOR_WINDOW = 1.0
_GRAPH_DAYS = 60

_GRAPH_WIDTH = 650
_GRAPH_HEIGHT = 300
_GRAPH_DPI = 100
_GRAPH_COLOR = (0 / 255, 116 / 255, 217 / 255, 64 / 255)

_BADGE_PARAMS = (
    "ckid",
    "host",
    "path",
    "title",
    "title_bg",
    "count_bg",
    "edge_flat",
    "icon",
    "icon_color",
)
_GRAPH_PARAMS = ("ckid", "host", "path")

_NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


@dataclass
class RankTask:
    """Background update of the rankings after a counted hit."""

    counter: Counter
    domain: str
    path: str
    created_at: datetime

    async def process(self) -> None:
        """Raise the domain's rank and, for github.com, the page's and profile's."""
        if self.domain == GITHUB_GROUP and self.path:
            await self.counter.increase_rank_of_daily(GITHUB_GROUP, self.path, self.created_at)
            await self.counter.increase_rank_of_total(GITHUB_GROUP, self.path)

            parts = self.path.split("/")
            if len(parts) >= 2 and parts[1]:
                profile = parts[1]
                await self.counter.increase_rank_of_daily(
                    GITHUB_PROFILE_SUM_GROUP, profile, self.created_at
                )
                await self.counter.increase_rank_of_total(GITHUB_PROFILE_SUM_GROUP, profile)

        await self.counter.increase_rank_of_daily(DOMAIN_GROUP, self.domain, self.created_at)
        await self.counter.increase_rank_of_total(DOMAIN_GROUP, self.domain)


def render_daily_hits_svg(
    title: str, dates: Sequence[datetime], values: Sequence[float]
) -> str:
    """Draw daily counts over dates as an SVG area chart."""
    if len(dates) != len(values):
        raise ValueError("dates and values must have the same length")

    figure = Figure(
        figsize=(_GRAPH_WIDTH / _GRAPH_DPI, _GRAPH_HEIGHT / _GRAPH_DPI), dpi=_GRAPH_DPI
    )
    axes = figure.add_subplot()
    axes.set_title(title)
    axes.set_xlabel("date")
    axes.set_ylabel("count")
    if dates:
        axes.plot(list(dates), list(values), color=_GRAPH_COLOR)
        axes.fill_between(list(dates), list(values), color=_GRAPH_COLOR)
        axes.xaxis.set_major_formatter(DateFormatter("%m-%d"))
    figure.tight_layout()

    buffer = io.StringIO()
    with matplotlib.rc_context({"svg.fonttype": "none"}):
        figure.savefig(buffer, format="svg", metadata={"Date": None})
    return buffer.getvalue()


def _context(request: Any) -> HitCounterContext:
    ctx = request.get(CONTEXT_KEY)
    if ctx is None:
        ctx = HitCounterContext(request)
        request[CONTEXT_KEY] = ctx
    return ctx


def _params(ctx: HitCounterContext, names: Sequence[str], where: str) -> dict[str, Any]:
    values = {name: ctx.value(name) for name in names}
    if any(value is None for value in values.values()):
        raise EmptyParamsError(f"{where}: empty params")
    return values


class ApiHandler:
    """Counter endpoints built on the shared handler services."""

    def __init__(self, handler: Any) -> None:
        if handler is None:
            raise EmptyParamsError("api handler: empty handler")
        self.handler = handler

    async def incr_count(self, request: web.Request) -> web.Response:
        """Count a hit for the page and answer with its badge."""
        ctx = _context(request)
        params = _params(ctx, _BADGE_PARAMS, "incr_count")
        ident = f"{params['host']}{params['path']}"
        ip = ctx.real_ip
        user_agent = request.headers.get("User-Agent", "")
        handler = self.handler
        cache = handler.local_cache

        hits = cache.get(ip)
        if hits is not None and hits > _IP_LIMIT:
            return await self._current_badge(ident, params)
        if hits is None:
            cache.set(ip, 1, _IP_WINDOW)
        else:
            cache.increment(ip, 1)

        visitor = ("visitor", ip, user_agent)
        if cache.get(visitor) is not None:
            return await self._current_badge(ident, params)
        cache.set(visitor, 1, _VISITOR_WINDOW)

        daily = await handler.counter.increase_hit_of_daily(ident, datetime.now())
        total = await handler.counter.increase_hit_of_total(ident)

        task = RankTask(
            counter=handler.counter,
            domain=params["host"],
            path=params["path"],
            created_at=datetime.now(),
        )
        try:
            await handler.async_task.add_task(task)
        except Exception as exc:
            report_error(exc)

        handler.broadcaster.broadcast(f"[{time_to_string(datetime.now())}] {ident}")
        return self._badge_response(daily, total, params)

    async def keep_count(self, request: web.Request) -> web.Response:
        """Answer with the page's badge without counting a hit."""
        ctx = _context(request)
        params = _params(ctx, _BADGE_PARAMS, "keep_count")
        ident = f"{params['host']}{params['path']}"
        return await self._current_badge(ident, params)

    async def daily_hits_in_recently(self, request: web.Request) -> web.Response:
        """Answer with a graph of the page's daily hits over the last two months."""
        ctx = _context(request)
        params = _params(ctx, _GRAPH_PARAMS, "daily_hits_in_recently")
        ident = f"{params['host']}{params['path']}"

        start = datetime.now() - timedelta(days=_GRAPH_DAYS)
        dates = [start + timedelta(days=day) for day in range(_GRAPH_DAYS + 1)]
        scores = await self.handler.counter.get_hit_of_daily_by_range(ident, dates)
        values = [0.0 if score is None else float(score.value) for score in scores]

        svg = render_daily_hits_svg(ident, dates, values)
        return web.Response(text=svg, content_type="image/svg+xml")

    async def _current_badge(self, ident: str, params: Mapping[str, Any]) -> web.Response:
        daily, total = await self.handler.counter.get_hit_of_daily_and_total(
            ident, datetime.now()
        )
        return self._badge_response(daily, total, params)

    def _badge_response(
        self, daily: Score | None, total: Score | None, params: Mapping[str, Any]
    ) -> web.Response:
        daily_count = daily.value if daily is not None else 0
        total_count = total.value if total is not None else 0

        title = params["title"] if params["title"].strip() else DEFAULT_TITLE
        title_bg = params["title_bg"] if params["title_bg"].strip() else DEFAULT_TITLE_BG
        count_bg = params["count_bg"] if params["count_bg"].strip() else DEFAULT_COUNT_BG
        count_text = f" {daily_count} / {total_count} "

        badge = generate_badge(title, title_bg, count_text, count_bg, bool(params["edge_flat"]))
        icon = params["icon"]
        if icon in self.handler.icons:
            svg = self.handler.badge.render_icon_badge(badge, icon, params["icon_color"])
        else:
            svg = self.handler.badge.render_flat_badge(badge)

        return web.Response(
            body=svg, content_type="image/svg+xml", headers=dict(_NO_CACHE_HEADERS)
        )
"""Hit counts and rankings kept in Redis."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import redis.asyncio as aioredis

from hitcounter.timefmt import time_to_daily_string
from hitcounter.util import EmptyParamsError

# Daily keys expire after two months.
DAILY_EXPIRE_SECONDS = int(timedelta(days=60).total_seconds())

HIT_DAILY_FORMAT = "hit:daily:{day}:{ident}"
HIT_TOTAL_FORMAT = "hit:total:{ident}"
RANK_DAILY_FORMAT = "rank:daily:{day}:{group}"
RANK_TOTAL_FORMAT = "rank:total:{group}"


@dataclass(frozen=True)
class Score:
    """A named count."""

    name: str
    value: int


def _hit_daily_key(ident: str, t: datetime) -> str:
    return HIT_DAILY_FORMAT.format(day=time_to_daily_string(t), ident=ident)


def _hit_total_key(ident: str) -> str:
    return HIT_TOTAL_FORMAT.format(ident=ident)


def _rank_daily_key(group: str, t: datetime) -> str:
    return RANK_DAILY_FORMAT.format(day=time_to_daily_string(t), group=group)


def _rank_total_key(group: str) -> str:
    return RANK_TOTAL_FORMAT.format(group=group)


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _score_or_none(name: str, raw: Any) -> Score | None:
    if raw is None:
        return None
    return Score(name=name, value=int(_text(raw)))


def _default_client() -> aioredis.Redis:
    return aioredis.Redis(
        host="localhost",
        port=6379,
        password=None,
        db=0,
        retry_on_timeout=True,
        decode_responses=True,
    )


class Counter:
    """Increments and reads page hits and group rankings."""

    def __init__(self, redis_client: Any = None) -> None:
        self.redis_client = redis_client if redis_client is not None else _default_client()

    async def increase_hit_of_daily(self, ident: str, t: datetime | None) -> Score:
        """Add one hit for the day of ``t`` and return the new daily count."""
        if not ident or t is None:
            raise EmptyParamsError("increase_hit_of_daily: empty params")
        key = _hit_daily_key(ident, t)
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, DAILY_EXPIRE_SECONDS)
        incr, _ = await pipe.execute()
        return Score(name=key, value=int(incr))

    async def increase_hit_of_total(self, ident: str) -> Score:
        """Add one hit to the running total and return it."""
        if not ident:
            raise EmptyParamsError("increase_hit_of_total: empty params")
        key = _hit_total_key(ident)
        value = await self.redis_client.incr(key)
        return Score(name=key, value=int(value))

    async def get_hit_of_daily(self, ident: str, t: datetime | None) -> Score | None:
        """Return the count for the day of ``t``, or None if there is none."""
        if not ident or t is None:
            raise EmptyParamsError("get_hit_of_daily: empty params")
        key = _hit_daily_key(ident, t)
        return _score_or_none(key, await self.redis_client.get(key))

    async def get_hit_of_total(self, ident: str) -> Score | None:
        """Return the running total, or None if there is none."""
        if not ident:
            raise EmptyParamsError("get_hit_of_total: empty params")
        key = _hit_total_key(ident)
        return _score_or_none(key, await self.redis_client.get(key))

    async def get_hit_of_daily_and_total(
        self, ident: str, t: datetime | None
    ) -> tuple[Score | None, Score | None]:
        """Return the daily and total counts; either may be None."""
        if not ident or t is None:
            raise EmptyParamsError("get_hit_of_daily_and_total: empty params")
        daily_key = _hit_daily_key(ident, t)
        total_key = _hit_total_key(ident)
        daily_raw, total_raw = await self.redis_client.mget(daily_key, total_key)
        return _score_or_none(daily_key, daily_raw), _score_or_none(total_key, total_raw)

    async def get_hit_of_daily_by_range(
        self, ident: str, time_range: Sequence[datetime]
    ) -> list[Score | None]:
        """Return one daily count per time, None where a day has no hits."""
        if not ident or not time_range:
            raise EmptyParamsError("get_hit_of_daily_by_range: empty params")
        keys = [_hit_daily_key(ident, t) for t in time_range]
        values = await self.redis_client.mget(*keys)
        return [_score_or_none(key, raw) for key, raw in zip(keys, values)]

    async def increase_rank_of_daily(self, group: str, ident: str, t: datetime | None) -> Score:
        """Add one to ``ident`` in the daily ranking of ``group``."""
        if not group or not ident or t is None:
            raise EmptyParamsError("increase_rank_of_daily: empty params")
        key = _rank_daily_key(group, t)
        pipe = self.redis_client.pipeline(transaction=True)
        pipe.zincrby(key, 1, ident)
        pipe.expire(key, DAILY_EXPIRE_SECONDS)
        incr, _ = await pipe.execute()
        return Score(name=ident, value=int(incr))

    async def increase_rank_of_total(self, group: str, ident: str) -> Score:
        """Add one to ``ident`` in the overall ranking of ``group``."""
        if not group or not ident:
            raise EmptyParamsError("increase_rank_of_total: empty params")
        value = await self.redis_client.zincrby(_rank_total_key(group), 1, ident)
        return Score(name=ident, value=int(value))

    async def get_rank_daily_by_limit(
        self, group: str, limit: int, t: datetime | None
    ) -> list[Score]:
        """Return at most ``limit`` entries of the daily ranking, highest first."""
        if not group or limit <= 0 or t is None:
            raise EmptyParamsError("get_rank_daily_by_limit: empty params")
        return await self._top(_rank_daily_key(group, t), limit)

    async def get_rank_total_by_limit(self, group: str, limit: int) -> list[Score]:
        """Return at most ``limit`` entries of the overall ranking, highest first."""
        if not group or limit <= 0:
            raise EmptyParamsError("get_rank_total_by_limit: empty params")
        return await self._top(_rank_total_key(group), limit)

    async def _top(self, key: str, limit: int) -> list[Score]:
        entries: Iterable[tuple[Any, float]] = await self.redis_client.zrevrange(
            key, 0, limit - 1, withscores=True
        )
        return [Score(name=_text(member), value=int(score)) for member, score in entries]
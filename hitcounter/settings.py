"""Settings read from the process environment."""

from __future__ import annotations

import functools
import os
from dataclasses import dataclass
from typing import Mapping

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _parse_bool(name: str, value: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"invalid boolean for {name}: {value!r}")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration of the server."""

    debug: bool = False
    force_https: bool = False
    redis_addrs: tuple[str, ...] = ()
    log_path: str = ""
    sentry_dsn: str = ""
    phase: str = ""


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Read settings from a mapping (the process environment by default).

    Raises ValueError when DEBUG or FORCE_HTTPS is not a boolean.
    """
    env = os.environ if environ is None else environ

    debug_raw = env.get("DEBUG", "")
    force_raw = env.get("FORCE_HTTPS", "")
    redis_raw = env.get("REDIS_ADDRS", "")

    return Settings(
        debug=_parse_bool("DEBUG", debug_raw) if debug_raw else False,
        force_https=_parse_bool("FORCE_HTTPS", force_raw) if force_raw else False,
        redis_addrs=tuple(part.strip() for part in redis_raw.split(",")) if redis_raw else (),
        log_path=env.get("LOG_PATH", ""),
        sentry_dsn=env.get("SENTRY_DSN", ""),
        phase=env.get("PHASE", ""),
    )


@functools.lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return the settings of this process, read once."""
    return load_settings()
"""Error reporting to a DSN-addressed collection endpoint."""

from __future__ import annotations

import json
import logging
import threading
import traceback
import urllib.error
import urllib.request
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping
from urllib.parse import urlsplit

_log = logging.getLogger(__name__)
_SEND_TIMEOUT = 5.0


class ReportingParamsError(ValueError):
    """Raised when reporting is initialised with an empty parameter."""

    def __init__(self, message: str = "reporting: empty params") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class ReportingConfig:
    """Where and how errors are reported; the DSN is validated on creation."""

    dsn: str
    environment: str
    release: str
    hostname: str
    stack: bool = False
    debug: bool = False
    public_key: str = field(init=False)
    store_url: str = field(init=False)

    def __post_init__(self) -> None:
        parts = urlsplit(self.dsn)
        try:
            port = parts.port
        except ValueError as exc:
            raise ValueError(f"invalid DSN: {exc}") from None
        if parts.scheme not in ("http", "https") or not parts.username or not parts.hostname:
            raise ValueError("invalid DSN: expected scheme://key@host/project")
        prefix, _, project = parts.path.rstrip("/").rpartition("/")
        if not project:
            raise ValueError("invalid DSN: missing project")
        netloc = parts.hostname if port is None else f"{parts.hostname}:{port}"
        object.__setattr__(self, "public_key", parts.username)
        object.__setattr__(self, "store_url", f"{parts.scheme}://{netloc}{prefix}/api/{project}/store/")


class _Reporter:
    def __init__(self) -> None:
        self.config: ReportingConfig | None = None

    def capture(
        self,
        err: BaseException,
        user: Mapping[str, str] | None = None,
        fingerprint: list[str] | None = None,
    ) -> dict[str, Any] | None:
        config = self.config
        if config is None:
            return None
        event = _build_event(config, err)
        if user is not None:
            event["user"] = dict(user)
        if fingerprint is not None:
            event["fingerprint"] = list(fingerprint)
        if config.debug:
            _log.debug("reporting event %s", event["event_id"])
        threading.Thread(target=_send, args=(config, event), daemon=True).start()
        return event


_reporter = _Reporter()


def _stack_frames(err: BaseException) -> list[dict[str, Any]]:
    if err.__traceback__ is not None:
        summary = traceback.extract_tb(err.__traceback__)
    else:
        summary = traceback.extract_stack()[:-3]
    return [
        {"filename": frame.filename, "function": frame.name, "lineno": frame.lineno}
        for frame in summary
    ]


def _build_event(config: ReportingConfig, err: BaseException) -> dict[str, Any]:
    exception: dict[str, Any] = {
        "type": type(err).__name__,
        "module": type(err).__module__,
        "value": str(err),
    }
    if config.stack:
        exception["stacktrace"] = {"frames": _stack_frames(err)}
    return {
        "event_id": uuid.uuid4().hex,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "platform": "python",
        "level": "error",
        "environment": config.environment,
        "release": config.release,
        "server_name": config.hostname,
        "exception": {"values": [exception]},
    }


def _send(config: ReportingConfig, event: dict[str, Any]) -> None:
    request = urllib.request.Request(
        config.store_url,
        data=json.dumps(event, default=str).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "X-Sentry-Auth": (
                "Sentry sentry_version=7, sentry_client=hitcounter/1.0, "
                f"sentry_key={config.public_key}"
            ),
        },
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=_SEND_TIMEOUT):
            pass
    except (OSError, urllib.error.URLError) as exc:
        _log.debug("failed to deliver event %s: %s", event["event_id"], exc)


def _real_ip(request: Any) -> str:
    headers = getattr(request, "headers", None) or {}
    forwarded = headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("X-Real-Ip")
    if real_ip:
        return real_ip.strip()
    return getattr(request, "remote", None) or ""


def init_reporting(
    dsn: str,
    environment: str,
    release: str,
    hostname: str,
    stack: bool,
    debug: bool,
) -> ReportingConfig:
    """Configure error reporting; every string parameter is required."""
    if not dsn or not environment or not release or not hostname:
        raise ReportingParamsError()
    config = ReportingConfig(
        dsn=dsn,
        environment=environment,
        release=release,
        hostname=hostname,
        stack=stack,
        debug=debug,
    )
    _reporter.config = config
    return config


def report_error(err: BaseException | None) -> dict[str, Any] | None:
    """Report an error; returns the event sent, or None when nothing was sent."""
    if err is None:
        return None
    return _reporter.capture(err)


def report_error_with_context(
    err: BaseException | None,
    request: Any,
    info: Mapping[str, str] | None,
) -> dict[str, Any] | None:
    """Report an error with the client address of a request and an optional user id."""
    if err is None or request is None:
        return None
    user_id = (info or {}).get("id", "")
    return _reporter.capture(
        err,
        user={"id": user_id, "ip_address": _real_ip(request)},
        fingerprint=[str(err)],
    )
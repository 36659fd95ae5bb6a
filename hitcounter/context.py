"""Per-request values and the request summary written to access logs."""

from __future__ import annotations

from typing import Any, Hashable


def _real_ip(request: Any) -> str:
    headers = getattr(request, "headers", None) or {}
    forwarded = headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = headers.get("X-Real-Ip", "")
    if real_ip:
        return real_ip.strip()
    return getattr(request, "remote", None) or ""


class HitCounterContext:
    """Wraps a request and carries values that live as long as it does."""

    def __init__(self, request: Any) -> None:
        self.request = request
        self._values: dict[Hashable, Any] = {}

    def with_value(self, key: Hashable, value: Any) -> None:
        """Attach a value to the request under ``key``."""
        self._values[key] = value

    def value(self, key: Hashable) -> Any:
        """Return the value stored under ``key``, or None."""
        return self._values.get(key)

    @property
    def real_ip(self) -> str:
        """The client address, honouring proxy headers."""
        return _real_ip(self.request)

    def extra_log(self) -> dict[str, Any]:
        """Return the request fields that go into every log line."""
        request = self.request
        headers = request.headers
        return {
            "host": request.host,
            "ip": _real_ip(request),
            "uri": request.raw_path,
            "method": request.method,
            "referer": headers.get("Referer", ""),
            "user-agent": headers.get("User-Agent", ""),
        }
"""Shared helpers: resource location, parameter errors and URL parsing."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

_DEFAULT_PORTS = {"http": "80", "https": "443"}


class EmptyParamsError(ValueError):
    """Raised when a required parameter is empty."""

    def __init__(self, message: str = "empty params") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class ParsedURL:
    """The parts of a URL that the counter cares about."""

    schema: str
    host: str
    port: str
    path: str
    query: str
    fragment: str


def get_root() -> Path:
    """Return the directory that holds the package's resources."""
    return Path(__file__).resolve().parent


def parse_url(s: str) -> ParsedURL:
    """Split a URL into its parts, assuming ``http`` when no scheme is given.

    The port defaults to 80 for http and 443 for https.
    Raises EmptyParamsError for an empty string and ValueError for a URL
    that cannot be parsed.
    """
    if not s or not s.strip():
        raise EmptyParamsError("parse_url: empty url")

    raw = s.strip()
    if raw.startswith("//"):
        raw = "http:" + raw
    elif "://" not in raw:
        raw = "http://" + raw

    parts = urlsplit(raw)
    host = parts.hostname
    if not host:
        raise ValueError(f"invalid url {s!r}: missing host")

    port_number = parts.port
    schema = parts.scheme
    if port_number is not None:
        port = str(port_number)
    else:
        port = _DEFAULT_PORTS.get(schema, "")

    return ParsedURL(
        schema=schema,
        host=host,
        port=port,
        path=parts.path,
        query=parts.query,
        fragment=parts.fragment,
    )
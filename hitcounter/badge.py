"""Counter badges rendered as SVG."""

from __future__ import annotations

import base64
import re
import unicodedata
from dataclasses import dataclass
from html import escape
from pathlib import Path
from typing import Mapping

VERDANA = "Verdana"

_HEIGHT = 20
_PADDING = 10
_ICON_SIZE = 14
_ICON_SPACE = 17

_NARROW = frozenset("ijlI!|.,:;'`")
_SEMI_NARROW = frozenset("frt()[]{}/\\-\" ")
_WIDE = frozenset("mwMW@%")

_ROOT_SVG_TAG = re.compile(rb"<svg\b[^>]*>")
_FILL_ATTR = re.compile(rb"\sfill\s*=\s*(\"[^\"]*\"|'[^']*')")


@dataclass(frozen=True)
class Badge:
    """Texts, colours and corner radii of a two-part flat badge."""

    left_text: str
    left_background_color: str
    right_text: str
    right_background_color: str
    left_text_color: str = "#fff"
    right_text_color: str = "#fff"
    x_radius: str = "3"
    y_radius: str = "3"
    font_type: str = VERDANA


@dataclass(frozen=True)
class Icon:
    """An SVG icon that can be placed on the left of a badge."""

    name: str
    origin: bytes


def generate_badge(
    left_text: str,
    left_bg_color: str,
    right_text: str,
    right_bg_color: str,
    edge_flat: bool,
) -> Badge:
    """Build a badge with white text; flat edges have no corner radius."""
    radius = "0" if edge_flat else "3"
    return Badge(
        left_text=left_text,
        left_background_color=left_bg_color,
        right_text=right_text,
        right_background_color=right_bg_color,
        left_text_color="#fff",
        right_text_color="#fff",
        x_radius=radius,
        y_radius=radius,
        font_type=VERDANA,
    )


def load_icons(directory: str | Path) -> dict[str, Icon]:
    """Load every ``*.svg`` file in a directory, keyed by file name."""
    icons = {}
    for path in sorted(Path(directory).glob("*.svg")):
        if path.is_file():
            icons[path.name] = Icon(name=path.name, origin=path.read_bytes())
    return icons


def _char_width(ch: str) -> float:
    if unicodedata.east_asian_width(ch) in ("W", "F"):
        return 11.0
    if ch in _NARROW:
        return 3.5
    if ch in _SEMI_NARROW:
        return 4.5
    if ch in _WIDE:
        return 10.5
    if ch.isupper():
        return 7.5
    return 7.0


def _text_width(text: str) -> float:
    return sum(_char_width(ch) for ch in text)


def _colored_icon(origin: bytes, color: str) -> bytes:
    if not color:
        return origin
    fill = escape(color, quote=True).encode("utf-8")

    def recolor(match: re.Match[bytes]) -> bytes:
        tag = _FILL_ATTR.sub(b"", match.group(0))
        return b'<svg fill="' + fill + b'"' + tag[len(b"<svg"):]

    return _ROOT_SVG_TAG.sub(recolor, origin, count=1)


class BadgeWriter:
    """Renders badges, optionally with one of a known set of icons."""

    def __init__(self, icons: Mapping[str, Icon] | None = None) -> None:
        self.icons: dict[str, Icon] = dict(icons or {})

    def render_flat_badge(self, badge: Badge) -> bytes:
        """Render a badge without an icon."""
        return self._render(badge, None)

    def render_icon_badge(self, badge: Badge, icon: str, icon_color: str) -> bytes:
        """Render a badge with the named icon, recoloured when a colour is given."""
        try:
            found = self.icons[icon]
        except KeyError:
            raise KeyError(f"unknown icon {icon!r}") from None
        svg = _colored_icon(found.origin, icon_color)
        uri = "data:image/svg+xml;base64," + base64.b64encode(svg).decode("ascii")
        return self._render(badge, uri)

    def _render(self, badge: Badge, icon_uri: str | None) -> bytes:
        icon_offset = _ICON_SPACE if icon_uri else 0
        text_left = round(_text_width(badge.left_text) + _PADDING)
        left_width = text_left + icon_offset
        right_width = round(_text_width(badge.right_text) + _PADDING)
        total = left_width + right_width

        left_x = icon_offset + text_left / 2
        right_x = left_width + right_width / 2
        left_text = escape(badge.left_text)
        right_text = escape(badge.right_text)
        font = escape(f"{badge.font_type},DejaVu Sans,Geneva,sans-serif", quote=True)

        def attr(value: str) -> str:
            return escape(value, quote=True)

        icon_element = ""
        if icon_uri:
            icon_element = (
                f'<image x="5" y="3" width="{_ICON_SIZE}" height="{_ICON_SIZE}" '
                f'href="{icon_uri}"/>'
            )

        svg = (
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{total}" height="{_HEIGHT}">'
            '<linearGradient id="smooth" x2="0" y2="100%">'
            '<stop offset="0" stop-color="#bbb" stop-opacity=".1"/>'
            '<stop offset="1" stop-opacity=".1"/>'
            "</linearGradient>"
            '<mask id="round">'
            f'<rect width="{total}" height="{_HEIGHT}" rx="{attr(badge.x_radius)}" '
            f'ry="{attr(badge.y_radius)}" fill="#fff"/>'
            "</mask>"
            '<g mask="url(#round)">'
            f'<rect width="{left_width}" height="{_HEIGHT}" '
            f'fill="{attr(badge.left_background_color)}"/>'
            f'<rect x="{left_width}" width="{right_width}" height="{_HEIGHT}" '
            f'fill="{attr(badge.right_background_color)}"/>'
            f'<rect width="{total}" height="{_HEIGHT}" fill="url(#smooth)"/>'
            "</g>"
            f"{icon_element}"
            f'<g text-anchor="middle" font-family="{font}" font-size="11">'
            f'<text x="{left_x:.1f}" y="15" fill="#010101" fill-opacity=".3">{left_text}</text>'
            f'<text x="{left_x:.1f}" y="14" fill="{attr(badge.left_text_color)}">{left_text}</text>'
            f'<text x="{right_x:.1f}" y="15" fill="#010101" fill-opacity=".3">{right_text}</text>'
            f'<text x="{right_x:.1f}" y="14" fill="{attr(badge.right_text_color)}">{right_text}</text>'
            "</g>"
            "</svg>"
        )
        return svg.encode("utf-8")
"""Compact SVG bus icons for map panels, encoded as data URIs."""

from __future__ import annotations

import base64

# Fixed colours for the busiest lines; everything else is hashed to a hue.
LINE_COLORS = {
    "49x": "#E74C3C",
    "7": "#3498DB",
    "18": "#2ECC71",
    "42": "#F39C12",
    "50": "#9B59B6",
    "1": "#1ABC9C",
    "2": "#34495E",
    "8": "#E67E22",
    "15": "#8E44AD",
    "20": "#27AE60",
}

_INT64_OFFSET = 1 << 63
_UINT64_RANGE = 1 << 64

_DIRECTION_MARKERS = {
    "inbound": ('<polygon points="45,22 50,25 45,28" fill="#28a745"/>', "#28a745"),
    "outbound": ('<polygon points="50,22 55,25 50,28" fill="#dc3545"/>', "#dc3545"),
}
_NEUTRAL_MARKER = ('<circle cx="50" cy="25" r="2" fill="#6c757d"/>', "#6c757d")

_COMPACT_TEMPLATE = """<svg width="90" height="45" xmlns="http://www.w3.org/2000/svg">
  <rect width="90" height="45" fill="white" stroke="#dee2e6" stroke-width="1" rx="6"/>
  <rect x="8" y="15" width="32" height="18" fill="{color}" rx="3"/>
  <rect x="6" y="17" width="3" height="14" fill="{color}" rx="1"/>
  <rect x="10" y="17" width="5" height="4" fill="#87CEEB" rx="1"/>
  <rect x="16" y="17" width="5" height="4" fill="#87CEEB" rx="1"/>
  <rect x="22" y="17" width="5" height="4" fill="#87CEEB" rx="1"/>
  <rect x="28" y="17" width="5" height="4" fill="#87CEEB" rx="1"/>
  <rect x="34" y="17" width="4" height="4" fill="#87CEEB" rx="1"/>
  <rect x="18" y="22" width="8" height="9" fill="#2C3E50" rx="1"/>
  <circle cx="15" cy="35" r="3" fill="#2C3E50"/>
  <circle cx="31" cy="35" r="3" fill="#2C3E50"/>
  <rect x="45" y="12" width="35" height="12" fill="{color}" rx="2"/>
  <text x="62.5" y="21" font-family="Arial, sans-serif" font-size="9" font-weight="bold" fill="white" text-anchor="middle">{line}</text>
  {marker}
  <text x="62.5" y="35" font-family="Arial, sans-serif" font-size="7" font-weight="bold" fill="{marker_color}" text-anchor="middle">{label}</text>
</svg>"""


def line_color(line_ref: str) -> str:
    """Return a stable colour for a line reference."""
    if line_ref in LINE_COLORS:
        return LINE_COLORS[line_ref]

    # str hash() is salted per process; this one is stable and wraps as a
    # signed 64-bit integer
    value = 0
    for char in line_ref:
        value = ord(char) + ((value << 5) - value)
        value = (value + _INT64_OFFSET) % _UINT64_RANGE - _INT64_OFFSET
    hue = value % 360
    return f"hsl({hue}, 70%, 50%)"


def _escape(value: str) -> str:
    return value.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def compact_bus_image(line_ref: str, direction: str) -> str:
    """Render the compact 90x45 bus icon as a base64 SVG data URI."""
    marker, marker_color = _DIRECTION_MARKERS.get(direction.lower(), _NEUTRAL_MARKER)
    svg = _COMPACT_TEMPLATE.format(
        color=line_color(line_ref),
        line=_escape(line_ref),
        marker=marker,
        marker_color=marker_color,
        label=_escape(direction[:2].upper()),
    )
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"

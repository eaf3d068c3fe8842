"""Colour model — parsing, hex conversion, compositing, luminance, grey test.

parse_colour() is the never-fail entry point for strings coming out of a host
tree: anything it cannot read becomes opaque white, so a single bad value can
never halt a traversal. hex_to_rgb() is strict and raises ValueError; callers
that load configuration decide how to recover.
"""

from __future__ import annotations

import logging
import re
from collections.abc import MutableMapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from PIL import ImageColor

from greytone.core.errors import ParseFailure

logger = logging.getLogger(__name__)

# sRGB relative luminance (WCAG 2.x)
_LUMA_WEIGHTS = (0.2126, 0.7152, 0.0722)
_LINEAR_THRESHOLD = 0.03928

# rgb()/rgba() with comma or space separators and a float alpha, as computed
# styles report them. Pillow only accepts integer alpha here.
_RGB_FUNC = re.compile(
    r'^rgba?\(\s*(\d+(?:\.\d+)?)\s*[,\s]\s*(\d+(?:\.\d+)?)\s*[,\s]\s*(\d+(?:\.\d+)?)'
    r'\s*(?:[,/]\s*(\d*\.?\d+)(%?)\s*)?\)$',
    re.IGNORECASE,
)
_HEX = re.compile(r'^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$')


@dataclass(frozen=True)
class Colour:
    """An RGBA colour. Channels are 0..255 ints, alpha is 0..1."""

    r: int
    g: int
    b: int
    a: float = 1.0

    @property
    def rgb(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)

    @property
    def hex(self) -> str:
        return rgb_to_hex(self.r, self.g, self.b)

    def opaque(self) -> Colour:
        """Same channels with alpha forced to 1."""
        if self.a == 1.0:
            return self
        return Colour(self.r, self.g, self.b, 1.0)


WHITE = Colour(255, 255, 255, 1.0)
BLACK = Colour(0, 0, 0, 1.0)
TRANSPARENT = Colour(0, 0, 0, 0.0)


def _round(value: float) -> int:
    """Round half up and clamp into a channel."""
    return max(0, min(255, int(value + 0.5)))


def hex_to_rgb(hex_str: str) -> tuple[int, int, int]:
    """Parse '#rgb' or '#rrggbb' (hash optional, case-insensitive).

    Raises ValueError on anything else.
    """
    m = _HEX.match(hex_str.strip()) if isinstance(hex_str, str) else None
    if not m:
        raise ValueError(f'not a hex colour: {hex_str!r}')
    digits = m.group(1)
    if len(digits) == 3:
        digits = ''.join(c + c for c in digits)
    value = int(digits, 16)
    return ((value >> 16) & 255, (value >> 8) & 255, value & 255)


def rgb_to_hex(r: int, g: int, b: int) -> str:
    """RGB channels to uppercase '#RRGGBB'."""
    return f'#{r:02X}{g:02X}{b:02X}'


def from_hex(hex_str: str) -> Colour:
    """Strict hex to opaque Colour. Raises ValueError."""
    return Colour(*hex_to_rgb(hex_str))


def _parse_strict(value: str) -> Colour:
    text = value.strip()
    if text.lower() == 'transparent':
        return TRANSPARENT

    m = _RGB_FUNC.match(text)
    if m:
        r, g, b = (_round(float(m.group(i))) for i in (1, 2, 3))
        alpha = 1.0
        if m.group(4) is not None:
            alpha = float(m.group(4))
            if m.group(5):
                alpha /= 100.0
            alpha = max(0.0, min(1.0, alpha))
        return Colour(r, g, b, alpha)

    try:
        parts = ImageColor.getrgb(text)
    except ValueError as e:
        raise ParseFailure(f'unrecognised colour {value!r}') from e
    if len(parts) == 4:
        return Colour(parts[0], parts[1], parts[2], parts[3] / 255.0)
    return Colour(parts[0], parts[1], parts[2], 1.0)


def parse_colour(value: Any) -> Colour:
    """Parse a CSS colour string. Returns opaque white if it cannot be read."""
    if isinstance(value, Colour):
        return value
    if not isinstance(value, str):
        logger.debug('parse_colour: non-string value %r, using white', value)
        return WHITE
    try:
        return _parse_strict(value)
    except ParseFailure as e:
        logger.debug('parse_colour: %s, using white', e)
        return WHITE


def compose(top: Colour, bottom: Colour) -> Colour:
    """Alpha-over: paint `top` onto `bottom`."""
    alpha = top.a + bottom.a * (1 - top.a)
    if alpha == 0:
        return TRANSPARENT
    under = bottom.a * (1 - top.a)
    return Colour(
        _round((top.r * top.a + bottom.r * under) / alpha),
        _round((top.g * top.a + bottom.g * under) / alpha),
        _round((top.b * top.a + bottom.b * under) / alpha),
        min(1.0, alpha),
    )


def _linearise(channel: int) -> float:
    v = channel / 255.0
    if v <= _LINEAR_THRESHOLD:
        return v / 12.92
    return ((v + 0.055) / 1.055) ** 2.4


def relative_luminance(colour: Colour) -> float:
    """sRGB relative luminance in [0, 1]. Alpha is ignored."""
    wr, wg, wb = _LUMA_WEIGHTS
    return wr * _linearise(colour.r) + wg * _linearise(colour.g) + wb * _linearise(colour.b)


def luminance_array(colours: Sequence[Colour]) -> np.ndarray:
    """Vectorised relative_luminance over a sequence of colours, shape (N,)."""
    if not colours:
        return np.zeros(0, dtype=np.float64)
    rgb = np.array([c.rgb for c in colours], dtype=np.float64) / 255.0
    linear = np.where(rgb <= _LINEAR_THRESHOLD, rgb / 12.92, ((rgb + 0.055) / 1.055) ** 2.4)
    return linear @ np.array(_LUMA_WEIGHTS, dtype=np.float64)


def is_achromatic(colour: Colour, tolerance: int) -> bool:
    """True if every pair of channels is within `tolerance` of each other."""
    r, g, b = colour.r, colour.g, colour.b
    return abs(r - g) <= tolerance and abs(r - b) <= tolerance and abs(g - b) <= tolerance


def darken(colour: Colour, amount: float) -> Colour:
    """Move each channel toward 0 by `amount` (0..1)."""
    return Colour(
        _round(colour.r * (1 - amount)),
        _round(colour.g * (1 - amount)),
        _round(colour.b * (1 - amount)),
        colour.a,
    )


def lighten(colour: Colour, amount: float) -> Colour:
    """Move each channel toward 255 by `amount` (0..1)."""
    return Colour(
        _round(colour.r + (255 - colour.r) * amount),
        _round(colour.g + (255 - colour.g) * amount),
        _round(colour.b + (255 - colour.b) * amount),
        colour.a,
    )


def effective_background(
    element: Any,
    tree: Any,
    cache: MutableMapping[Any, Colour] | None = None,
    attribute: str = 'background-color',
) -> Colour:
    """Opaque background actually showing behind `element`.

    Walks up the ancestor chain until an opaque background (or a cached
    answer) is found, then composites the translucent layers back down.
    Past the root the backdrop is opaque white. Every element on the walked
    chain is written to `cache` when one is given.
    """
    chain: list[tuple[Any, Colour]] = []
    base = WHITE
    node = element
    while node is not None:
        if cache is not None and node in cache:
            base = cache[node]
            break
        own = parse_colour(tree.resolved_colour(node, attribute))
        if own.a >= 1.0:
            base = own
            if cache is not None:
                cache[node] = own
            break
        chain.append((node, own))
        node = tree.parent(node)

    for node, own in reversed(chain):
        if own.a > 0:
            base = compose(own, base).opaque()
        if cache is not None:
            cache[node] = base
    return base

"""Target palette — loading, ordering, and endpoint extension.

A base palette is an ordered list of hex strings, read from a JSON file or
handed over from settings. When neither is usable the built-in 8-tone
fallback below is used instead; building a palette never fails.

build_palette() sorts the base by relative luminance (stable, so equal
entries keep their configured order) and adds one synthesized endpoint
darker than the darkest entry and one lighter than the lightest.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from greytone.core.colour import Colour, darken, from_hex, lighten, luminance_array
from greytone.core.errors import ConfigurationUnavailable

logger = logging.getLogger(__name__)

# Used when no palette configuration can be read. Dark to light.
FALLBACK_HEXES: tuple[str, ...] = (
    '#282828',
    '#3C3836',
    '#504945',
    '#665C54',
    '#BDAE93',
    '#D5C4A1',
    '#EBDBB2',
    '#FBF1C7',
)

DEFAULT_EXTENSION = 0.2


@dataclass(frozen=True)
class Palette:
    """Ordered replacement colours, non-decreasing in luminance."""

    colours: tuple[Colour, ...]
    luminances: np.ndarray = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        lums = luminance_array(self.colours)
        lums.setflags(write=False)
        object.__setattr__(self, 'luminances', lums)

    def __len__(self) -> int:
        return len(self.colours)

    def __iter__(self) -> Iterator[Colour]:
        return iter(self.colours)

    def __getitem__(self, index: int) -> Colour:
        return self.colours[index]

    @property
    def hexes(self) -> list[str]:
        return [c.hex for c in self.colours]

    @property
    def min_luminance(self) -> float:
        return float(self.luminances.min()) if len(self.colours) else 0.0

    @property
    def max_luminance(self) -> float:
        return float(self.luminances.max()) if len(self.colours) else 0.0

    @classmethod
    def from_hexes(cls, hexes: Iterable[str]) -> Palette:
        """Palette of the given entries sorted by luminance, without endpoint extension."""
        return cls(tuple(by_luminance([from_hex(h) for h in hexes])))


def by_luminance(colours: Sequence[Colour]) -> list[Colour]:
    """Stable sort by relative luminance, darkest first."""
    order = np.argsort(luminance_array(colours), kind='stable')
    return [colours[int(i)] for i in order]


def parse_hex_list(values: object) -> list[Colour]:
    """Validate a configured palette value: a non-empty list of hex strings.

    Raises ConfigurationUnavailable describing the first problem found.
    """
    if not isinstance(values, (list, tuple)):
        raise ConfigurationUnavailable(f'palette must be a list of hex strings, got {type(values).__name__}')
    if not values:
        raise ConfigurationUnavailable('palette is empty')
    colours = []
    for value in values:
        try:
            colours.append(from_hex(value))
        except ValueError as e:
            raise ConfigurationUnavailable(f'palette entry {value!r} is not a hex colour') from e
    return colours


def load_palette_file(path: str | Path) -> list[Colour]:
    """Read a JSON list of hex strings (palette.json). Raises ConfigurationUnavailable."""
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding='utf-8'))
    except (OSError, ValueError) as e:
        raise ConfigurationUnavailable(f'cannot read palette file {p}: {e}') from e
    return parse_hex_list(data)


def base_palette(values: object = None, path: str | Path | None = None) -> list[Colour]:
    """Resolve the base palette: explicit values, then file, then the fallback.

    Never raises. Each unusable source is logged before moving on.
    """
    if values is not None:
        try:
            return parse_hex_list(values)
        except ConfigurationUnavailable as e:
            logger.warning('palette setting unusable (%s)', e)
    if path is not None:
        try:
            return load_palette_file(path)
        except ConfigurationUnavailable as e:
            logger.warning('palette file unusable (%s)', e)
    logger.warning('using built-in fallback palette')
    return [from_hex(h) for h in FALLBACK_HEXES]


def build_palette(base: Sequence[Colour], extension: float = DEFAULT_EXTENSION) -> Palette:
    """Sort `base` by luminance and add a darker and a lighter endpoint.

    Requires at least one entry. The result has len(base) + 2 entries.
    """
    if not base:
        raise ValueError('build_palette needs at least one base colour')
    ordered = by_luminance(base)

    darker = darken(ordered[0], extension)
    lighter = lighten(ordered[-1], extension)
    return Palette(tuple([darker, *ordered, lighter]))

"""Luminance mapper — memoized grey → palette entry mapping.

A GreyMapping is created once per (palette, policy) from the greys seen in
the startup scan, then grows on demand as new greys show up. Entries are
insert-only: once a source colour has a replacement it keeps it for the life
of the mapping, so the same grey never flickers between two palette entries.
Switching palette or policy means building a new GreyMapping.

Everything runs on the engine's single event-loop thread; readers may see the
table grow between calls but never see an entry change.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

import numpy as np

from greytone.core.colour import Colour, relative_luminance
from greytone.core.palette import Palette
from greytone.core.types import Policy

logger = logging.getLogger(__name__)

# Luminance differences this close count as an exact tie
TIE_EPSILON = 1e-12


def nearest_entry(palette: Palette, target: float) -> Colour:
    """Palette entry with luminance closest to `target`.

    Ties go to the earliest entry, which is the darkest since palettes are
    ordered by luminance.
    """
    if not len(palette):
        raise ValueError('cannot match against an empty palette')
    diffs = np.abs(palette.luminances - target)
    best = diffs.min()
    index = int(np.flatnonzero(diffs <= best + TIE_EPSILON)[0])
    return palette[index]


class GreyMapping:
    """Stable source-grey → palette-entry table for one palette and policy."""

    def __init__(self, palette: Palette, policy: Policy, observed: Iterable[Colour] = ()):
        self.palette = palette
        self.policy = policy
        self._entries: dict[Colour, Colour] = {}

        seeds = list(dict.fromkeys(c.opaque() for c in observed))
        if seeds:
            lums = [relative_luminance(c) for c in seeds]
            self.source_range = (min(lums), max(lums))
        else:
            self.source_range = (0.0, 1.0)
        self.palette_range = (palette.min_luminance, palette.max_luminance)

        self.extend(seeds)
        logger.debug(
            'mapping created: policy=%s palette=%d entries=%d source_range=(%.4f, %.4f)',
            policy.name,
            len(palette),
            len(self._entries),
            *self.source_range,
        )

    def _choose(self, colour: Colour) -> Colour:
        target = self.policy.target_luminance(relative_luminance(colour), self.source_range, self.palette_range)
        return nearest_entry(self.palette, target)

    def lookup(self, colour: Colour) -> Colour:
        """Replacement for `colour`, computing and storing it on first sight."""
        key = colour.opaque()
        hit = self._entries.get(key)
        if hit is not None:
            return hit
        replacement = self._choose(key)
        self._entries[key] = replacement
        logger.debug('mapping %s -> %s', key.hex, replacement.hex)
        return replacement

    def extend(self, colours: Iterable[Colour]) -> GreyMapping:
        """Add every colour not mapped yet. Existing entries are left alone."""
        for colour in colours:
            self.lookup(colour)
        return self

    def get(self, colour: Colour) -> Colour | None:
        """Stored replacement, or None. Never adds an entry."""
        return self._entries.get(colour.opaque())

    def __contains__(self, colour: object) -> bool:
        return isinstance(colour, Colour) and colour.opaque() in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Colour]:
        return iter(self._entries)

    def items(self) -> list[tuple[Colour, Colour]]:
        return list(self._entries.items())

    def as_hex(self) -> dict[str, str]:
        """{source '#RRGGBB': replacement '#RRGGBB'} in insertion order."""
        return {src.hex: dst.hex for src, dst in self._entries.items()}

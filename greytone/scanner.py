"""Visual tree scanner — find grey colours on visible elements and replace them.

For each element the scanner reads the resolved value of every tracked
attribute (background-color, color, border-color by default), turns it into
an opaque colour, and if that colour is grey within the tolerance writes the
mapping's replacement back to the host.

Translucent values are composited first: a background over the effective
background of the parent, a foreground or border over the element's own
effective background. Fully transparent values paint nothing and are left
alone. Elements with zero width or height are skipped.

The scanner remembers, per element and attribute, which source colour it
replaced and with what. A resolved value equal to its own earlier write is
read back as the original source, so rescans never map a replacement a
second time and a new mapping (after a settings reload) can remap from the
true source. Both side tables are weak: removed elements are not kept alive.

Any host failure for one element is logged and counted; the scan carries on.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from greytone.core.colour import Colour, compose, effective_background, is_achromatic, parse_colour
from greytone.core.types import BACKGROUND, TRACKED_ATTRIBUTES, HostTree, ScanReport
from greytone.mapper import GreyMapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Candidate:
    """A grey found on one attribute of one element."""

    element: Any
    attribute: str
    source: Colour  # opaque, composited
    previous: Colour | None = None  # our earlier write, if any


class Scanner:
    def __init__(
        self,
        tree: HostTree,
        mapping: GreyMapping | None = None,
        tolerance: int = 20,
        attributes: Iterable[str] = TRACKED_ATTRIBUTES,
    ):
        self.tree = tree
        self.mapping = mapping
        self.tolerance = tolerance
        self.attributes = tuple(attributes)
        # element currently being written to, for self-write filtering
        self.writing: Any = None
        self._backgrounds: weakref.WeakKeyDictionary[Any, Colour] = weakref.WeakKeyDictionary()
        self._written: weakref.WeakKeyDictionary[Any, dict[str, tuple[Colour, Colour]]] = weakref.WeakKeyDictionary()

    # -- source-space view of the tree, used for backdrop resolution --

    def parent(self, element: Any) -> Any | None:
        return self.tree.parent(element)

    def resolved_colour(self, element: Any, attribute: str) -> str | Colour:
        """Resolved value with our own replacement swapped back for its source."""
        raw = self.tree.resolved_colour(element, attribute)
        written = self._written.get(element, {}).get(attribute)
        if written is not None:
            source, replacement = written
            colour = parse_colour(raw)
            if colour.a >= 1.0 and colour.opaque() == replacement:
                return source
        return raw

    # -- scanning --

    def invalidate(self) -> None:
        """Forget cached effective backgrounds. Call after any tree change."""
        self._backgrounds.clear()

    def is_visible(self, element: Any) -> bool:
        width, height = self.tree.size(element)
        return width > 0 and height > 0

    def _backdrop(self, element: Any, attribute: str) -> Colour:
        if attribute == BACKGROUND:
            return effective_background(self.tree.parent(element), self, self._backgrounds)
        return effective_background(element, self, self._backgrounds)

    def _candidate(self, element: Any, attribute: str) -> Candidate | None:
        raw = self.tree.resolved_colour(element, attribute)
        colour = parse_colour(raw)
        if colour.a <= 0:
            return None

        previous = None
        written = self._written.get(element, {}).get(attribute)
        if written is not None and colour.a >= 1.0 and colour.opaque() == written[1]:
            colour, previous = written
        elif colour.a < 1.0:
            colour = compose(colour, self._backdrop(element, attribute)).opaque()

        if not is_achromatic(colour, self.tolerance):
            return None
        return Candidate(element, attribute, colour.opaque(), previous)

    def candidates(self, element: Any) -> list[Candidate]:
        """Grey attributes of one element. Raises whatever the host raises."""
        found = []
        for attribute in self.attributes:
            cand = self._candidate(element, attribute)
            if cand is not None:
                found.append(cand)
        return found

    def _all(self, elements: Iterable[Any] | None) -> Iterable[Any]:
        if elements is None:
            return self.tree.iter_subtree(self.tree.root)
        return elements

    def collect(self, elements: Iterable[Any] | None = None, report: ScanReport | None = None) -> list[Candidate]:
        """Grey candidates on visible elements, without writing anything."""
        report = report if report is not None else ScanReport(kind='collect')
        found: list[Candidate] = []
        for element in self._all(elements):
            report.visited += 1
            try:
                if not self.is_visible(element):
                    report.invisible += 1
                    continue
                found.extend(self.candidates(element))
            except Exception:
                report.failed += 1
                logger.debug('skipping unresolvable element %r', element, exc_info=True)
        return found

    def _mapping(self) -> GreyMapping:
        if self.mapping is None:
            raise RuntimeError('Scanner has no mapping')
        return self.mapping

    def _write(self, cand: Candidate, mapping: GreyMapping, report: ScanReport) -> None:
        replacement = mapping.lookup(cand.source)
        if cand.previous is not None and cand.previous == replacement:
            return
        self.writing = cand.element
        try:
            self.tree.set_colour(cand.element, cand.attribute, replacement.hex)
        finally:
            self.writing = None
        self._written.setdefault(cand.element, {})[cand.attribute] = (cand.source, replacement)
        report.add(cand.attribute)

    def apply(self, candidates: Iterable[Candidate], report: ScanReport | None = None) -> ScanReport:
        """Write replacements for already collected candidates."""
        mapping = self._mapping()
        report = report if report is not None else ScanReport(kind='apply')
        for cand in candidates:
            try:
                self._write(cand, mapping, report)
            except Exception:
                report.failed += 1
                logger.debug('cannot recolour %r %s', cand.element, cand.attribute, exc_info=True)
        report.mapping_size = len(mapping)
        return report

    def recolour(self, element: Any, report: ScanReport | None = None) -> int:
        """Recolour one element. Returns the number of attributes written."""
        mapping = self._mapping()
        report = report if report is not None else ScanReport(kind='element')
        before = report.recoloured
        report.visited += 1
        try:
            if not self.is_visible(element):
                report.invisible += 1
                return 0
            for cand in self.candidates(element):
                self._write(cand, mapping, report)
        except Exception:
            report.failed += 1
            logger.debug('skipping unresolvable element %r', element, exc_info=True)
        return report.recoloured - before

    def scan(self, elements: Iterable[Any] | None = None, kind: str = 'scan') -> ScanReport:
        """Recolour `elements`, or the whole tree when None."""
        mapping = self._mapping()
        report = ScanReport(kind=kind)
        for element in self._all(elements):
            self.recolour(element, report)
        report.mapping_size = len(mapping)
        return report

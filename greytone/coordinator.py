"""Incremental update coordinator — batch tree mutations into rescans.

State machine:

    IDLE ──notify──▶ BATCHING ──tick──▶ APPLYING ──▶ IDLE
                        ▲                   │
                        └──notify (queued)──┘

IDLE: structural mutations and attribute mutations whose name is on the
allow-list (style, class, and the tracked colour attributes) are accepted;
anything else is ignored.

BATCHING: the first accepted notification schedules a single flush with
loop.call_soon(); every notification delivered before that callback runs
lands in the same MutationBatch. Added nodes and attribute targets are
recorded as roots; removals only invalidate cached backgrounds.

APPLYING: roots still attached to the tree are sorted into document order
and expanded to themselves plus their subtrees, deduplicated, so an element
reachable from two roots is visited once. The scanner then recolours that
set. Notifications arriving meanwhile start the next batch; batches are
applied strictly one at a time, in delivery order.

A stylesheet load turns the pending batch into a full-tree rescan, since
it can change resolved colours without any mutation being reported.

Nothing here is fatal. A root the host cannot walk is skipped and counted
while the rest of its batch goes ahead; a batch that fails outright is logged
and the machine still returns to IDLE.

Hosts without a running event loop call flush() themselves.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from functools import cmp_to_key
from typing import Any

from greytone.core.report import format_text
from greytone.core.types import STYLE_ATTRIBUTES, HostTree, Mutation, MutationBatch, MutationKind, ScanReport
from greytone.scanner import Scanner

logger = logging.getLogger(__name__)


class State(enum.Enum):
    IDLE = 'idle'
    BATCHING = 'batching'
    APPLYING = 'applying'


class Coordinator:
    def __init__(self, tree: HostTree, scanner: Scanner):
        self.tree = tree
        self.scanner = scanner
        self.state = State.IDLE
        self.watched = frozenset(STYLE_ATTRIBUTES) | frozenset(scanner.attributes)
        self.batches_applied = 0
        self.last_report: ScanReport | None = None
        self.active = False
        self._pending = MutationBatch()
        self._scheduled = False
        self._idle = asyncio.Event()
        self._idle.set()

    def activate(self) -> None:
        """Start accepting notifications. Anything before this is covered by the startup scan."""
        self._pending = MutationBatch()
        self.active = True

    # -- MutationListener --

    def notify(self, mutation: Mutation) -> None:
        if not self.active:
            return
        if mutation.kind is MutationKind.ATTRIBUTE:
            if mutation.attribute not in self.watched:
                return
            # echo of our own write
            if self.scanner.writing is not None and mutation.target is self.scanner.writing:
                return
            self._pending.add_root(mutation.target)
        elif mutation.kind is MutationKind.STRUCTURE_ADDED:
            self._pending.structural = True
            self._pending.add_root(mutation.target)
        else:
            self._pending.structural = True
            self._pending.notifications += 1
        self._schedule()

    def notify_stylesheet_loaded(self) -> None:
        if not self.active:
            return
        self._pending.full_rescan = True
        self._pending.notifications += 1
        self._schedule()

    # -- scheduling --

    def _schedule(self) -> None:
        self._idle.clear()
        if self.state is State.APPLYING:
            return
        self.state = State.BATCHING
        if self._scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no loop: the host drains with flush()
            return
        self._scheduled = True
        loop.call_soon(self._on_tick)

    def _on_tick(self) -> None:
        self._scheduled = False
        self.flush()

    def flush(self) -> ScanReport | None:
        """Apply the pending batch now. Returns its report, or None if there was nothing to do."""
        if self.state is State.APPLYING:
            return None
        batch = self._pending
        self._pending = MutationBatch()
        if not batch:
            self._finish()
            return None

        self.state = State.APPLYING
        report = None
        try:
            report = self._apply(batch)
        except Exception:
            logger.exception('batch of %d notifications failed', batch.notifications)
        finally:
            self.batches_applied += 1
            self._finish()
        return report

    def _finish(self) -> None:
        self.state = State.IDLE
        if self._pending:
            self._schedule()
        else:
            self._idle.set()

    async def wait_idle(self) -> None:
        """Wait until every pending batch has been applied."""
        await self._idle.wait()

    # -- applying --

    def _roots(self, batch: MutationBatch) -> list[Any]:
        attached = []
        for root in batch.roots:
            try:
                if self.tree.is_connected(root):
                    attached.append(root)
            except Exception:
                logger.debug('dropping unresolvable root %r', root, exc_info=True)
        try:
            return sorted(attached, key=cmp_to_key(self.tree.compare_order))
        except Exception:
            logger.debug('cannot order %d roots, keeping arrival order', len(attached), exc_info=True)
            return attached

    def _expand(self, roots: list[Any]) -> tuple[list[Any], int]:
        """Roots plus subtrees, deduplicated, ancestors first.

        A root whose subtree cannot be walked is skipped and counted; the others
        still go. Returns (elements, skipped roots).
        """
        seen: set[int] = set()
        elements = []
        skipped = 0
        for root in roots:
            if id(root) in seen:
                # already inside an earlier root's subtree
                continue
            try:
                subtree = list(self.tree.iter_subtree(root))
            except Exception:
                logger.debug('skipping unwalkable root %r', root, exc_info=True)
                skipped += 1
                continue
            for element in subtree:
                if id(element) not in seen:
                    seen.add(id(element))
                    elements.append(element)
        return elements, skipped

    def _apply(self, batch: MutationBatch) -> ScanReport:
        self.scanner.invalidate()
        if batch.full_rescan:
            report = self.scanner.scan(kind='rescan')
            logger.info(format_text(report))
        else:
            roots = self._roots(batch)
            elements, skipped = self._expand(roots)
            report = self.scanner.scan(elements, kind='batch')
            report.failed += skipped
            report.roots = len(roots)
            logger.debug(format_text(report))
        self.last_report = report
        return report

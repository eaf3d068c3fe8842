"""Shared types for greytone: Mutation, MutationBatch, HostTree, Policy, ScanReport."""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Protocol

BACKGROUND = 'background-color'
FOREGROUND = 'color'
BORDER = 'border-color'

TRACKED_ATTRIBUTES: tuple[str, ...] = (BACKGROUND, FOREGROUND, BORDER)

# Attribute names whose change can alter a resolved colour
STYLE_ATTRIBUTES: tuple[str, ...] = ('style', 'class')


class MutationKind(enum.Enum):
    STRUCTURE_ADDED = 'added'
    STRUCTURE_REMOVED = 'removed'
    ATTRIBUTE = 'attribute'


@dataclass(frozen=True, eq=False)
class Mutation:
    """One change notification delivered by a host tree."""

    kind: MutationKind
    target: Any
    attribute: str | None = None

    @classmethod
    def added(cls, node: Any) -> Mutation:
        return cls(MutationKind.STRUCTURE_ADDED, node)

    @classmethod
    def removed(cls, node: Any) -> Mutation:
        return cls(MutationKind.STRUCTURE_REMOVED, node)

    @classmethod
    def attribute_changed(cls, node: Any, name: str) -> Mutation:
        return cls(MutationKind.ATTRIBUTE, node, name)


@dataclass
class MutationBatch:
    """Roots recorded during one scheduling tick.

    Roots are kept in arrival order and deduplicated by identity.
    """

    roots: list[Any] = field(default_factory=list)
    full_rescan: bool = False
    structural: bool = False
    notifications: int = 0
    _seen: set[int] = field(default_factory=set, repr=False)

    def add_root(self, node: Any) -> None:
        self.notifications += 1
        if id(node) in self._seen:
            return
        self._seen.add(id(node))
        self.roots.append(node)

    def __bool__(self) -> bool:
        return bool(self.roots) or self.full_rescan or self.structural


class MutationListener(Protocol):
    def notify(self, mutation: Mutation) -> None: ...

    def notify_stylesheet_loaded(self) -> None: ...


class HostTree(Protocol):
    """What the engine needs from the tree it recolours.

    Elements are opaque handles. They must be hashable by identity and
    weak-referenceable; the engine keeps per-element side tables that must
    not keep removed elements alive.
    """

    @property
    def root(self) -> Any: ...

    def parent(self, element: Any) -> Any | None: ...

    def iter_subtree(self, element: Any) -> Iterator[Any]:
        """`element` followed by all its descendants in document order."""
        ...

    def resolved_colour(self, element: Any, attribute: str) -> str:
        """Post-cascade computed value, e.g. 'rgb(128, 128, 128)'."""
        ...

    def size(self, element: Any) -> tuple[float, float]:
        """Rendered (width, height)."""
        ...

    def set_colour(self, element: Any, attribute: str, hex_value: str) -> None: ...

    def compare_order(self, a: Any, b: Any) -> int:
        """Negative if `a` precedes `b` in document order (ancestors first)."""
        ...

    def is_connected(self, element: Any) -> bool: ...

    def subscribe(self, listener: MutationListener) -> None: ...


class Policy:
    """A self-registering luminance mapping policy.

    Usage in a policy module:

        policy = Policy(name='direct', help='Nearest palette luminance')

        @policy.target
        def target(luminance, source_range, palette_range):
            ...
    """

    def __init__(self, name: str, help: str = ''):
        self.name = name
        self.help = help
        self._target_fn: Callable[[float, tuple[float, float], tuple[float, float]], float] | None = None

    def target(self, fn: Callable) -> Callable:
        """Decorator to register the target-luminance function."""
        self._target_fn = fn
        return fn

    def target_luminance(
        self,
        luminance: float,
        source_range: tuple[float, float],
        palette_range: tuple[float, float],
    ) -> float:
        """Luminance the replacement should be nearest to."""
        if self._target_fn is None:
            raise RuntimeError(f'Policy {self.name} has no target function')
        return self._target_fn(luminance, source_range, palette_range)

    def __repr__(self) -> str:
        return f'Policy({self.name!r})'


@dataclass
class ScanReport:
    """Accumulates counts from one scan, batch, or rescan for logging and output."""

    kind: str = 'scan'
    visited: int = 0
    invisible: int = 0
    failed: int = 0
    recoloured: int = 0
    attributes: dict[str, int] = field(default_factory=dict)
    mapping_size: int = 0
    roots: int = 0

    def add(self, attribute: str) -> None:
        """Count one recoloured attribute."""
        self.recoloured += 1
        self.attributes[attribute] = self.attributes.get(attribute, 0) + 1


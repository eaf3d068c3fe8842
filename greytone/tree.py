"""In-memory host tree implementing the HostTree protocol.

A small stand-in for a rendered document: elements carry declared styles,
class names and a rendered size; a Document resolves colours with a minimal
cascade and delivers mutation notifications synchronously to subscribers.

Cascade for resolved_colour(), first hit wins:
  1. inline overrides written through set_colour() (the engine's writes)
  2. the element's own declared style
  3. loaded stylesheets, by class name, later sheets winning
  4. inheritance from the parent (`color` only)
  5. defaults: transparent background, black text, border = current `color`

Build one from nested dicts with Document.from_dict():

    doc = Document.from_dict({
        'name': 'body',
        'style': {'background-color': '#808080'},
        'children': [{'name': 'card', 'class': ['panel'], 'size': [200, 40]}],
    })
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from greytone.core.types import BACKGROUND, BORDER, FOREGROUND, Mutation, MutationListener

_DEFAULTS = {
    BACKGROUND: 'rgba(0, 0, 0, 0)',
    FOREGROUND: 'rgb(0, 0, 0)',
}
_INHERITED = {FOREGROUND}


class Element:
    """One node. Hashes by identity and supports weak references."""

    def __init__(
        self,
        name: str = '',
        style: Mapping[str, str] | None = None,
        classes: Iterable[str] = (),
        size: tuple[float, float] = (100, 20),
        tag: str = 'div',
    ):
        self.name = name
        self.tag = tag
        self.style: dict[str, str] = dict(style or {})
        self.classes: list[str] = list(classes)
        self.size = (float(size[0]), float(size[1]))
        self.attrs: dict[str, str] = {}
        self.inline: dict[str, str] = {}
        self.parent: Element | None = None
        self.children: list[Element] = []

    def __repr__(self) -> str:
        label = f'#{self.name}' if self.name else f'@{id(self):x}'
        return f'<{self.tag}{label}>'


class Document:
    def __init__(self, root: Element | None = None):
        self._root = root if root is not None else Element('body', tag='body', size=(1280, 800))
        self.stylesheets: list[dict[str, dict[str, str]]] = []
        self.writes: list[tuple[Element, str, str]] = []
        self._listeners: list[MutationListener] = []

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Document:
        return cls(_build(data))

    # -- HostTree protocol --

    @property
    def root(self) -> Element:
        return self._root

    def parent(self, element: Element) -> Element | None:
        return element.parent

    def iter_subtree(self, element: Element) -> Iterator[Element]:
        stack = [element]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def resolved_colour(self, element: Element, attribute: str) -> str:
        if attribute in element.inline:
            return element.inline[attribute]
        if attribute in element.style:
            return element.style[attribute]
        value = None
        for sheet in self.stylesheets:
            for cls_name in element.classes:
                decls = sheet.get(cls_name)
                if decls and attribute in decls:
                    value = decls[attribute]
        if value is not None:
            return value
        if attribute in _INHERITED and element.parent is not None:
            return self.resolved_colour(element.parent, attribute)
        if attribute == BORDER:
            return self.resolved_colour(element, FOREGROUND)
        return _DEFAULTS.get(attribute, 'rgba(0, 0, 0, 0)')

    def size(self, element: Element) -> tuple[float, float]:
        if not self.is_connected(element):
            return (0.0, 0.0)
        return element.size

    def set_colour(self, element: Element, attribute: str, hex_value: str) -> None:
        element.inline[attribute] = hex_value
        self.writes.append((element, attribute, hex_value))
        self._emit(Mutation.attribute_changed(element, 'style'))

    def compare_order(self, a: Element, b: Element) -> int:
        pa, pb = _path(a), _path(b)
        if pa == pb:
            return 0
        return -1 if pa < pb else 1

    def is_connected(self, element: Element) -> bool:
        node: Element | None = element
        while node is not None:
            if node is self._root:
                return True
            node = node.parent
        return False

    def subscribe(self, listener: MutationListener) -> None:
        self._listeners.append(listener)

    # -- mutation API, as page scripts would use it --

    def append(self, parent: Element, child: Element) -> Element:
        if child.parent is not None:
            child.parent.children.remove(child)
        child.parent = parent
        parent.children.append(child)
        self._emit(Mutation.added(child))
        return child

    def remove(self, element: Element) -> None:
        if element.parent is None:
            return
        element.parent.children.remove(element)
        element.parent = None
        self._emit(Mutation.removed(element))

    def set_style(self, element: Element, attribute: str, value: str) -> None:
        """Change a declared style. Page writes replace any inline override."""
        element.style[attribute] = value
        element.inline.pop(attribute, None)
        self._emit(Mutation.attribute_changed(element, 'style'))

    def set_classes(self, element: Element, classes: Iterable[str]) -> None:
        element.classes = list(classes)
        self._emit(Mutation.attribute_changed(element, 'class'))

    def set_attribute(self, element: Element, name: str, value: str) -> None:
        element.attrs[name] = value
        self._emit(Mutation.attribute_changed(element, name))

    def load_stylesheet(self, rules: Mapping[str, Mapping[str, str]]) -> None:
        """Add a class-keyed stylesheet. Emits no mutation, only a load signal."""
        self.stylesheets.append({k: dict(v) for k, v in rules.items()})
        for listener in list(self._listeners):
            listener.notify_stylesheet_loaded()

    def find(self, name: str) -> Element:
        for node in self.iter_subtree(self._root):
            if node.name == name:
                return node
        raise KeyError(name)

    def _emit(self, mutation: Mutation) -> None:
        for listener in list(self._listeners):
            listener.notify(mutation)


def _path(element: Element) -> tuple[int, ...]:
    indices = []
    node = element
    while node.parent is not None:
        indices.append(node.parent.children.index(node))
        node = node.parent
    return tuple(reversed(indices))


def build_element(data: Mapping[str, Any]) -> Element:
    """Element (with children) from a nested dict, detached from any document."""
    return _build(data)


def _build(data: Mapping[str, Any]) -> Element:
    el = Element(
        name=data.get('name', ''),
        style=data.get('style'),
        classes=data.get('class', ()),
        size=tuple(data.get('size', (100, 20))),
        tag=data.get('tag', 'div'),
    )
    for child_data in data.get('children', ()):
        child = _build(child_data)
        child.parent = el
        el.children.append(child)
    return el

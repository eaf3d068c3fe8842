"""Tests for greytone.coordinator — coalescing, ordering, dedup, rescans, failures."""

import asyncio
from typing import Any

from greytone import registry
from greytone.coordinator import Coordinator, State
from greytone.core.colour import from_hex
from greytone.core.palette import FALLBACK_HEXES, build_palette
from greytone.core.types import BACKGROUND, Mutation
from greytone.mapper import GreyMapping
from greytone.scanner import Scanner
from greytone.tree import Document, Element, build_element


def _setup(doc: Document | None = None) -> tuple[Document, Scanner, Coordinator]:
    doc = doc if doc is not None else Document()
    palette = build_palette([from_hex(h) for h in FALLBACK_HEXES], 0.2)
    scanner = Scanner(doc, GreyMapping(palette, registry.get('direct')), 20, (BACKGROUND,))
    coord = Coordinator(doc, scanner)
    doc.subscribe(coord)
    coord.activate()
    return doc, scanner, coord


def _grey_subtree() -> Element:
    return build_element(
        {
            'name': 'card',
            'style': {'background-color': 'rgb(60, 60, 60)'},
            'children': [
                {'name': 'title', 'style': {'background-color': 'rgb(90, 90, 90)'}},
                {
                    'name': 'body',
                    'style': {'background-color': 'rgb(120, 120, 120)'},
                    'children': [{'name': 'footer', 'style': {'background-color': 'rgb(200, 200, 200)'}}],
                },
            ],
        }
    )


class TestBatching:
    def test_inserted_subtree_recoloured_once(self):
        async def scenario() -> tuple[Document, Coordinator]:
            doc, _scanner, coord = _setup()
            card = _grey_subtree()
            doc.append(doc.root, card)
            # a descendant recorded as its own root in the same tick
            doc.set_style(doc.find('footer'), BACKGROUND, 'rgb(210, 210, 210)')
            assert coord.state is State.BATCHING
            await coord.wait_idle()
            return doc, coord

        doc, coord = asyncio.run(scenario())
        assert coord.batches_applied == 1
        names = [el.name for el, _attr, _val in doc.writes]
        assert sorted(names) == ['body', 'card', 'footer', 'title']
        assert coord.last_report is not None
        assert coord.last_report.recoloured == 4
        assert coord.state is State.IDLE

    def test_same_tick_notifications_coalesce(self):
        async def scenario() -> Coordinator:
            doc, _scanner, coord = _setup()
            for i in range(5):
                doc.append(doc.root, Element(f'e{i}', style={'background-color': f'rgb({i * 40}, {i * 40}, {i * 40})'}))
            await coord.wait_idle()
            return coord

        coord = asyncio.run(scenario())
        assert coord.batches_applied == 1
        assert coord.last_report is not None
        assert coord.last_report.roots == 5

    def test_separate_ticks_make_separate_batches(self):
        async def scenario() -> Coordinator:
            doc, _scanner, coord = _setup()
            doc.append(doc.root, Element('a', style={'background-color': '#444444'}))
            await coord.wait_idle()
            doc.append(doc.root, Element('b', style={'background-color': '#555555'}))
            await coord.wait_idle()
            return coord

        coord = asyncio.run(scenario())
        assert coord.batches_applied == 2

    def test_ancestors_before_descendants(self):
        async def scenario() -> Document:
            doc = Document.from_dict({'name': 'root', 'children': [{'name': 'parent', 'children': [{'name': 'child'}]}]})
            doc, _scanner, coord = _setup(doc)
            doc.set_style(doc.find('child'), BACKGROUND, '#333333')
            doc.set_style(doc.find('parent'), BACKGROUND, '#999999')
            await coord.wait_idle()
            return doc

        doc = asyncio.run(scenario())
        assert [el.name for el, _a, _v in doc.writes] == ['parent', 'child']

    def test_own_writes_do_not_retrigger(self):
        async def scenario() -> Coordinator:
            doc, _scanner, coord = _setup()
            doc.append(doc.root, _grey_subtree())
            await coord.wait_idle()
            await asyncio.sleep(0)
            return coord

        coord = asyncio.run(scenario())
        assert coord.batches_applied == 1
        assert coord.state is State.IDLE


class TestFiltering:
    def test_unwatched_attribute_ignored(self):
        doc, _scanner, coord = _setup()
        el = doc.append(doc.root, Element('x'))
        coord.flush()
        doc.set_attribute(el, 'title', 'hello')
        assert coord.state is State.IDLE

    def test_watched_attribute_names(self):
        _doc, _scanner, coord = _setup()
        assert {'style', 'class', BACKGROUND} <= coord.watched

    def test_inactive_ignores_everything(self):
        doc = Document()
        palette = build_palette([from_hex(h) for h in FALLBACK_HEXES])
        scanner = Scanner(doc, GreyMapping(palette, registry.get('direct')))
        coord = Coordinator(doc, scanner)
        doc.subscribe(coord)
        doc.append(doc.root, Element('x', style={'background-color': '#444444'}))
        assert coord.state is State.IDLE
        assert coord.flush() is None

    def test_removed_before_flush_is_dropped(self):
        doc, _scanner, coord = _setup()
        el = doc.append(doc.root, Element('gone', style={'background-color': '#444444'}))
        doc.remove(el)
        report = coord.flush()
        assert report is not None
        assert report.roots == 0
        assert doc.writes == []


class TestSynchronousFlush:
    def test_flush_without_loop(self):
        doc, _scanner, coord = _setup()
        doc.append(doc.root, _grey_subtree())
        assert coord.state is State.BATCHING
        report = coord.flush()
        assert report is not None
        assert report.recoloured == 4
        assert coord.state is State.IDLE

    def test_flush_with_nothing_pending(self):
        _doc, _scanner, coord = _setup()
        assert coord.flush() is None
        assert coord.batches_applied == 0


class TestStylesheetRescan:
    def test_rescan_reaches_unnotified_elements(self):
        async def scenario() -> tuple[Document, Coordinator]:
            doc = Document.from_dict(
                {'name': 'root', 'children': [{'name': 'p1', 'class': ['panel']}, {'name': 'p2', 'class': ['panel']}]}
            )
            doc, _scanner, coord = _setup(doc)
            doc.load_stylesheet({'panel': {BACKGROUND: '#777777'}})
            await coord.wait_idle()
            return doc, coord

        doc, coord = asyncio.run(scenario())
        assert coord.last_report is not None
        assert coord.last_report.kind == 'rescan'
        assert {el.name for el, _a, _v in doc.writes} == {'p1', 'p2'}

    def test_rescan_absorbs_same_tick_mutations(self):
        async def scenario() -> Coordinator:
            doc, _scanner, coord = _setup()
            doc.append(doc.root, Element('x', style={'background-color': '#444444'}))
            doc.load_stylesheet({})
            await coord.wait_idle()
            return coord

        coord = asyncio.run(scenario())
        assert coord.batches_applied == 1
        assert coord.last_report is not None
        assert coord.last_report.kind == 'rescan'


class BrokenWalkDocument(Document):
    """Cannot walk below elements named in `broken`, or below anything when `fail_all` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.broken: set[str] = set()
        self.fail_all = False

    def iter_subtree(self, element: Any):
        if self.fail_all or element.name in self.broken:
            raise RuntimeError('tree walk failed')
        return super().iter_subtree(element)


class UnorderedDocument(Document):
    def compare_order(self, a: Any, b: Any) -> int:
        raise RuntimeError('no document order')


class TestFailureSemantics:
    def test_unwalkable_root_does_not_sink_the_batch(self):
        async def scenario() -> tuple[Document, Coordinator]:
            doc = BrokenWalkDocument()
            doc.broken = {'bad'}
            doc, _scanner, coord = _setup(doc)
            doc.append(doc.root, Element('bad', style={'background-color': '#444444'}))
            doc.append(doc.root, Element('good', style={'background-color': '#444444'}))
            await coord.wait_idle()
            return doc, coord

        doc, coord = asyncio.run(scenario())
        assert coord.batches_applied == 1
        assert BACKGROUND in doc.find('good').inline
        assert doc.find('bad').inline == {}
        assert coord.last_report is not None
        assert coord.last_report.recoloured == 1
        assert coord.last_report.failed == 1
        assert coord.last_report.roots == 2

    def test_failing_comparator_keeps_arrival_order(self):
        doc = UnorderedDocument()
        doc, _scanner, coord = _setup(doc)
        doc.append(doc.root, Element('first', style={'background-color': '#444444'}))
        doc.append(doc.root, Element('second', style={'background-color': '#999999'}))
        report = coord.flush()
        assert report is not None
        assert report.recoloured == 2
        assert [el.name for el, _a, _v in doc.writes] == ['first', 'second']

    def test_failed_rescan_returns_to_idle(self):
        async def scenario() -> Coordinator:
            doc = BrokenWalkDocument()
            doc, _scanner, coord = _setup(doc)
            doc.fail_all = True
            doc.load_stylesheet({})
            await coord.wait_idle()
            doc.fail_all = False
            doc.append(doc.root, Element('y', style={'background-color': '#444444'}))
            await coord.wait_idle()
            return coord

        coord = asyncio.run(scenario())
        assert coord.state is State.IDLE
        assert coord.batches_applied == 2
        assert coord.last_report is not None
        assert coord.last_report.kind == 'batch'
        assert coord.last_report.recoloured == 1

    def test_direct_notify_of_foreign_mutation(self):
        doc, _scanner, coord = _setup()
        el = doc.append(doc.root, Element('x', style={'background-color': '#444444'}))
        coord.flush()
        coord.notify(Mutation.attribute_changed(el, BACKGROUND))
        assert coord.state is State.BATCHING
        coord.flush()
        assert coord.state is State.IDLE

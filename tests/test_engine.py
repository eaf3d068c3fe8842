"""End-to-end tests for greytone.engine with the in-memory document."""

import asyncio
import json
import logging
import os
from pathlib import Path

import pytest
from greytone.core.config import EngineConfig
from greytone.core.types import BACKGROUND, FOREGROUND
from greytone.engine import Engine, resolve_policy
from greytone.settings import JsonFileSettings, MemorySettings
from greytone.tree import Document, Element

EIGHT_TONES = ['#101010', '#303030', '#505050', '#707070', '#909090', '#B0B0B0', '#D0D0D0', '#F0F0F0']


def _page() -> Document:
    return Document.from_dict(
        {
            'name': 'body',
            'style': {'background-color': 'rgb(128, 128, 128)', 'color': 'rgb(200, 30, 30)'},
            'children': [
                {'name': 'logo', 'style': {'background-color': 'rgb(40, 90, 200)'}},
                {'name': 'sidebar', 'style': {'background-color': 'rgb(230, 230, 230)'}, 'size': [0, 400]},
            ],
        }
    )


def _engine(doc: Document, **settings) -> Engine:
    values = {'palette': EIGHT_TONES, 'attributes': [BACKGROUND]}
    values.update(settings)
    return Engine(doc, settings=MemorySettings(values), environ={})


class TestStartup:
    def test_mid_grey_maps_to_nearest_tone(self):
        doc = _page()
        engine = _engine(doc)
        report = asyncio.run(engine.start())
        assert doc.root.inline[BACKGROUND] == '#707070'
        assert report.kind == 'startup'
        assert report.recoloured == 1
        assert report.invisible == 1

    def test_chromatic_left_alone(self):
        doc = _page()
        asyncio.run(_engine(doc).start())
        assert doc.find('logo').inline == {}

    def test_palette_is_extended(self):
        doc = _page()
        engine = _engine(doc)
        asyncio.run(engine.start())
        assert engine.palette is not None
        assert len(engine.palette) == len(EIGHT_TONES) + 2
        assert engine.palette.hexes[0] == '#0D0D0D'
        assert engine.palette.hexes[-1] == '#F3F3F3'

    def test_start_twice(self):
        engine = _engine(_page())

        async def scenario():
            await engine.start()
            await engine.start()

        with pytest.raises(RuntimeError, match='already started'):
            asyncio.run(scenario())

    def test_fixed_config(self):
        doc = _page()
        engine = Engine(doc, config=EngineConfig(palette=('#000000', '#FFFFFF'), attributes=(BACKGROUND,)))
        asyncio.run(engine.start())
        assert doc.root.inline[BACKGROUND] == '#000000'

    def test_settings_file(self, tmp_path: Path):
        path = tmp_path / 'settings.json'
        path.write_text(json.dumps({'palette': ['#000000', '#FFFFFF'], 'tolerance': 0}))
        doc = _page()
        engine = Engine(doc, settings=JsonFileSettings(path), environ={})
        asyncio.run(engine.start())
        assert engine.config is not None
        assert engine.config.tolerance == 0
        assert doc.root.inline[BACKGROUND] == '#000000'

    def test_environment_layer(self):
        doc = _page()
        engine = Engine(doc, environ={'GREYTONE_PALETTE': '#000000,#FFFFFF', 'GREYTONE_ATTRIBUTES': 'background-color'})
        asyncio.run(engine.start())
        assert doc.root.inline[BACKGROUND] == '#000000'

    def test_unknown_policy_falls_back(self, caplog: pytest.LogCaptureFixture):
        doc = _page()
        with caplog.at_level(logging.WARNING, logger='greytone.engine'):
            asyncio.run(_engine(doc, policy='sepia').start())
        assert 'Unknown policy: sepia' in caplog.text
        assert doc.root.inline[BACKGROUND] == '#707070'

    def test_unusable_palette_uses_fallback(self):
        doc = _page()
        engine = _engine(doc, palette=['not-a-colour'])
        asyncio.run(engine.start())
        assert engine.palette is not None
        assert len(engine.palette) == 10

    def test_resolve_policy(self):
        assert resolve_policy('range').name == 'range'
        assert resolve_policy('missing').name == 'direct'


class TestDotenv:
    @pytest.fixture
    def project(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
        clean = {k: v for k, v in os.environ.items() if not k.startswith('GREYTONE_')}
        monkeypatch.setattr(os, 'environ', clean)
        (tmp_path / '.git').mkdir()
        (tmp_path / '.env').write_text('GREYTONE_TOLERANCE=3\nGREYTONE_POLICY=range\n')
        monkeypatch.chdir(tmp_path)
        return tmp_path

    def test_dotenv_read_when_no_environ_given(self, project: Path):
        engine = Engine(_page(), settings=MemorySettings({'palette': EIGHT_TONES}))
        asyncio.run(engine.start())
        assert engine.config is not None
        assert engine.config.tolerance == 3
        assert engine.config.policy == 'range'

    def test_settings_still_win_over_dotenv(self, project: Path):
        engine = Engine(_page(), settings=MemorySettings({'tolerance': 9}))
        asyncio.run(engine.start())
        assert engine.config is not None
        assert engine.config.tolerance == 9
        assert engine.config.policy == 'range'

    def test_explicit_environ_skips_dotenv(self, project: Path):
        engine = Engine(_page(), environ={})
        asyncio.run(engine.start())
        assert engine.config is not None
        assert engine.config.tolerance == 20
        assert 'GREYTONE_TOLERANCE' not in os.environ


class TestIncremental:
    def test_inserted_grey_recoloured(self):
        doc = _page()
        engine = _engine(doc)

        async def scenario():
            await engine.start()
            doc.append(doc.root, Element('toast', style={'background-color': 'rgb(128, 128, 128)'}))
            await engine.wait_idle()

        asyncio.run(scenario())
        assert doc.find('toast').inline[BACKGROUND] == '#707070'

    def test_stable_over_many_rescans(self):
        doc = _page()
        engine = _engine(doc)

        async def scenario():
            await engine.start()
            writes = len(doc.writes)
            for _ in range(100):
                assert engine.coordinator is not None
                engine.coordinator.notify_stylesheet_loaded()
                await engine.wait_idle()
            return writes

        writes = asyncio.run(scenario())
        assert len(doc.writes) == writes
        assert doc.root.inline[BACKGROUND] == '#707070'
        assert engine.coordinator is not None
        assert engine.coordinator.batches_applied == 100

    def test_mutation_before_start_covered_by_startup_scan(self):
        doc = _page()
        engine = _engine(doc)
        doc.append(doc.root, Element('early', style={'background-color': '#808080'}))
        asyncio.run(engine.start())
        assert doc.find('early').inline[BACKGROUND] == '#707070'

    def test_foreground_tracked_by_default(self):
        doc = Document.from_dict({'name': 'body', 'style': {'color': 'rgb(128, 128, 128)'}})
        engine = Engine(doc, settings=MemorySettings({'palette': EIGHT_TONES}), environ={})
        asyncio.run(engine.start())
        assert doc.root.inline[FOREGROUND] == '#707070'


class TestReload:
    def test_new_palette_remaps_from_source(self):
        doc = _page()
        settings = MemorySettings({'palette': EIGHT_TONES, 'attributes': [BACKGROUND]})
        engine = Engine(doc, settings=settings, environ={})

        async def scenario():
            await engine.start()
            await settings.set({'palette': ['#000000', '#FFFFFF']})
            return await engine.reload()

        report = asyncio.run(scenario())
        assert report.kind == 'reload'
        assert doc.root.inline[BACKGROUND] == '#000000'
        assert engine.mapping is not None
        assert engine.mapping.as_hex() == {'#808080': '#000000'}

    def test_reload_before_start(self):
        with pytest.raises(RuntimeError, match='not started'):
            asyncio.run(_engine(_page()).reload())

    def test_remap_without_scanner(self):
        with pytest.raises(RuntimeError, match='not started'):
            _engine(_page())._remap(EngineConfig(), 'reload')


class TestLookup:
    def test_grey(self):
        engine = _engine(_page())
        asyncio.run(engine.start())
        assert engine.lookup('rgb(128, 128, 128)') == '#707070'

    def test_not_grey(self):
        engine = _engine(_page())
        asyncio.run(engine.start())
        assert engine.lookup('rgb(200, 30, 30)') is None

    def test_before_start(self):
        assert _engine(_page()).lookup('#808080') is None

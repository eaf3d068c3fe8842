"""Engine — owns the palette, mapping, scanner and coordinator for one tree.

    engine = Engine(document, settings=JsonFileSettings('settings.json'))
    await engine.start()      # load config, build palette, full scan, then watch
    ...
    await engine.wait_idle()  # all queued batches applied

start() awaits the settings store before touching the tree; nothing is
recoloured until the palette exists. The startup scan collects every grey
first so the mapping (and, for the range policy, the observed luminance
range) is built from the whole page before anything is written.

reload() rereads settings and builds a fresh palette and mapping on purpose;
that is the only way a mapping is ever replaced.

Without an explicit `environ`, configuration loading first merges any .env
file into os.environ (greytone.core.env.load_env), then reads GREYTONE_*.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from greytone import registry
from greytone.coordinator import Coordinator
from greytone.core.colour import is_achromatic, parse_colour
from greytone.core.config import DEFAULT_POLICY, EngineConfig, load_config
from greytone.core.env import load_env
from greytone.core.palette import Palette, base_palette, build_palette
from greytone.core.report import format_text
from greytone.core.types import STYLE_ATTRIBUTES, HostTree, Policy, ScanReport
from greytone.mapper import GreyMapping
from greytone.scanner import Scanner
from greytone.settings import MemorySettings

logger = logging.getLogger(__name__)


def resolve_policy(name: str) -> Policy:
    """Registered policy by name, or the default one with a warning."""
    try:
        return registry.get(name)
    except KeyError as e:
        logger.warning('%s; using %r', e.args[0], DEFAULT_POLICY)
        return registry.get(DEFAULT_POLICY)


class Engine:
    def __init__(
        self,
        tree: HostTree,
        settings: Any = None,
        config: EngineConfig | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.tree = tree
        self.settings = settings if settings is not None else MemorySettings()
        self.environ = environ
        self._fixed_config = config
        self.config: EngineConfig | None = None
        self.palette: Palette | None = None
        self.mapping: GreyMapping | None = None
        self.scanner: Scanner | None = None
        self.coordinator: Coordinator | None = None
        self.startup_report: ScanReport | None = None

    async def _load_config(self) -> EngineConfig:
        if self._fixed_config is not None:
            return self._fixed_config
        values = await self.settings.get()
        if self.environ is None:
            load_env()
        return load_config(values, self.environ)

    def _remap(self, config: EngineConfig, kind: str) -> ScanReport:
        """Build palette and mapping from a fresh collection pass, then write."""
        if self.scanner is None:
            raise RuntimeError('Engine not started')
        self.palette = build_palette(base_palette(config.palette, config.palette_file), config.extension)
        policy = resolve_policy(config.policy)

        report = ScanReport(kind=kind)
        self.scanner.invalidate()
        candidates = self.scanner.collect(report=report)
        self.mapping = GreyMapping(self.palette, policy, [c.source for c in candidates])
        self.scanner.mapping = self.mapping
        self.scanner.apply(candidates, report)
        logger.info(format_text(report))
        return report

    async def start(self) -> ScanReport:
        """Load configuration, recolour the whole tree once, then start watching it."""
        if self.coordinator is not None:
            raise RuntimeError('Engine already started')
        config = await self._load_config()
        self.config = config
        self.scanner = Scanner(self.tree, None, config.tolerance, config.attributes)
        self.startup_report = self._remap(config, 'startup')

        self.coordinator = Coordinator(self.tree, self.scanner)
        self.tree.subscribe(self.coordinator)
        self.coordinator.activate()
        return self.startup_report

    async def reload(self) -> ScanReport:
        """Reread settings and remap every grey against a new palette and mapping."""
        if self.scanner is None or self.coordinator is None:
            raise RuntimeError('Engine not started')
        config = await self._load_config()
        self.config = config
        self.scanner.tolerance = config.tolerance
        self.scanner.attributes = tuple(config.attributes)
        self.coordinator.watched = frozenset(STYLE_ATTRIBUTES) | frozenset(config.attributes)
        return self._remap(config, 'reload')

    async def wait_idle(self) -> None:
        if self.coordinator is not None:
            await self.coordinator.wait_idle()

    def lookup(self, colour_string: str) -> str | None:
        """Replacement hex for a grey colour string, or None if it is not grey."""
        if self.mapping is None or self.config is None:
            return None
        colour = parse_colour(colour_string)
        if not is_achromatic(colour, self.config.tolerance):
            return None
        return self.mapping.lookup(colour).hex

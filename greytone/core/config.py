"""Engine configuration.

Values are layered, first wins:
  1. persisted settings (greytone.settings store, keys below)
  2. GREYTONE_* environment variables (after load_env() has merged any .env)
  3. defaults

Keys: palette, palette_file, tolerance, policy, extension, attributes.
A value that cannot be converted is logged and the next layer is used.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from greytone.core.env import greytone_environ
from greytone.core.palette import DEFAULT_EXTENSION
from greytone.core.types import TRACKED_ATTRIBUTES

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 20
DEFAULT_POLICY = 'direct'


@dataclass(frozen=True)
class EngineConfig:
    palette: tuple[str, ...] | None = None  # explicit base palette hexes
    palette_file: str | None = None  # JSON list of hexes
    tolerance: int = DEFAULT_TOLERANCE  # max channel spread for a grey
    policy: str = DEFAULT_POLICY  # 'direct' or 'range'
    extension: float = DEFAULT_EXTENSION  # endpoint synthesis factor
    attributes: tuple[str, ...] = TRACKED_ATTRIBUTES


def _split(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(',') if part.strip())
    return tuple(str(v) for v in value)


def _tolerance(value: Any) -> int:
    n = int(value)
    if n < 0:
        raise ValueError('tolerance must be >= 0')
    return n


def _extension(value: Any) -> float:
    x = float(value)
    if not 0.0 <= x <= 1.0:
        raise ValueError('extension must be within [0, 1]')
    return x


_CONVERTERS: dict[str, Callable[[Any], Any]] = {
    'palette': _split,
    'palette_file': str,
    'tolerance': _tolerance,
    'policy': lambda v: str(v).strip().lower(),
    'extension': _extension,
    'attributes': _split,
}


def load_config(
    settings: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineConfig:
    """Build an EngineConfig from settings, then environment, then defaults."""
    layers = [dict(settings or {}), greytone_environ(environ)]
    values: dict[str, Any] = {}
    for key, convert in _CONVERTERS.items():
        for layer in layers:
            if key not in layer or layer[key] in (None, ''):
                continue
            try:
                values[key] = convert(layer[key])
                break
            except (TypeError, ValueError) as e:
                logger.warning('ignoring config %s=%r (%s)', key, layer[key], e)
    if 'palette' in values and not values['palette']:
        del values['palette']
    if 'attributes' in values and not values['attributes']:
        del values['attributes']
    return EngineConfig(**values)

"""Persisted settings — async get/set of a flat key → value mapping.

Both stores fail closed: get() returns {} and set() returns False on any
error, after logging it. Nothing here raises into the engine.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class MemorySettings:
    """Process-local store, for embedding and tests."""

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self) -> dict[str, Any]:
        return dict(self._data)

    async def set(self, values: Mapping[str, Any]) -> bool:
        self._data.update(values)
        return True


class JsonFileSettings:
    """Settings kept in one JSON object file. set() merges into what is there."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding='utf-8'))
        if not isinstance(data, dict):
            raise ValueError(f'{self.path} does not hold a JSON object')
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + '.tmp')
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding='utf-8')
        tmp.replace(self.path)

    async def get(self) -> dict[str, Any]:
        try:
            return await asyncio.to_thread(self._read)
        except (OSError, ValueError) as e:
            logger.error('error getting settings from %s: %s', self.path, e)
            return {}

    async def set(self, values: Mapping[str, Any]) -> bool:
        async with self._lock:
            try:
                data = await asyncio.to_thread(self._read)
                data.update(values)
                await asyncio.to_thread(self._write, data)
            except (OSError, TypeError, ValueError) as e:
                logger.error('error saving settings to %s: %s', self.path, e)
                return False
        logger.debug('settings saved to %s', self.path)
        return True

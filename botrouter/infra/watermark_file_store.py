# botrouter/infra/watermark_file_store.py
"""
JSON file persistence for watermark snapshots.

Writes go to a temp file next to the target and are moved into place with
``os.replace`` so a crash mid-write never leaves a truncated snapshot.
An ``asyncio.Lock`` serializes writers: a new snapshot waits for the one
in flight instead of racing it.
"""
from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import Optional

from botrouter.core.errors import PersistenceFailure
from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)


class WatermarkFileStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    async def load(self) -> Optional[dict]:
        async with self._lock:
            return await asyncio.to_thread(self._read)

    async def save(self, snapshot: dict) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write, snapshot)

    def _read(self) -> Optional[dict]:
        if not self.path.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(f"Failed to read watermark file {self.path}", exc_info=True)
            raise PersistenceFailure(f"read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceFailure(f"read {self.path}: snapshot is not an object")
        return data

    def _write(self, snapshot: dict) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(snapshot, fh, ensure_ascii=False)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.error(f"Failed to write watermark file {self.path}", exc_info=True)
            raise PersistenceFailure(f"write {self.path}: {exc}") from exc
        logger.debug(f"Watermark snapshot written: {self.path}")

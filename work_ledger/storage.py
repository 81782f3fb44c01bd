"""
work_ledger/storage.py

Local JSON persistence: one file per work record and a single snapshot file
for the block chain. Writes are synchronous and best-effort; a failed write
is logged and the caller keeps its in-memory state.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List

from pydantic import TypeAdapter, ValidationError

from .blocks import Block
from .records import WorkRecord

logger = logging.getLogger(__name__)

_BLOCK_LIST = TypeAdapter(List[Block])


class StorageError(RuntimeError):
    """Raised when a storage location cannot be prepared."""


class ChainCorruptError(StorageError):
    """Raised when the chain snapshot cannot be parsed."""


def ensure_directory(path: Path) -> Path:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(f"Cannot create storage directory {path}: {e}") from e
    return path


def _atomic_write(path: Path, payload: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class RecordStore:
    """Stores each WorkRecord as ``<id>.json`` inside one directory."""

    def __init__(self, directory: str | Path):
        self.directory = ensure_directory(Path(directory))

    def path_for(self, record_id: str) -> Path:
        return self.directory / f"{record_id}.json"

    def save(self, record: WorkRecord) -> bool:
        path = self.path_for(record.id)
        try:
            _atomic_write(path, json.dumps(record.model_dump(mode="json"), indent=2))
        except OSError as e:
            logger.error(f"Failed to persist record {record.id} to {path}: {e}")
            return False
        logger.debug(f"Persisted record {record.id} -> {path}")
        return True

    def load_all(self) -> List[WorkRecord]:
        records = []
        for path in sorted(self.directory.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                records.append(WorkRecord.model_validate(data))
            except (OSError, ValueError, ValidationError) as e:
                logger.warning(f"Skipping unreadable record file {path.name}: {e}")
        return records


class ChainStore:
    """Whole-chain snapshot, rewritten after every sealed block."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        ensure_directory(self.path.parent)

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, blocks: List[Block]) -> bool:
        payload = json.dumps([b.model_dump(mode="json") for b in blocks], indent=2)
        try:
            _atomic_write(self.path, payload)
        except OSError as e:
            logger.error(f"Failed to persist chain ({len(blocks)} blocks) to {self.path}: {e}")
            return False
        return True

    def load(self) -> List[Block]:
        if not self.path.exists():
            return []
        try:
            return _BLOCK_LIST.validate_json(self.path.read_bytes())
        except (OSError, ValueError, ValidationError) as e:
            raise ChainCorruptError(f"Cannot read chain snapshot {self.path}: {e}") from e

    def quarantine(self, suffix: str) -> Path:
        """Move an unreadable snapshot aside so a fresh chain can start."""
        target = self.path.with_name(f"{self.path.name}.corrupt-{suffix}")
        os.replace(self.path, target)
        return target

"""
work_ledger/tracker.py

Tracks agent tasks from start to a terminal state, scores them, keeps
aggregate statistics and persists every finalized record.

Usage:
    tracker = WorkTracker("./data")
    record = tracker.start_task("agent-1", "Refactor parser", TaskType.CODING)
    tracker.complete_task(record, TaskResult(code_lines=120, tokens_input=4000))

    stats = tracker.get_stats()
    latest = tracker.get_records(limit=10)
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from .records import Stats, TaskResult, TaskStatus, TaskType, WorkRecord, now_ms
from .storage import RecordStore
from .valuation import Attestation, ValueModel, combined_attestation, compute_proof_hash, verify_proof
from .wallet import Signer

logger = logging.getLogger(__name__)

RecordRef = Union[WorkRecord, str]


class InvalidTransitionError(RuntimeError):
    """Raised when a finalized record is completed or failed again."""


class RecordNotFoundError(KeyError):
    """Raised for record ids the tracker does not know."""


def generate_record_id() -> str:
    """Random 128-bit record id, hex encoded."""
    return hashlib.sha256(secrets.token_bytes(32)).hexdigest()[:32]


class WorkTracker:
    """
    Owner of all WorkRecords and the Stats derived from them.

    One lock guards the record map and the stats. Every public method takes
    it and hands back copies, so callers never hold live state.
    """

    def __init__(
        self,
        data_dir: str | Path,
        value_model: Optional[ValueModel] = None,
        signer: Optional[Signer] = None,
    ):
        self.data_dir = Path(data_dir)
        self.value_model = value_model or ValueModel()
        self.signer = signer
        self.store = RecordStore(self.data_dir / "records")

        self._lock = threading.RLock()
        self._records: Dict[str, WorkRecord] = {}
        self._stats = Stats()
        self._load()

    def _load(self) -> None:
        loaded = self.store.load_all()
        with self._lock:
            for record in loaded:
                self._records[record.id] = record
            self._stats = Stats.from_records(self._records.values(), self.value_model)
        logger.info(
            f"WorkTracker loaded {len(loaded)} records from {self.store.directory}: "
            f"total_tasks={self._stats.total_tasks}, total_value={self._stats.total_value:.4f}"
        )

    def _resolve(self, record: RecordRef) -> WorkRecord:
        record_id = record if isinstance(record, str) else record.id
        try:
            return self._records[record_id]
        except KeyError:
            raise RecordNotFoundError(record_id) from None

    @staticmethod
    def _require_pending(record: WorkRecord, action: str) -> None:
        if record.status != TaskStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot {action} record {record.id}: status is {record.status.value}"
            )

    # === Commands ===

    def start_task(
        self,
        agent_id: str,
        description: str,
        task_type: TaskType | str,
    ) -> WorkRecord:
        task_type = TaskType(task_type)
        with self._lock:
            record_id = generate_record_id()
            while record_id in self._records:
                record_id = generate_record_id()

            record = WorkRecord(
                id=record_id,
                agent_id=agent_id,
                task_type=task_type,
                description=description,
                status=TaskStatus.PENDING,
                started_at=now_ms(),
            )
            self._records[record.id] = record
            logger.info(f"Task started: id={record.id}, agent={agent_id}, type={task_type.value}")
            return record.model_copy()

    def complete_task(self, record: RecordRef, result: TaskResult) -> WorkRecord:
        with self._lock:
            current = self._resolve(record)
            self._require_pending(current, "complete")

            # Finalize a copy; the live record stays pending if any step raises.
            done = current.model_copy()
            done.apply_result(result)
            done.status = TaskStatus.COMPLETED
            done.completed_at = now_ms()
            done.proof_hash = compute_proof_hash(done)
            done.value = self.value_model.value(done)
            if self.signer is not None:
                done.signature = self.signer.sign(done.proof_hash)

            self._records[done.id] = done
            self._stats.fold(done, done.value)
            self.store.save(done)

            logger.info(
                f"Task completed: id={done.id}, type={done.task_type.value}, "
                f"value={done.value:.4f}, proof={done.proof_hash[:16]}"
            )
            return done.model_copy()

    def fail_task(self, record: RecordRef, message: str) -> WorkRecord:
        with self._lock:
            current = self._resolve(record)
            self._require_pending(current, "fail")

            current = current.model_copy(update={
                "status": TaskStatus.FAILED,
                "completed_at": now_ms(),
                "description": f"{current.description} [ERROR: {message}]",
            })
            self._records[current.id] = current

            self._stats.fold(current)
            self.store.save(current)

            logger.info(f"Task failed: id={current.id}, type={current.task_type.value}, error={message}")
            return current.model_copy()

    # === Queries ===

    def get_stats(self) -> Stats:
        with self._lock:
            return self._stats.snapshot()

    def get_record(self, record_id: str) -> Optional[WorkRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy() if record else None

    def get_records(self, limit: int = 0) -> List[WorkRecord]:
        """Records by completion time, newest first. ``limit <= 0`` returns all."""
        with self._lock:
            records = sorted(self._records.values(), key=lambda r: r.completed_at, reverse=True)
            if limit > 0:
                records = records[:limit]
            return [r.model_copy() for r in records]

    def attestation(self, limit: int = 100) -> Attestation:
        """Combined hash over the proofs of the ``limit`` most recent records."""
        with self._lock:
            proofs = [r.proof_hash for r in self.get_records() if r.proof_hash]
        if limit > 0:
            proofs = proofs[:limit]
        return combined_attestation(proofs)

    def verify_records(self) -> List[str]:
        """Ids of completed records whose proof hash no longer matches."""
        with self._lock:
            return [
                r.id for r in self._records.values()
                if r.status == TaskStatus.COMPLETED and not verify_proof(r)
            ]

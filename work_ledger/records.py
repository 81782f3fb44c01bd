"""
work_ledger/records.py

Data model for tracked agent work: task types, the WorkRecord lifecycle,
completion results and aggregate statistics.
"""

from __future__ import annotations

import bisect
import math
import time
from enum import Enum
from typing import Dict, Iterable, List, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field, PrivateAttr

if TYPE_CHECKING:
    from .valuation import ValueModel


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return time.time_ns() // 1_000_000


class TaskType(str, Enum):
    """Closed set of task classifications supplied by upstream telemetry."""
    CODING = "coding"
    WRITING = "writing"
    RESEARCH = "research"
    DEBUG = "debug"
    DEPLOY = "deploy"
    REVIEW = "review"
    DOC = "doc"
    ANALYSIS = "analysis"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskResult(BaseModel):
    """Metrics reported by the upstream source when a task finishes."""
    tokens_input: int = Field(default=0, ge=0)
    tokens_output: int = Field(default=0, ge=0)
    code_lines: int = Field(default=0, ge=0)
    code_files: int = Field(default=0, ge=0)
    words_written: int = Field(default=0, ge=0)
    bugs_fixed: int = Field(default=0, ge=0)
    api_calls: int = Field(default=0, ge=0)
    errors_fixed: int = Field(default=0, ge=0)


class WorkRecord(BaseModel):
    id: str
    agent_id: str
    task_type: TaskType
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    started_at: int = 0  # Unix ms
    completed_at: int = 0  # Unix ms, 0 while pending

    # Metrics
    tokens_input: int = Field(default=0, ge=0)
    tokens_output: int = Field(default=0, ge=0)
    code_lines: int = Field(default=0, ge=0)
    code_files: int = Field(default=0, ge=0)
    words_written: int = Field(default=0, ge=0)
    bugs_fixed: int = Field(default=0, ge=0)
    api_calls: int = Field(default=0, ge=0)
    errors_fixed: int = Field(default=0, ge=0)

    # Proof
    proof_hash: str = ""
    signature: Optional[str] = None
    value: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status != TaskStatus.PENDING

    @property
    def total_tokens(self) -> int:
        return self.tokens_input + self.tokens_output

    def apply_result(self, result: TaskResult) -> None:
        """Copy completion metrics onto a pending record."""
        for name, amount in result.model_dump().items():
            setattr(self, name, amount)


class Stats(BaseModel):
    """
    Aggregate counters over finalized records.

    Folding is additive, so any load order gives the same counters.
    ``total_value`` is the ``math.fsum`` of every folded value, so it is exact
    regardless of order and identical between a live tracker and one rebuilt
    from disk. The folded values are kept sorted so that equal record sets
    give equal Stats.
    """
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    total_tokens: int = 0
    total_code_lines: int = 0
    total_words: int = 0
    bugs_fixed: int = 0
    total_value: float = 0.0
    by_task_type: Dict[str, int] = Field(default_factory=dict)

    _values: List[float] = PrivateAttr(default_factory=list)

    def fold(self, record: WorkRecord, value: float = 0.0) -> None:
        """
        Add one finalized record.

        Completed records contribute to every counter and ``value`` is added
        to the total. Failed records only bump the task and failure counts.
        Pending records are ignored.
        """
        if record.status == TaskStatus.FAILED:
            self.total_tasks += 1
            self.failed_tasks += 1
            return
        if record.status != TaskStatus.COMPLETED:
            return

        self.total_tasks += 1
        self.completed_tasks += 1
        self.total_tokens += record.total_tokens
        self.total_code_lines += record.code_lines
        self.total_words += record.words_written
        self.bugs_fixed += record.bugs_fixed
        bisect.insort(self._values, value)
        self.total_value = math.fsum(self._values)
        key = record.task_type.value
        self.by_task_type[key] = self.by_task_type.get(key, 0) + 1

    @classmethod
    def from_records(cls, records: Iterable[WorkRecord], model: "ValueModel") -> "Stats":
        stats = cls()
        for record in records:
            if record.status == TaskStatus.COMPLETED:
                stats.fold(record, model.value(record))
            else:
                stats.fold(record)
        return stats

    def snapshot(self) -> "Stats":
        return self.model_copy(deep=True)

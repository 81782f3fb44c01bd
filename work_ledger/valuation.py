"""
work_ledger/valuation.py

Value scoring and proof hashing for finished work records.

The value formula:
    base      = weight(task_type) * (1.0 if completed else 0.3)
    code      = code_lines * 0.01 + bugs_fixed * 5.0
    words     = words_written * 0.001
    api       = 10 / api_calls            (completed tasks with api_calls > 0)
    token     = (tokens_input + tokens_output) * 0.0001
    value     = base + code + words + api - token

The proof hash is SHA-256 over a pipe-delimited canonical payload. Anyone
holding the record fields can recompute it, so the payload format must never
change.
"""

from __future__ import annotations

import hashlib
from typing import Dict, Iterable, List

from pydantic import BaseModel, ConfigDict, Field

from .records import TaskStatus, TaskType, WorkRecord


DEFAULT_WEIGHTS: Dict[TaskType, float] = {
    TaskType.CODING: 1.5,
    TaskType.DEBUG: 2.0,
    TaskType.DEPLOY: 1.8,
    TaskType.REVIEW: 1.2,
    TaskType.WRITING: 1.0,
    TaskType.RESEARCH: 1.3,
    TaskType.DOC: 0.8,
    TaskType.ANALYSIS: 1.4,
}


class ValueBreakdown(BaseModel):
    """Individual terms of a record's value."""
    base: float
    code: float
    words: float
    api_efficiency: float
    token_cost: float

    @property
    def total(self) -> float:
        return self.base + self.code + self.words + self.api_efficiency - self.token_cost


class ValueModel(BaseModel):
    """Immutable scoring configuration."""
    model_config = ConfigDict(frozen=True)

    weights: Dict[TaskType, float] = Field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    default_weight: float = 1.0
    code_rate: float = 0.01
    bug_bonus: float = 5.0
    word_rate: float = 0.001
    token_rate: float = 0.0001
    api_efficiency_numerator: float = 10.0
    completed_multiplier: float = 1.0
    failed_multiplier: float = 0.3

    def weight(self, task_type: TaskType) -> float:
        return self.weights.get(task_type, self.default_weight)

    def breakdown(self, record: WorkRecord) -> ValueBreakdown:
        completed = record.status == TaskStatus.COMPLETED
        multiplier = self.completed_multiplier if completed else self.failed_multiplier

        code = record.code_lines * self.code_rate
        if record.bugs_fixed > 0:
            code += record.bugs_fixed * self.bug_bonus

        api_efficiency = 0.0
        if record.api_calls > 0 and completed:
            api_efficiency = self.api_efficiency_numerator / record.api_calls

        return ValueBreakdown(
            base=self.weight(record.task_type) * multiplier,
            code=code,
            words=record.words_written * self.word_rate,
            api_efficiency=api_efficiency,
            token_cost=record.total_tokens * self.token_rate,
        )

    def value(self, record: WorkRecord) -> float:
        return self.breakdown(record).total


def proof_payload(record: WorkRecord) -> str:
    """Canonical string the proof hash is computed over."""
    fields = [
        record.agent_id,
        record.task_type.value,
        record.description,
        record.status.value,
        str(record.tokens_input),
        str(record.tokens_output),
        str(record.code_lines),
        str(record.words_written),
        str(record.bugs_fixed),
        str(record.completed_at),
    ]
    return "|".join(fields)


def compute_proof_hash(record: WorkRecord) -> str:
    return hashlib.sha256(proof_payload(record).encode("utf-8")).hexdigest()


def verify_proof(record: WorkRecord) -> bool:
    """Check a record's stored proof hash against a fresh computation."""
    if not record.proof_hash:
        return False
    return compute_proof_hash(record) == record.proof_hash


class Attestation(BaseModel):
    """Combined proof over a set of records, most recent first."""
    record_count: int
    proof_hashes: List[str]
    combined_hash: str


def combined_attestation(proof_hashes: Iterable[str]) -> Attestation:
    hashes = list(proof_hashes)
    combined = hashlib.sha256("".join(hashes).encode("utf-8")).hexdigest()
    return Attestation(
        record_count=len(hashes),
        proof_hashes=hashes,
        combined_hash=combined,
    )

"""
work_ledger/blocks.py

Reward blocks and the hash chain that links them.
"""

from __future__ import annotations

import hashlib
from typing import List, Sequence

from pydantic import BaseModel, Field


def block_hash(
    index: int,
    timestamp: int,
    work_proof: str,
    previous_hash: str,
    miner: str,
    value: float,
) -> str:
    """SHA-256 hex digest of a block's content fields."""
    data = f"{index}{timestamp}{work_proof}{previous_hash}{miner}{value:.6f}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def meets_difficulty(digest: str, difficulty: int) -> bool:
    """True when the digest starts with ``difficulty`` '0' characters."""
    return digest.startswith("0" * difficulty)


class Block(BaseModel):
    index: int = Field(ge=0)
    timestamp: int  # Unix seconds
    work_proof: str  # Winning nonce, decimal
    previous_hash: str = ""
    miner: str
    value: float
    hash: str = ""
    # False when the nonce search ran out of attempts; the hash then does
    # not meet the difficulty.
    sealed: bool = True

    def compute_hash(self) -> str:
        return block_hash(
            self.index,
            self.timestamp,
            self.work_proof,
            self.previous_hash,
            self.miner,
            self.value,
        )


class ChainReport(BaseModel):
    """Result of walking a chain and checking every link."""
    valid: bool
    height: int
    unsealed: List[int] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


def verify_chain(blocks: Sequence[Block], difficulty: int) -> ChainReport:
    """
    Check indices, hashes, links and difficulty for a block sequence.

    Unsealed blocks are reported but do not make the chain invalid: they
    were accepted knowingly after the nonce search was exhausted.
    """
    errors: List[str] = []
    unsealed: List[int] = []
    previous = ""

    for position, block in enumerate(blocks):
        if block.index != position:
            errors.append(f"block at position {position} has index {block.index}")
        if block.previous_hash != previous:
            errors.append(f"block {block.index} does not link to its predecessor")
        if block.compute_hash() != block.hash:
            errors.append(f"block {block.index} hash mismatch")
        if block.sealed:
            if not meets_difficulty(block.hash, difficulty):
                errors.append(f"block {block.index} does not meet difficulty {difficulty}")
        else:
            unsealed.append(block.index)
        previous = block.hash

    return ChainReport(
        valid=not errors,
        height=len(blocks),
        unsealed=unsealed,
        errors=errors,
    )

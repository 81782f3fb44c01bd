"""
Work Ledger - verifiable accounting of completed agent work.

Scores finished agent tasks, binds each one to a reproducible proof hash,
and mints fixed-reward blocks into a local hash-chained ledger.
"""

from .records import (
    TaskType,
    TaskStatus,
    TaskResult,
    WorkRecord,
    Stats,
)
from .valuation import (
    ValueModel,
    ValueBreakdown,
    Attestation,
    DEFAULT_WEIGHTS,
    proof_payload,
    compute_proof_hash,
    verify_proof,
    combined_attestation,
)
from .blocks import Block, ChainReport, block_hash, meets_difficulty, verify_chain
from .storage import RecordStore, ChainStore, StorageError, ChainCorruptError
from .tracker import WorkTracker, InvalidTransitionError, RecordNotFoundError
from .mining import Miner, SealPolicy, ExhaustionPolicy, SealExhaustedError
from .wallet import Signer, Wallet
from .config import LedgerConfig, ConfigLoadError, load_config, configure_logging

__version__ = "0.1.0"

__all__ = [
    # Records
    "TaskType",
    "TaskStatus",
    "TaskResult",
    "WorkRecord",
    "Stats",
    # Valuation and proofs
    "ValueModel",
    "ValueBreakdown",
    "Attestation",
    "DEFAULT_WEIGHTS",
    "proof_payload",
    "compute_proof_hash",
    "verify_proof",
    "combined_attestation",
    # Chain
    "Block",
    "ChainReport",
    "block_hash",
    "meets_difficulty",
    "verify_chain",
    # Storage
    "RecordStore",
    "ChainStore",
    "StorageError",
    "ChainCorruptError",
    # Tracker
    "WorkTracker",
    "InvalidTransitionError",
    "RecordNotFoundError",
    # Mining
    "Miner",
    "SealPolicy",
    "ExhaustionPolicy",
    "SealExhaustedError",
    # Signing
    "Signer",
    "Wallet",
    # Config
    "LedgerConfig",
    "ConfigLoadError",
    "load_config",
    "configure_logging",
]

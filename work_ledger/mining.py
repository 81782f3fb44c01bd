"""
work_ledger/mining.py

Reward ledger with simplified proof-of-work.

Each sealed block pays a fixed reward to the miner's address and links to
its predecessor by hash. Sealing searches nonces 0, 1, 2, ... until the
block hash starts with ``difficulty`` zero characters. The search is bounded
by ``SealPolicy.max_attempts``; what happens when it runs out is an explicit
policy choice:

    ACCEPT  append the block with its last (unsealed) hash, ``sealed=False``
    REJECT  raise SealExhaustedError and append nothing

The full chain is rewritten to ``blocks.json`` after every sealed block.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .blocks import Block, ChainReport, block_hash, meets_difficulty, verify_chain
from .storage import ChainCorruptError, ChainStore
from .wallet import Signer

logger = logging.getLogger(__name__)

DEFAULT_DIFFICULTY = 4
DEFAULT_REWARD = 10.0
DEFAULT_INTERVAL = 10.0


class ExhaustionPolicy(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class SealPolicy(BaseModel):
    """Bound on the nonce search and what to do when it is reached."""
    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=100_000, ge=1)
    on_exhaustion: ExhaustionPolicy = ExhaustionPolicy.ACCEPT


class SealExhaustedError(RuntimeError):
    """Raised under ExhaustionPolicy.REJECT when no nonce met the difficulty."""


class Miner:
    """
    Single owner of a block chain.

    The lock covers the block list and the working flag. Sealing holds it
    for the whole nonce search, so readers wait for an in-flight seal to
    finish rather than observe a half-built chain.
    """

    def __init__(
        self,
        owner: Union[Signer, str],
        data_dir: str | Path,
        difficulty: int = DEFAULT_DIFFICULTY,
        reward: float = DEFAULT_REWARD,
        policy: Optional[SealPolicy] = None,
        interval: float = DEFAULT_INTERVAL,
    ):
        self.address = owner if isinstance(owner, str) else owner.address
        self.difficulty = difficulty
        self.reward = reward
        self.policy = policy or SealPolicy()
        self.interval = interval
        self.store = ChainStore(Path(data_dir) / "blocks.json")

        self._lock = threading.RLock()
        self._working = False
        self._blocks: List[Block] = []
        self._shutdown = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._load()

    def _load(self) -> None:
        try:
            blocks = self.store.load()
        except ChainCorruptError as e:
            moved = self.store.quarantine(str(int(time.time())))
            logger.error(f"{e}; moved to {moved} and starting a new chain")
            blocks = []

        report = verify_chain(blocks, self.difficulty)
        if not report.valid:
            logger.warning(f"Loaded chain failed verification: {report.errors}")
        if report.unsealed:
            logger.warning(f"Loaded chain contains unsealed blocks: {report.unsealed}")

        with self._lock:
            self._blocks = blocks
        logger.info(f"Miner {self.address} loaded {len(blocks)} blocks from {self.store.path}")

    # === Sealing ===

    def seal_block(self) -> Block:
        """Build, seal, append and persist the next block."""
        with self._lock:
            previous_hash = self._blocks[-1].hash if self._blocks else ""
            index = len(self._blocks)
            timestamp = int(time.time())

            digest = ""
            nonce = 0
            sealed = False
            for nonce in range(self.policy.max_attempts):
                digest = block_hash(index, timestamp, str(nonce), previous_hash, self.address, self.reward)
                if meets_difficulty(digest, self.difficulty):
                    sealed = True
                    break

            if not sealed:
                if self.policy.on_exhaustion == ExhaustionPolicy.REJECT:
                    raise SealExhaustedError(
                        f"No nonce below {self.policy.max_attempts} meets difficulty "
                        f"{self.difficulty} for block #{index}"
                    )
                logger.warning(
                    f"Nonce search exhausted after {self.policy.max_attempts} attempts; "
                    f"accepting unsealed block #{index} hash={digest[:16]}"
                )

            block = Block(
                index=index,
                timestamp=timestamp,
                work_proof=str(nonce),
                previous_hash=previous_hash,
                miner=self.address,
                value=self.reward,
                hash=digest,
                sealed=sealed,
            )
            self._blocks.append(block)
            self.store.save(self._blocks)

            logger.info(
                f"Sealed block #{block.index}: nonce={block.work_proof}, "
                f"hash={block.hash[:16]}, reward={block.value:.2f}"
            )
            return block.model_copy()

    # === Cadence ===

    @property
    def is_working(self) -> bool:
        with self._lock:
            return self._working

    def start(self, seal_now: bool = False) -> None:
        """Turn on the cadence; optionally seal one block right away."""
        with self._lock:
            closing = self._thread if self._shutdown.is_set() else None
        if closing is not None:
            # A closed thread may still be finishing a seal; it must exit
            # before the shutdown event is reset for its successor.
            closing.join()

        with self._lock:
            self._working = True
            if self._thread is None or not self._thread.is_alive():
                self._shutdown.clear()
                self._thread = threading.Thread(
                    target=self._run, name=f"miner-{self.address[:8]}", daemon=True
                )
                self._thread.start()
        logger.info(f"Mining started: address={self.address}, interval={self.interval}s")
        if seal_now:
            self.seal_block()

    def stop(self) -> None:
        """Suppress further ticks. A seal already running is left to finish."""
        with self._lock:
            self._working = False
        logger.info(f"Mining stopped: address={self.address}")

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop and end the cadence thread."""
        self.stop()
        self._shutdown.set()
        with self._lock:
            thread = self._thread
        if thread is None:
            return
        thread.join(timeout)
        if thread.is_alive():
            logger.warning(f"Mining thread {thread.name} still running after close timeout")
            return
        with self._lock:
            if self._thread is thread:
                self._thread = None

    def _run(self) -> None:
        while not self._shutdown.wait(self.interval):
            if not self.is_working:
                continue
            try:
                self.seal_block()
            except Exception as e:
                logger.error(f"Sealing failed on cadence tick: {type(e).__name__}: {e}")

    # === Queries ===

    def balance(self, address: Optional[str] = None) -> float:
        address = self.address if address is None else address
        with self._lock:
            return sum(b.value for b in self._blocks if b.miner == address)

    def get_blocks(self) -> List[Block]:
        with self._lock:
            return [b.model_copy() for b in self._blocks]

    @property
    def height(self) -> int:
        with self._lock:
            return len(self._blocks)

    @property
    def last_block(self) -> Optional[Block]:
        with self._lock:
            return self._blocks[-1].model_copy() if self._blocks else None

    def verify(self) -> ChainReport:
        with self._lock:
            return verify_chain(self._blocks, self.difficulty)

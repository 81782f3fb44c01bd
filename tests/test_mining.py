# tests/test_mining.py
"""
Tests for block hashing, sealing, chain verification, balances and the
background mining cadence.
"""

import json
import threading
import time

import pytest

from work_ledger import storage
from work_ledger.blocks import Block, block_hash, meets_difficulty, verify_chain
from work_ledger.mining import (
    ExhaustionPolicy,
    Miner,
    SealExhaustedError,
    SealPolicy,
)
from work_ledger.wallet import Wallet


ADDRESS = "a1b2c3d4e5f6a1b2c3d4e5f6"


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestBlockHash:
    """Tests for the pure block hash function."""

    def test_known_digest(self):
        assert block_hash(0, 1700000000, "0", "", "miner", 10.0) == (
            "7a10befbdeb4649b369dfd09bfb9488389fb98f914f9690cb52bcfdd93b0038f"
        )

    def test_block_compute_hash_matches_function(self):
        block = Block(index=3, timestamp=1700000000, work_proof="42", previous_hash="ff", miner="m", value=10.0)
        assert block.compute_hash() == block_hash(3, 1700000000, "42", "ff", "m", 10.0)

    def test_every_field_is_bound(self):
        base = block_hash(1, 100, "7", "prev", "miner", 10.0)
        assert block_hash(2, 100, "7", "prev", "miner", 10.0) != base
        assert block_hash(1, 101, "7", "prev", "miner", 10.0) != base
        assert block_hash(1, 100, "8", "prev", "miner", 10.0) != base
        assert block_hash(1, 100, "7", "prex", "miner", 10.0) != base
        assert block_hash(1, 100, "7", "prev", "minor", 10.0) != base
        assert block_hash(1, 100, "7", "prev", "miner", 10.5) != base

    def test_meets_difficulty(self):
        assert meets_difficulty("000abc", 3)
        assert not meets_difficulty("00abc0", 3)
        assert meets_difficulty("abc", 0)


class TestSealing:
    """Tests for the nonce search and chain growth."""

    def test_genesis_block(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=2)
        block = miner.seal_block()
        assert block.index == 0
        assert block.previous_hash == ""
        assert block.miner == ADDRESS
        assert block.value == 10.0
        assert block.sealed

    def test_sealed_blocks_meet_difficulty(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=3)
        for _ in range(3):
            block = miner.seal_block()
            assert block.hash.startswith("000")
            assert block.compute_hash() == block.hash

    def test_chain_links(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=2)
        for _ in range(4):
            miner.seal_block()

        blocks = miner.get_blocks()
        assert blocks[0].previous_hash == ""
        for i in range(1, len(blocks)):
            assert blocks[i].index == i
            assert blocks[i].compute_hash() == blocks[i].hash
            assert blocks[i].previous_hash == blocks[i - 1].hash
        assert miner.verify().valid

    def test_winning_nonce_is_first(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=2)
        block = miner.seal_block()
        for nonce in range(int(block.work_proof)):
            digest = block_hash(block.index, block.timestamp, str(nonce), block.previous_hash, ADDRESS, 10.0)
            assert not meets_difficulty(digest, 2)

    def test_balance(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=1, reward=10.0)
        for _ in range(3):
            miner.seal_block()
        assert miner.balance(ADDRESS) == 30.0
        assert miner.balance() == 30.0
        assert miner.balance("someone-else") == 0.0

    def test_wallet_as_owner(self, tmp_path):
        wallet = Wallet.create("miner")
        miner = Miner(wallet, tmp_path, difficulty=1)
        miner.seal_block()
        assert miner.get_blocks()[0].miner == wallet.address
        assert miner.balance(wallet.address) == 10.0

    def test_exhaustion_accepts_unsealed(self, tmp_path):
        policy = SealPolicy(max_attempts=5)
        miner = Miner(ADDRESS, tmp_path, difficulty=64, policy=policy)
        block = miner.seal_block()
        assert not block.sealed
        assert block.work_proof == "4"
        assert block.hash == block.compute_hash()
        assert miner.height == 1

        report = miner.verify()
        assert report.valid
        assert report.unsealed == [0]

    def test_exhaustion_reject(self, tmp_path):
        policy = SealPolicy(max_attempts=5, on_exhaustion=ExhaustionPolicy.REJECT)
        miner = Miner(ADDRESS, tmp_path, difficulty=64, policy=policy)
        with pytest.raises(SealExhaustedError):
            miner.seal_block()
        assert miner.height == 0
        assert not (tmp_path / "blocks.json").exists()

    def test_get_blocks_returns_copies(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=1)
        miner.seal_block()
        miner.get_blocks()[0].value = 1000.0
        assert miner.balance() == 10.0

    def test_balance_of_empty_address(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=1)
        miner.seal_block()
        assert miner.balance("") == 0.0


class TestChainVerification:
    """Tests for verify_chain."""

    def _chain(self, tmp_path, n=3):
        miner = Miner(ADDRESS, tmp_path, difficulty=1)
        for _ in range(n):
            miner.seal_block()
        return miner.get_blocks()

    def test_detects_tampered_value(self, tmp_path):
        blocks = self._chain(tmp_path)
        blocks[1].value = 99.0
        report = verify_chain(blocks, 1)
        assert not report.valid
        assert any("hash mismatch" in e for e in report.errors)

    def test_detects_broken_link(self, tmp_path):
        blocks = self._chain(tmp_path)
        del blocks[1]
        report = verify_chain(blocks, 1)
        assert not report.valid

    def test_detects_difficulty_violation(self, tmp_path):
        blocks = self._chain(tmp_path)
        report = verify_chain(blocks, 10)
        assert not report.valid

    def test_empty_chain_is_valid(self):
        assert verify_chain([], 4).valid


class TestPersistence:
    """Tests for chain snapshots."""

    def test_chain_written_after_each_seal(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=1)
        miner.seal_block()
        miner.seal_block()
        data = json.loads((tmp_path / "blocks.json").read_text())
        assert [b["index"] for b in data] == [0, 1]
        assert data[1]["previous_hash"] == data[0]["hash"]

    def test_reload_continues_chain(self, tmp_path):
        first = Miner(ADDRESS, tmp_path, difficulty=1)
        first.seal_block()
        first.seal_block()

        second = Miner(ADDRESS, tmp_path, difficulty=1)
        assert second.height == 2
        block = second.seal_block()
        assert block.index == 2
        assert block.previous_hash == first.last_block.hash
        assert second.verify().valid
        assert second.balance() == 30.0

    def test_corrupt_chain_is_moved_aside(self, tmp_path):
        (tmp_path / "blocks.json").write_text("[{broken")
        miner = Miner(ADDRESS, tmp_path, difficulty=1)
        assert miner.height == 0
        assert list(tmp_path.glob("blocks.json.corrupt-*"))

        miner.seal_block()
        assert miner.height == 1

    def test_failed_write_does_not_stop_sealing(self, tmp_path, monkeypatch, caplog):
        real_write = storage._atomic_write
        state = {"fail": True}

        def write(path, payload):
            if state["fail"]:
                raise OSError(28, "No space left on device")
            real_write(path, payload)

        monkeypatch.setattr(storage, "_atomic_write", write)
        miner = Miner(ADDRESS, tmp_path, difficulty=1)
        first = miner.seal_block()

        assert miner.height == 1
        assert miner.balance() == 10.0
        assert "Failed to persist chain" in caplog.text
        assert not (tmp_path / "blocks.json").exists()

        state["fail"] = False
        second = miner.seal_block()
        assert second.previous_hash == first.hash

        data = json.loads((tmp_path / "blocks.json").read_text())
        assert [b["hash"] for b in data] == [first.hash, second.hash]
        assert Miner(ADDRESS, tmp_path, difficulty=1).verify().valid


class TestCadence:
    """Tests for start/stop of the background cadence."""

    def test_start_and_stop(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=1, interval=0.02)
        try:
            assert not miner.is_working
            miner.start()
            assert miner.is_working
            assert wait_for(lambda: miner.height >= 2)

            miner.stop()
            assert not miner.is_working
            stopped_at = miner.height
            time.sleep(0.15)
            # At most one tick that passed the flag check before stop() may finish.
            assert miner.height <= stopped_at + 1
            settled = miner.height
            time.sleep(0.1)
            assert miner.height == settled
        finally:
            miner.close(timeout=2.0)

        assert miner.verify().valid

    def test_seal_now(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=1, interval=60.0)
        try:
            miner.start(seal_now=True)
            assert miner.height == 1
        finally:
            miner.close(timeout=2.0)

    def test_restart_after_stop(self, tmp_path):
        miner = Miner(ADDRESS, tmp_path, difficulty=1, interval=0.02)
        try:
            miner.start()
            miner.stop()
            height = miner.height
            miner.start()
            assert wait_for(lambda: miner.height > height + 1)
        finally:
            miner.close(timeout=2.0)

    def test_close_timeout_keeps_busy_thread(self, tmp_path, monkeypatch):
        miner = Miner(ADDRESS, tmp_path, difficulty=1, interval=0.01)
        entered = threading.Event()
        release = threading.Event()
        real_seal = miner.seal_block

        def slow_seal():
            entered.set()
            release.wait(5.0)
            return real_seal()

        monkeypatch.setattr(miner, "seal_block", slow_seal)
        name = f"miner-{ADDRESS[:8]}"

        def cadence_threads():
            return [t for t in threading.enumerate() if t.name == name]

        try:
            miner.start()
            assert entered.wait(2.0)
            miner.close(timeout=0.05)
            assert len(cadence_threads()) == 1

            release.set()
            miner.start()
            assert len(cadence_threads()) == 1
            assert miner.is_working
        finally:
            release.set()
            miner.close(timeout=2.0)

        assert cadence_threads() == []

# tests/test_wallet.py
"""
Tests for the local signing wallet.
"""

import json
import os
import stat

import pytest

from work_ledger.wallet import Wallet, address_from_public_bytes


class TestWallet:
    def test_address_shape(self):
        wallet = Wallet.create("w")
        assert len(wallet.address) == 24
        int(wallet.address, 16)
        assert wallet.address == address_from_public_bytes(wallet.public_bytes)

    def test_public_point_uncompressed(self):
        wallet = Wallet.create("w")
        assert len(wallet.public_bytes) == 65
        assert wallet.public_bytes[0] == 0x04

    def test_sign_and_verify(self):
        wallet = Wallet.create("w")
        signature = wallet.sign("proof-hash")
        assert wallet.verify("proof-hash", signature)
        assert not wallet.verify("other", signature)
        assert not wallet.verify("proof-hash", "zz")

    def test_distinct_wallets(self):
        assert Wallet.create("a").address != Wallet.create("b").address

    def test_save_and_load(self, tmp_path):
        wallet = Wallet.create("alice")
        path = wallet.save(tmp_path)
        assert path == tmp_path / "alice.json"

        loaded = Wallet.load(tmp_path, "alice")
        assert loaded.address == wallet.address
        assert wallet.verify("msg", loaded.sign("msg"))

    @pytest.mark.skipif(os.name != "posix", reason="file modes are POSIX only")
    def test_saved_file_is_private(self, tmp_path):
        path = Wallet.create("alice").save(tmp_path)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_load_rejects_mismatched_address(self, tmp_path):
        path = Wallet.create("alice").save(tmp_path)
        data = json.loads(path.read_text())
        data["address"] = "0" * 24
        path.write_text(json.dumps(data))
        with pytest.raises(ValueError):
            Wallet.load(tmp_path, "alice")

    def test_missing_wallet(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Wallet.load(tmp_path, "nobody")

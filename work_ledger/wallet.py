"""
work_ledger/wallet.py

Local signing identity. A wallet holds an ECDSA P-256 key pair, exposes a
stable address derived from the public key and signs messages with it.

The tracker and miner only depend on the ``Signer`` protocol, so any
external key service with an ``address`` and a ``sign`` method can stand in.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec

logger = logging.getLogger(__name__)


class Signer(Protocol):
    """Anything that can sign on behalf of a ledger address."""

    @property
    def address(self) -> str:
        ...

    def sign(self, message: str) -> str:
        ...


def address_from_public_bytes(public_bytes: bytes) -> str:
    """First 12 bytes of SHA-256 over the uncompressed public point, hex."""
    return hashlib.sha256(public_bytes).digest()[:12].hex()


class Wallet:
    """ECDSA P-256 wallet persisted as JSON."""

    def __init__(self, name: str, private_key: ec.EllipticCurvePrivateKey):
        self.name = name
        self._private_key = private_key
        self.public_bytes = private_key.public_key().public_bytes(
            serialization.Encoding.X962,
            serialization.PublicFormat.UncompressedPoint,
        )
        self._address = address_from_public_bytes(self.public_bytes)

    @classmethod
    def create(cls, name: str = "default") -> "Wallet":
        wallet = cls(name, ec.generate_private_key(ec.SECP256R1()))
        logger.info(f"Created wallet {name}: address={wallet.address}")
        return wallet

    @property
    def address(self) -> str:
        return self._address

    @property
    def private_hex(self) -> str:
        return f"{self._private_key.private_numbers().private_value:064x}"

    def sign(self, message: str) -> str:
        signature = self._private_key.sign(message.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
        return signature.hex()

    def verify(self, message: str, signature: str) -> bool:
        try:
            self._private_key.public_key().verify(
                bytes.fromhex(signature),
                message.encode("utf-8"),
                ec.ECDSA(hashes.SHA256()),
            )
        except (InvalidSignature, ValueError):
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "address": self.address,
            "private": self.private_hex,
            "public": self.public_bytes.hex(),
        }

    def save(self, directory: str | Path) -> Path:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{self.name}.json"
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        return path

    @classmethod
    def load(cls, directory: str | Path, name: str = "default") -> "Wallet":
        path = Path(directory) / f"{name}.json"
        data = json.loads(path.read_text(encoding="utf-8"))
        private_value = int(data["private"], 16)
        key = ec.derive_private_key(private_value, ec.SECP256R1())
        wallet = cls(data.get("name", name), key)
        if data.get("address") and data["address"] != wallet.address:
            raise ValueError(f"Wallet {path} address does not match its key")
        return wallet

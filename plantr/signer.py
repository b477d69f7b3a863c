"""Signing and encryption capabilities supplied by the host application.

The engine never touches curve arithmetic or the encryption primitive. An
owner's signer usually lives in a wallet or browser extension; device
signers are built on demand from a decrypted device secret.
"""

import secrets
from abc import ABC, abstractmethod

from .errors import PublishError
from .records.record import Record, UnsignedRecord


class Signer(ABC):
    """An identity able to sign records and, optionally, encrypt to peers."""

    @property
    @abstractmethod
    def pubkey(self) -> str:
        """Hex public identity of this signer."""
        pass

    @abstractmethod
    async def sign(self, unsigned: UnsignedRecord) -> Record:
        """Stamp id, pubkey and signature onto a composed record."""
        pass

    @property
    def supports_encryption(self) -> bool:
        """Whether ``encrypt``/``decrypt`` are available."""
        return False

    async def encrypt(self, peer_pubkey: str, plaintext: str) -> str:
        """Encrypt ``plaintext`` so that ``peer_pubkey`` can read it."""
        raise NotImplementedError("Signer does not support encryption")

    async def decrypt(self, peer_pubkey: str, ciphertext: str) -> str:
        """Decrypt a payload exchanged with ``peer_pubkey``."""
        raise NotImplementedError("Signer does not support encryption")


class WatchOnlySigner(Signer):
    """A public identity without signing rights, for read-only sessions."""

    def __init__(self, pubkey: str):
        self._pubkey = pubkey

    @property
    def pubkey(self) -> str:
        return self._pubkey

    async def sign(self, unsigned: UnsignedRecord) -> Record:
        raise PublishError("Watch-only identity cannot sign")


class SignerFactory(ABC):
    """Builds signers from raw device secrets."""

    def generate_secret(self) -> bytes:
        """Generate a new 32 byte device secret."""
        return secrets.token_bytes(32)

    @abstractmethod
    def from_secret(self, secret: bytes) -> Signer:
        """Create a signer for a 32 byte secret."""
        pass

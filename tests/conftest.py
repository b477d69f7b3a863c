"""Shared fixtures: deterministic fake signers and an in-memory relay."""

import base64
import hashlib

import pytest
import pytest_asyncio

from plantr.cache import Cache
from plantr.records.record import Record, UnsignedRecord, compute_record_id, normalize_tags
from plantr.relay import SqliteRelay
from plantr.secret_codec import SecretCodec
from plantr.signer import Signer, SignerFactory


def pubkey_for(secret: bytes) -> str:
    return hashlib.sha256(b"pub:" + secret).hexdigest()


class FakeSigner(Signer):
    """Hash-based stand-in for a real keypair.

    Encryption is reversible base64 bound to the peer's identity, so
    decrypting with the wrong peer or a mangled payload fails.
    """

    def __init__(self, secret: bytes, encryption: bool = True):
        self.secret = secret
        self._pubkey = pubkey_for(secret)
        self._encryption = encryption

    @property
    def pubkey(self) -> str:
        return self._pubkey

    async def sign(self, unsigned: UnsignedRecord) -> Record:
        record_id = compute_record_id(
            self._pubkey, unsigned.created_at, unsigned.kind, unsigned.tags, unsigned.content
        )
        return Record(
            id=record_id,
            pubkey=self._pubkey,
            created_at=unsigned.created_at,
            kind=unsigned.kind,
            tags=unsigned.tags,
            content=unsigned.content,
            sig=hashlib.sha512(record_id.encode() + self.secret).hexdigest(),
        )

    @property
    def supports_encryption(self) -> bool:
        return self._encryption

    async def encrypt(self, peer_pubkey: str, plaintext: str) -> str:
        return f"enc:{peer_pubkey}:" + base64.b64encode(plaintext.encode()).decode()

    async def decrypt(self, peer_pubkey: str, ciphertext: str) -> str:
        prefix = f"enc:{peer_pubkey}:"
        if not ciphertext.startswith(prefix):
            raise ValueError("ciphertext not addressed to this peer")
        return base64.b64decode(ciphertext[len(prefix):]).decode()


class FakeSignerFactory(SignerFactory):
    def __init__(self):
        self.counter = 0

    def generate_secret(self) -> bytes:
        self.counter += 1
        return hashlib.sha256(f"device-{self.counter}".encode()).digest()

    def from_secret(self, secret: bytes) -> Signer:
        return FakeSigner(secret)


OWNER_SECRET = hashlib.sha256(b"owner").digest()
OWNER = pubkey_for(OWNER_SECRET)
OTHER_OWNER = pubkey_for(hashlib.sha256(b"someone-else").digest())
DEVICE_SECRET = hashlib.sha256(b"device").digest()
DEVICE = pubkey_for(DEVICE_SECRET)


def make_record(
    pubkey: str,
    kind: int,
    tags: list,
    content: str = "",
    created_at: int = 100,
) -> Record:
    """Build a record with a correct id and a dummy signature."""
    frozen = normalize_tags(tags)
    return Record(
        id=compute_record_id(pubkey, created_at, kind, frozen, content),
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=frozen,
        content=content,
        sig="0" * 128,
    )


def encrypted_secret(secret: bytes = DEVICE_SECRET, owner: str = OWNER) -> str:
    return f"enc:{owner}:" + base64.b64encode(secret.hex().encode()).decode()


def make_pot(
    identifier: str,
    created_at: int = 100,
    tasks: list | None = None,
    owner: str = OWNER,
    device: str = DEVICE,
    kind: int = 30000,
    name: str | None = None,
    content: str | None = None,
) -> Record:
    tags = [["d", identifier], ["p", owner]]
    if name:
        tags.append(["name", name])
    for task_type, duration in tasks or []:
        tags.append(["task", task_type, duration])
    return make_record(
        device,
        kind,
        tags,
        content=encrypted_secret() if content is None else content,
        created_at=created_at,
    )


@pytest.fixture
def owner_signer():
    return FakeSigner(OWNER_SECRET)


@pytest.fixture
def device_signer():
    return FakeSigner(DEVICE_SECRET)


@pytest.fixture
def signer_factory():
    return FakeSignerFactory()


@pytest.fixture
def secret_codec(signer_factory):
    return SecretCodec(signer_factory)


@pytest.fixture
def cache():
    return Cache()


@pytest_asyncio.fixture
async def relay():
    """Create an in-memory relay."""
    relay = SqliteRelay(":memory:", url="wss://relay.test")
    relay.connect()
    yield relay
    await relay.close()

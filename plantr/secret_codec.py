"""Device secret handling.

A plant pot's record payload is the device's 32 byte secret, written as 64
lowercase hex characters and encrypted to the owner. Anything that does not
decrypt to exactly that shape is rejected rather than repaired.
"""

import logging
import re

from .bech32 import nsec_decode, nsec_encode
from .errors import DecryptionError, FormatError, PlantrError
from .records.kinds import PlantPot
from .signer import Signer, SignerFactory

logger = logging.getLogger(__name__)

SECRET_HEX_RE = re.compile(r"[0-9a-f]{64}")


def bytes_to_hex(secret: bytes) -> str:
    return secret.hex()


def hex_to_bytes(secret_hex: str) -> bytes:
    """Parse a 64 character lowercase hex secret.

    Raises:
        FormatError: If the value is not exactly 64 lowercase hex characters.
    """
    if not isinstance(secret_hex, str):
        raise FormatError(context=f"got {type(secret_hex).__name__}")
    if not SECRET_HEX_RE.fullmatch(secret_hex):
        raise FormatError(context=f"got {len(secret_hex)} characters")
    return bytes.fromhex(secret_hex)


def hex_to_nsec(secret_hex: str) -> str:
    hex_to_bytes(secret_hex)
    return nsec_encode(secret_hex)


def nsec_to_hex(nsec: str) -> str:
    return nsec_decode(nsec)


def parse_secret(plaintext: str) -> str:
    """Validate decrypted secret material and return its hex form.

    Older clients stored the secret as an ``nsec1...`` string; those are
    decoded. Everything else must already be 64 lowercase hex characters.
    """
    if plaintext.startswith("nsec1"):
        return nsec_decode(plaintext)
    hex_to_bytes(plaintext)
    return plaintext


class SecretCodec:
    """Drives the owner's encryption capability for device secrets."""

    def __init__(self, signer_factory: SignerFactory):
        self._factory = signer_factory

    def generate_secret(self) -> bytes:
        secret = self._factory.generate_secret()
        if len(secret) != 32:
            raise FormatError(context=f"generated secret has {len(secret)} bytes")
        return secret

    def signer_for(self, secret: bytes) -> Signer:
        return self._factory.from_secret(secret)

    async def encrypt_device_secret(self, owner: Signer, secret: bytes) -> str:
        """Encrypt a device secret to the owner.

        Raises:
            DecryptionError: If the owner's signer cannot encrypt.
        """
        if not owner.supports_encryption:
            raise DecryptionError("Owner signer does not support encryption")
        try:
            return await owner.encrypt(owner.pubkey, bytes_to_hex(secret))
        except PlantrError:
            raise
        except Exception as e:
            raise DecryptionError("Encrypting device secret failed", context=str(e)) from e

    async def decrypt_device_secret(self, owner: Signer, pot: PlantPot) -> str:
        """Recover a plant pot's device secret as lowercase hex.

        Raises:
            DecryptionError: Capability unavailable or ciphertext rejected.
            FormatError: Plaintext is not a 64 character hex secret.
        """
        if not owner.supports_encryption:
            raise DecryptionError("Owner signer does not support encryption")
        if not pot.encrypted_secret:
            raise DecryptionError("Plant pot has no encrypted secret", context=pot.identifier)

        try:
            plaintext = await owner.decrypt(owner.pubkey, pot.encrypted_secret)
        except PlantrError:
            raise
        except Exception as e:
            raise DecryptionError(context=f"{pot.identifier}: {e}") from e

        return parse_secret(plaintext)

    async def device_signer(self, owner: Signer, pot: PlantPot) -> Signer:
        """Build the signer of the device that authored ``pot``."""
        secret_hex = await self.decrypt_device_secret(owner, pot)
        signer = self.signer_for(hex_to_bytes(secret_hex))
        if signer.pubkey != pot.device_pubkey:
            raise DecryptionError(
                "Decrypted secret does not belong to the device",
                context=pot.identifier,
            )
        return signer

"""Bech32 encoding for keys and addressable entity pointers.

Implements the BIP-173 checksum plus the ``nsec``/``npub``/``naddr``
human readable forms used to hand identities around out of band.
"""

from dataclasses import dataclass, field

from .errors import FormatError

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)

# Entity pointers carry relay hints, so allow much longer strings than BIP-173
NADDR_LIMIT = 5000
KEY_LIMIT = 90

# TLV types
TLV_SPECIAL = 0
TLV_RELAY = 1
TLV_AUTHOR = 2
TLV_KIND = 3


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i, gen in enumerate(_GENERATOR):
            if (top >> i) & 1:
                chk ^= gen
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: list[int]) -> list[int]:
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def convertbits(data: bytes | list[int], frombits: int, tobits: int, pad: bool = True) -> list[int]:
    """Regroup a sequence of ``frombits`` integers into ``tobits`` integers."""
    acc = 0
    bits = 0
    out = []
    maxv = (1 << tobits) - 1
    for value in data:
        if value < 0 or value >> frombits:
            raise FormatError("Invalid value for bit conversion")
        acc = (acc << frombits) | value
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            out.append((acc >> bits) & maxv)
    if pad:
        if bits:
            out.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        raise FormatError("Invalid padding in bech32 data")
    return out


def encode(hrp: str, payload: bytes, limit: int = KEY_LIMIT) -> str:
    """Encode bytes under a human readable prefix."""
    data = convertbits(payload, 8, 5)
    combined = data + _create_checksum(hrp, data)
    encoded = hrp + "1" + "".join(CHARSET[d] for d in combined)
    if len(encoded) > limit:
        raise FormatError(f"Encoded string exceeds {limit} characters")
    return encoded


def decode(value: str, limit: int = KEY_LIMIT) -> tuple[str, bytes]:
    """Decode a bech32 string into its prefix and payload bytes.

    Raises:
        FormatError: On mixed case, bad characters, length or checksum.
    """
    if value.lower() != value and value.upper() != value:
        raise FormatError("Mixed case bech32 string")
    value = value.lower()
    if len(value) > limit:
        raise FormatError(f"Bech32 string exceeds {limit} characters")

    pos = value.rfind("1")
    if pos < 1 or pos + 7 > len(value):
        raise FormatError("Missing bech32 separator")

    hrp = value[:pos]
    try:
        data = [CHARSET.index(c) for c in value[pos + 1:]]
    except ValueError:
        raise FormatError("Invalid bech32 character") from None

    if _polymod(_hrp_expand(hrp) + data) != 1:
        raise FormatError("Bech32 checksum mismatch")

    return hrp, bytes(convertbits(data[:-6], 5, 8, pad=False))


def _encode_key(hrp: str, hex_key: str) -> str:
    try:
        raw = bytes.fromhex(hex_key)
    except ValueError:
        raise FormatError(f"{hrp} key is not hex") from None
    if len(raw) != 32:
        raise FormatError(f"{hrp} key must be 32 bytes")
    return encode(hrp, raw)


def _decode_key(hrp: str, value: str) -> str:
    prefix, raw = decode(value)
    if prefix != hrp:
        raise FormatError(f"Expected {hrp} prefix, got {prefix}")
    if len(raw) != 32:
        raise FormatError(f"{hrp} payload must be 32 bytes")
    return raw.hex()


def nsec_encode(secret_hex: str) -> str:
    return _encode_key("nsec", secret_hex)


def nsec_decode(value: str) -> str:
    """Decode an ``nsec1...`` string to a lowercase hex secret."""
    return _decode_key("nsec", value)


def npub_encode(pubkey_hex: str) -> str:
    return _encode_key("npub", pubkey_hex)


def npub_decode(value: str) -> str:
    return _decode_key("npub", value)


@dataclass(frozen=True)
class AddressPointer:
    """Decoded contents of an ``naddr``."""

    identifier: str
    pubkey: str
    kind: int
    relays: tuple[str, ...] = field(default_factory=tuple)


def naddr_encode(pointer: AddressPointer) -> str:
    """Encode an addressable entity pointer as TLV inside bech32."""
    tlv = bytearray()

    def put(tlv_type: int, value: bytes) -> None:
        if len(value) > 255:
            raise FormatError("TLV value longer than 255 bytes")
        tlv.extend((tlv_type, len(value)))
        tlv.extend(value)

    put(TLV_SPECIAL, pointer.identifier.encode("utf-8"))
    for relay in pointer.relays:
        put(TLV_RELAY, relay.encode("utf-8"))
    try:
        put(TLV_AUTHOR, bytes.fromhex(pointer.pubkey))
    except ValueError:
        raise FormatError("naddr author is not hex") from None
    put(TLV_KIND, pointer.kind.to_bytes(4, "big"))

    return encode("naddr", bytes(tlv), limit=NADDR_LIMIT)


def naddr_decode(value: str) -> AddressPointer:
    prefix, raw = decode(value, limit=NADDR_LIMIT)
    if prefix != "naddr":
        raise FormatError(f"Expected naddr prefix, got {prefix}")

    identifier = None
    pubkey = None
    kind = None
    relays = []

    i = 0
    while i + 2 <= len(raw):
        tlv_type, length = raw[i], raw[i + 1]
        chunk = raw[i + 2:i + 2 + length]
        if len(chunk) != length:
            raise FormatError("Truncated TLV entry")
        if tlv_type == TLV_SPECIAL:
            identifier = chunk.decode("utf-8")
        elif tlv_type == TLV_RELAY:
            relays.append(chunk.decode("utf-8"))
        elif tlv_type == TLV_AUTHOR:
            pubkey = chunk.hex()
        elif tlv_type == TLV_KIND:
            kind = int.from_bytes(chunk, "big")
        i += 2 + length

    if identifier is None or pubkey is None or kind is None:
        raise FormatError("naddr is missing identifier, author or kind")

    return AddressPointer(identifier=identifier, pubkey=pubkey, kind=kind, relays=tuple(relays))

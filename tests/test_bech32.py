"""Tests for bech32 key and pointer encoding."""

import pytest

from plantr.bech32 import (
    AddressPointer,
    decode,
    encode,
    naddr_decode,
    naddr_encode,
    npub_decode,
    npub_encode,
    nsec_decode,
    nsec_encode,
)
from plantr.errors import FormatError

NPUB = "npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg"
NPUB_HEX = "7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e"
NSEC = "nsec1vl029mgpspedva04g90vltkh6fvh240zqtv9k0t9af8935ke9laqsnlfe5"
NSEC_HEX = "67dea2ed018072d675f5415ecfaed7d2597555e202d85b3d65ea4e58d2d92ffa"


class TestKeys:
    """Tests for npub and nsec strings."""

    def test_npub_known_vector(self):
        assert npub_decode(NPUB) == NPUB_HEX
        assert npub_encode(NPUB_HEX) == NPUB

    def test_nsec_known_vector(self):
        assert nsec_decode(NSEC) == NSEC_HEX
        assert nsec_encode(NSEC_HEX) == NSEC

    def test_uppercase_accepted(self):
        assert nsec_decode(NSEC.upper()) == NSEC_HEX

    def test_wrong_prefix(self):
        with pytest.raises(FormatError):
            nsec_decode(NPUB)

    def test_bad_checksum(self):
        broken = NSEC[:-1] + ("q" if NSEC[-1] != "q" else "p")
        with pytest.raises(FormatError):
            nsec_decode(broken)

    def test_mixed_case(self):
        with pytest.raises(FormatError):
            nsec_decode(NSEC[:10] + NSEC[10:].upper())

    def test_invalid_character(self):
        with pytest.raises(FormatError):
            decode("nsec1bbbbbbbbbbbbb")

    def test_wrong_length_key(self):
        with pytest.raises(FormatError):
            npub_encode("abcd")
        with pytest.raises(FormatError):
            npub_encode("zz" * 32)

    def test_generic_payload(self):
        hrp, payload = decode(encode("test", b"\x00\x01\x02"))
        assert (hrp, payload) == ("test", b"\x00\x01\x02")


class TestNaddr:
    """Tests for addressable entity pointers."""

    def test_roundtrip_with_relays(self):
        pointer = AddressPointer(
            identifier="tomato-1",
            pubkey=NPUB_HEX,
            kind=30000,
            relays=("wss://relay.samt.st", "wss://relay.example"),
        )

        encoded = naddr_encode(pointer)

        assert encoded.startswith("naddr1")
        assert len(encoded) > 90
        assert naddr_decode(encoded) == pointer

    def test_empty_identifier(self):
        pointer = AddressPointer(identifier="", pubkey=NPUB_HEX, kind=16158)
        assert naddr_decode(naddr_encode(pointer)) == pointer

    def test_not_an_naddr(self):
        with pytest.raises(FormatError):
            naddr_decode(NPUB)

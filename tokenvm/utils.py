"""Address and identifier encodings."""

from __future__ import annotations

import hashlib

HRP = "token"
PUBLIC_KEY_LEN = 32
ID_LEN = 32

_BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_BECH32_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_CHECKSUM_LEN = 4


class AddressError(ValueError):
    """Raised when an address or identifier cannot be decoded."""


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ value
        for bit, generator in enumerate(_BECH32_GENERATOR):
            if (top >> bit) & 1:
                chk ^= generator
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _create_checksum(hrp: str, data: list[int]) -> list[int]:
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ 1
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def _convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    out: list[int] = []
    max_value = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise AddressError("invalid data range")
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            out.append((acc >> bits) & max_value)
    if pad:
        if bits:
            out.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & max_value):
        raise AddressError("invalid padding")
    return out


def _check_public_key(public_key: bytes) -> bytes:
    if len(public_key) != PUBLIC_KEY_LEN:
        raise ValueError(f"public key must be {PUBLIC_KEY_LEN} bytes, got {len(public_key)}")
    return bytes(public_key)


def address(public_key: bytes, hrp: str = HRP) -> str:
    """Encode a public key as a bech32 address under ``hrp``."""
    data = _convert_bits(_check_public_key(public_key), 8, 5, True)
    checksum = _create_checksum(hrp, data)
    return hrp + "1" + "".join(_BECH32_CHARSET[d] for d in data + checksum)


def parse_address(text: str, hrp: str = HRP) -> bytes:
    """Decode a bech32 address into its public key, checking the ``hrp``."""
    if text.lower() != text and text.upper() != text:
        raise AddressError("address has mixed case")
    text = text.lower()
    separator = text.rfind("1")
    if separator < 1 or separator + 7 > len(text):
        raise AddressError("invalid separator position")
    found_hrp, payload = text[:separator], text[separator + 1:]
    try:
        data = [_BECH32_CHARSET.index(c) for c in payload]
    except ValueError as exc:
        raise AddressError("invalid character in address") from exc
    if _polymod(_hrp_expand(found_hrp) + data) != 1:
        raise AddressError("invalid checksum")
    if found_hrp != hrp:
        raise AddressError(f"expected hrp {hrp!r}, found {found_hrp!r}")
    raw = bytes(_convert_bits(data[:-6], 5, 8, False))
    if len(raw) != PUBLIC_KEY_LEN:
        raise AddressError(f"invalid public key length {len(raw)}")
    return raw


def _checksum(raw: bytes) -> bytes:
    return hashlib.sha256(raw).digest()[-_CHECKSUM_LEN:]


def encode_id(raw: bytes) -> str:
    """Encode a 32-byte identifier as checksummed base58."""
    if len(raw) != ID_LEN:
        raise ValueError(f"identifier must be {ID_LEN} bytes, got {len(raw)}")
    payload = bytes(raw) + _checksum(bytes(raw))
    number = int.from_bytes(payload, "big")
    digits: list[str] = []
    while number:
        number, remainder = divmod(number, 58)
        digits.append(_BASE58_ALPHABET[remainder])
    leading = len(payload) - len(payload.lstrip(b"\x00"))
    return "1" * leading + "".join(reversed(digits))


def decode_id(text: str) -> bytes:
    """Decode a checksummed base58 identifier into its 32 bytes."""
    number = 0
    for char in text:
        index = _BASE58_ALPHABET.find(char)
        if index < 0:
            raise AddressError(f"invalid base58 character {char!r}")
        number = number * 58 + index
    leading = len(text) - len(text.lstrip("1"))
    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    payload = b"\x00" * leading + body
    if len(payload) < _CHECKSUM_LEN:
        raise AddressError("input too short")
    raw, checksum = payload[:-_CHECKSUM_LEN], payload[-_CHECKSUM_LEN:]
    if _checksum(raw) != checksum:
        raise AddressError("invalid checksum")
    if len(raw) != ID_LEN:
        raise AddressError(f"invalid identifier length {len(raw)}")
    return raw
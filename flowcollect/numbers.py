"""Decoding of big- and little-endian integers of up to eight bytes."""

from __future__ import annotations

_WIDTHS = (8, 16, 32, 64)
_SIGN_EXTENDED_LENGTHS = (1, 2, 4, 8)


def _check_length(data: bytes) -> None:
    if len(data) > 8:
        raise ValueError(f"non-regular number of bytes for a number: {len(data)}")


def _to_unsigned(value: int, bits: int) -> int:
    if bits not in _WIDTHS:
        raise ValueError(f"cannot decode into a {bits}-bit unsigned integer")
    return value & ((1 << bits) - 1)


def _to_signed(value: int, bits: int) -> int:
    if bits not in _WIDTHS:
        raise ValueError(f"cannot decode into a {bits}-bit signed integer")
    value &= (1 << bits) - 1
    if value >= 1 << (bits - 1):
        value -= 1 << bits
    return value


def _read_signed(data: bytes, byteorder: str) -> int:
    # Only the regular widths are sign-extended; the others read as positive.
    signed = len(data) in _SIGN_EXTENDED_LENGTHS
    return int.from_bytes(data, byteorder, signed=signed)


def decode_unumber(data: bytes, bits: int = 64) -> int:
    """Decode big-endian bytes into an unsigned integer truncated to bits."""
    data = bytes(data)
    _check_length(data)
    return _to_unsigned(int.from_bytes(data, "big"), bits)


def decode_unumber_le(data: bytes, bits: int = 64) -> int:
    """Decode little-endian bytes into an unsigned integer truncated to bits."""
    data = bytes(data)
    _check_length(data)
    return _to_unsigned(int.from_bytes(data, "little"), bits)


def decode_number(data: bytes, bits: int = 64) -> int:
    """Decode big-endian bytes into a signed integer truncated to bits."""
    data = bytes(data)
    _check_length(data)
    return _to_signed(_read_signed(data, "big"), bits)


def decode_number_le(data: bytes, bits: int = 64) -> int:
    """Decode little-endian bytes into a signed integer truncated to bits."""
    data = bytes(data)
    _check_length(data)
    return _to_signed(_read_signed(data, "little"), bits)
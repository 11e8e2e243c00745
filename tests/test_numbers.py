import pytest

from flowcollect.numbers import (
    decode_number,
    decode_number_le,
    decode_unumber,
    decode_unumber_le,
)


def test_big_endian_regular_lengths():
    assert decode_unumber(b"\x12", 8) == 0x12
    assert decode_unumber(b"\x12\x34", 16) == 0x1234
    assert decode_unumber(b"\x12\x34\x56\x78", 32) == 0x12345678
    assert decode_unumber(b"\x01\x02\x03\x04\x05\x06\x07\x08", 64) == 0x0102030405060708


def test_big_endian_irregular_length():
    assert decode_unumber(b"\x12\x34\x56", 32) == 0x123456
    assert decode_unumber(b"\x00\x53\x00\x00\x00\x01", 64) == 0x005300000001


def test_little_endian():
    assert decode_unumber_le(b"\x12\x34", 16) == 0x3412
    assert decode_unumber_le(b"\x12\x34\x56", 32) == 0x563412


def test_unsigned_truncation():
    assert decode_unumber(b"\x12\x34", 8) == 0x34
    assert decode_unumber_le(b"\x12\x34", 8) == 0x12


def test_empty_reads_as_zero_byte():
    assert decode_unumber(b"", 64) == decode_unumber(b"\x00", 64)
    assert decode_number_le(b"", 32) == decode_number_le(b"\x00", 32)


def test_signed_regular_widths_are_sign_extended():
    assert decode_number(b"\xff", 8) == -1
    assert decode_number(b"\xff\xff", 64) == -1
    assert decode_number_le(b"\xfe\xff", 16) == -2


def test_signed_irregular_width_is_not_sign_extended():
    assert decode_number(b"\xff\xff\xff", 64) == 0xFFFFFF
    assert decode_number_le(b"\xff\xff\xff", 64) == 0xFFFFFF


@pytest.mark.parametrize("value", [0, 1, 255, 65535, 2**32 - 1, 2**64 - 1, 123456789])
def test_unsigned_round_trip(value):
    assert decode_unumber(value.to_bytes(8, "big"), 64) == value
    assert decode_unumber_le(value.to_bytes(8, "little"), 64) == value


@pytest.mark.parametrize("value", [0, 1, -1, -(2**31), 2**31 - 1, -12345])
def test_signed_round_trip(value):
    assert decode_number(value.to_bytes(4, "big", signed=True), 32) == value
    assert decode_number_le(value.to_bytes(4, "little", signed=True), 32) == value


@pytest.mark.parametrize(
    "func", [decode_unumber, decode_unumber_le, decode_number, decode_number_le]
)
def test_too_many_bytes(func):
    with pytest.raises(ValueError, match="non-regular number of bytes"):
        func(b"\x00" * 9, 64)


@pytest.mark.parametrize(
    "func", [decode_unumber, decode_unumber_le, decode_number, decode_number_le]
)
def test_unsupported_width(func):
    with pytest.raises(ValueError):
        func(b"\x01", 12)
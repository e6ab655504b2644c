"""
Tests for utility functions.
"""
import hashlib

import pytest

from gasless_sdk.utils import b64decode, b64encode, now_ms, sha256_hex


def test_sha256_hex_str_and_bytes():
    expected = hashlib.sha256(b"gasless").hexdigest()
    assert sha256_hex("gasless") == expected
    assert sha256_hex(b"gasless") == expected


def test_base64_round_trip():
    assert b64decode(b64encode(b"\x00\xffpayload")) == b"\x00\xffpayload"


@pytest.mark.parametrize("value", ["***", "abc", "YWJj\n!"])
def test_b64decode_is_strict(value):
    with pytest.raises(ValueError):
        b64decode(value)


def test_now_ms():
    assert now_ms() > 1_600_000_000_000

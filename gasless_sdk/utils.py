"""
Utility functions for the gasless payments SDK.
"""
import base64
import binascii
import hashlib
import time
from typing import Union


def sha256_hex(data: Union[str, bytes]) -> str:
    """
    Calculate SHA-256 hash and return hex string

    Args:
        data: String or bytes to hash

    Returns:
        Hex-encoded SHA-256 hash
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def now_ms() -> int:
    """Current wall clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(value: str) -> bytes:
    """
    Strictly decode a base64 string.

    Raises:
        ValueError: If the value is not valid base64
    """
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 data: {e}")

"""
Payment request identifiers and nonces.

A request id is derived, never chosen: the same (sender, recipient, nonce)
always maps to the same id, so re-publishing an intent is idempotent and the
reconciler keeps only the first REQUEST for an id.
"""
import threading
import time
from typing import Union

from .utils import sha256_hex

REQUEST_ID_LENGTH = 32

_nonce_lock = threading.Lock()
_last_nonce = 0


def _id_preimage(sender: str, recipient: str, nonce: Union[int, str]) -> str:
    parts = (str(sender), str(recipient), str(nonce))
    if not any("-" in part or ":" in part for part in parts):
        return "-".join(parts)
    # Ids like "0.0.123-abcde" would make the plain form ambiguous
    return "-".join(f"{len(part)}:{part}" for part in parts)


def derive_request_id(sender: str, recipient: str, nonce: Union[int, str]) -> str:
    """
    Derive the payment request id for a (sender, recipient, nonce) triple.

    Args:
        sender: Sender account id (e.g. "0.0.1234")
        recipient: Recipient account id
        nonce: Replay protection nonce

    Returns:
        The first 32 hex characters of SHA-256("{sender}-{recipient}-{nonce}").
        When a part contains "-" or ":" each part is length-prefixed
        ("{len}:{part}") so that distinct triples never share a preimage.
    """
    return sha256_hex(_id_preimage(sender, recipient, nonce))[:REQUEST_ID_LENGTH]


def generate_nonce() -> int:
    """
    Generate a nonce for a request created without one.

    Returns the current time in nanoseconds, bumped if needed so that values
    are strictly increasing within this process even when the clock does not
    advance between calls.
    """
    global _last_nonce
    with _nonce_lock:
        candidate = time.time_ns()
        if candidate <= _last_nonce:
            candidate = _last_nonce + 1
        _last_nonce = candidate
        return candidate

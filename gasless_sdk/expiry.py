"""
Time-based expiry of payment requests.

Expiry is a post-pass over a reconciled view: it never reads the log and it
never overrides an outcome recorded there.
"""
from typing import Dict, Mapping

from .models import PaymentRequest, PaymentStatus

EXPIRABLE_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.SIGNED})


def is_expired(request: PaymentRequest, now_ms: int) -> bool:
    """True if the request may still expire and its expiration time has passed."""
    return request.status in EXPIRABLE_STATUSES and request.expiration_time < now_ms


def effective_status(request: PaymentRequest, now_ms: int) -> PaymentStatus:
    """Status of the request as seen at `now_ms`."""
    if is_expired(request, now_ms):
        return PaymentStatus.EXPIRED
    return request.status


def apply_expiry(view: Mapping[str, PaymentRequest], now_ms: int) -> Dict[str, PaymentRequest]:
    """
    Return a copy of `view` with expired requests marked EXPIRED.

    Only PENDING and SIGNED requests are affected; RELAYED, COMPLETED and
    FAILED requests are returned unchanged whatever their expiration time.

    Args:
        view: Mapping of request id to reconciled request
        now_ms: Wall clock time in milliseconds

    Returns:
        New mapping; the input is not modified
    """
    return {
        request_id: (
            request.model_copy(update={"status": PaymentStatus.EXPIRED})
            if is_expired(request, now_ms) else request
        )
        for request_id, request in view.items()
    }

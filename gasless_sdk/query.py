"""
Query engine over reconciled payment requests.
"""
from typing import List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .expiry import apply_expiry
from .models import PaymentRequest, PaymentStatus, PaymentType
from .utils import now_ms as _now_ms

DEFAULT_QUERY_LIMIT = 10


class PaymentQuery(BaseModel):
    """
    Read path parameters.

    Accepts both snake_case names and the camelCase wire names
    (`logId`, `senderAccountId`, ...). All filters are optional and combine
    with AND; `limit=None` returns every match.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    log_id: str
    sender_account_id: Optional[str] = None
    recipient_account_id: Optional[str] = None
    payment_type: Optional[PaymentType] = None
    status: Optional[PaymentStatus] = None
    limit: Optional[int] = Field(default=DEFAULT_QUERY_LIMIT, ge=1)


def matches(
    request: PaymentRequest,
    sender: Optional[str] = None,
    recipient: Optional[str] = None,
    payment_type: Optional[PaymentType] = None,
    status: Optional[PaymentStatus] = None
) -> bool:
    """True if `request` satisfies every filter that is set."""
    if sender is not None and request.sender != sender:
        return False
    if recipient is not None and request.recipient != recipient:
        return False
    if payment_type is not None and request.payment_type != payment_type:
        return False
    if status is not None and request.status != status:
        return False
    return True


def sort_key(request: PaymentRequest):
    return (request.created_at, request.sequence_number)


def query_payments(
    view: Mapping[str, PaymentRequest],
    sender: Optional[str] = None,
    recipient: Optional[str] = None,
    payment_type: Optional[PaymentType] = None,
    status: Optional[PaymentStatus] = None,
    limit: Optional[int] = None,
    now_ms: Optional[int] = None
) -> List[PaymentRequest]:
    """
    Filter, order and truncate reconciled requests.

    Expiry is evaluated at `now_ms` before filtering, so `status=EXPIRED`
    and `status=PENDING` see time-based expiry. Results are ordered newest
    first by creation time, ties broken by the REQUEST sequence number
    (descending). Identical inputs always give identical results.

    Args:
        view: Mapping of request id to reconciled request
        sender: Sender account id filter
        recipient: Recipient account id filter
        payment_type: Payment type filter
        status: Status filter
        limit: Maximum number of results, or None for all
        now_ms: Evaluation time in milliseconds (defaults to the current time)

    Returns:
        Matching requests
    """
    if limit is not None and limit < 0:
        raise ValueError(f"limit must not be negative (got {limit})")

    evaluated = apply_expiry(view, _now_ms() if now_ms is None else now_ms)
    results = [
        request for request in evaluated.values()
        if matches(request, sender, recipient, payment_type, status)
    ]
    results.sort(key=sort_key, reverse=True)

    if limit is not None:
        return results[:limit]
    return results


def run_query(view: Mapping[str, PaymentRequest], query: PaymentQuery, now_ms: Optional[int] = None) -> List[PaymentRequest]:
    """Apply a PaymentQuery to a view."""
    return query_payments(
        view,
        sender=query.sender_account_id,
        recipient=query.recipient_account_id,
        payment_type=query.payment_type,
        status=query.status,
        limit=query.limit,
        now_ms=now_ms,
    )

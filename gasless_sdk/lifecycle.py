"""
Lifecycle state machine for payment requests.

    PENDING -> SIGNED -> RELAYED -> COMPLETED
    PENDING | SIGNED -> EXPIRED          (time only)
    SIGNED | RELAYED -> FAILED | COMPLETED

RELAYED is only entered through an accepted claim; without claims a request
moves from SIGNED straight to COMPLETED or FAILED.

The guard functions are evaluated against a freshly reconciled view before
anything is appended to the log. They raise instead of returning a flag so
that a failed guard can never be mistaken for a no-op.
"""
import logging
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

from .exceptions import AlreadyProcessedError, AuthorizationError, ExpiredError, GuardViolation
from .expiry import effective_status
from .models import TERMINAL_STATUSES, PaymentRequest, PaymentStatus

logger = logging.getLogger(__name__)


class Transition(str, Enum):
    """Events that move a request between statuses."""
    CREATE = "create"
    SIGN = "sign"
    CLAIM = "claim"
    COMPLETE = "complete"
    FAIL = "fail"
    EXPIRE = "expire"


TRANSITIONS: Dict[Tuple[PaymentStatus, Transition], PaymentStatus] = {
    (PaymentStatus.PENDING, Transition.SIGN): PaymentStatus.SIGNED,
    (PaymentStatus.PENDING, Transition.EXPIRE): PaymentStatus.EXPIRED,
    (PaymentStatus.SIGNED, Transition.CLAIM): PaymentStatus.RELAYED,
    (PaymentStatus.SIGNED, Transition.COMPLETE): PaymentStatus.COMPLETED,
    (PaymentStatus.SIGNED, Transition.FAIL): PaymentStatus.FAILED,
    (PaymentStatus.SIGNED, Transition.EXPIRE): PaymentStatus.EXPIRED,
    (PaymentStatus.RELAYED, Transition.COMPLETE): PaymentStatus.COMPLETED,
    (PaymentStatus.RELAYED, Transition.FAIL): PaymentStatus.FAILED,
}


def next_status(current: PaymentStatus, transition: Transition) -> Optional[PaymentStatus]:
    """Target status of `transition` from `current`, or None if not allowed."""
    return TRANSITIONS.get((current, transition))


def advance(request: PaymentRequest, transition: Transition) -> PaymentStatus:
    """
    Target status of `transition` for `request`.

    Raises:
        GuardViolation: If the transition is not in the transition table
    """
    target = next_status(request.status, transition)
    if target is None:
        raise GuardViolation(
            f"Transition '{transition.value}' is not allowed from status '{request.status.value}'",
            guard="valid_transition",
            request_id=request.id,
            current_status=request.status.value,
            attempted=transition.value,
        )
    return target


def accepts_outcome(status: PaymentStatus) -> bool:
    """
    Whether a recorded COMPLETED/FAILED outcome is folded into a request.

    An execution outcome found in the log is authoritative unless an earlier
    one was already recorded: the first terminal write wins.
    """
    return status not in TERMINAL_STATUSES


def _context(request: PaymentRequest, status: PaymentStatus, transition: Transition) -> dict:
    return {
        "request_id": request.id,
        "current_status": status.value,
        "attempted": transition.value,
    }


def check_can_create(view: Mapping[str, PaymentRequest], request_id: str) -> None:
    """
    Guard for publishing a new request.

    Raises:
        AlreadyProcessedError: If a request with this id is already on the log
    """
    existing = view.get(request_id)
    if existing is not None:
        raise AlreadyProcessedError(
            f"Payment request {request_id} already exists (sequence {existing.sequence_number})",
            guard="unique_request_id",
            request_id=request_id,
            current_status=existing.status.value,
            attempted=Transition.CREATE.value,
        )


def check_can_sign(request: PaymentRequest, caller: str, now_ms: int) -> None:
    """
    Guard for PENDING -> SIGNED.

    Args:
        request: Reconciled request
        caller: Account id of the party signing
        now_ms: Wall clock time in milliseconds

    Raises:
        AuthorizationError: If the caller is not the request's sender
        AlreadyProcessedError: If the request is already signed or later
        ExpiredError: If the request has expired
    """
    status = effective_status(request, now_ms)
    context = _context(request, status, Transition.SIGN)

    if request.sender != caller:
        raise AuthorizationError(
            f"You are not the sender of this payment request (sender: {request.sender}, caller: {caller})",
            guard="caller_is_sender",
            **context,
        )
    if status == PaymentStatus.EXPIRED:
        raise ExpiredError(f"Payment request {request.id} has expired", **context)
    if status != PaymentStatus.PENDING:
        raise AlreadyProcessedError(
            f"Payment request is not pending (status: {status.value})",
            guard="request_is_pending",
            **context,
        )


def check_can_relay(
    request: PaymentRequest,
    sponsor: str,
    now_ms: int,
    sponsor_fee: float = 0,
    signed_sequence_number: Optional[int] = None,
    own_claim: bool = False,
    transition: Transition = Transition.COMPLETE,
) -> None:
    """
    Guard for SIGNED -> RELAYED/COMPLETED.

    Args:
        request: Reconciled request
        sponsor: Account id of the relaying sponsor
        now_ms: Wall clock time in milliseconds
        sponsor_fee: Fee the sponsor intends to charge
        signed_sequence_number: Sequence number of the SIGNED message being
            relayed; must be the signature the log accepted
        own_claim: Accept a RELAYED request whose claim belongs to `sponsor`
        transition: Transition reported in errors (CLAIM or COMPLETE)

    Raises:
        AuthorizationError: If the request is pinned to another sponsor
        AlreadyProcessedError: If the request was already relayed, completed or failed
        ExpiredError: If the request has expired
        GuardViolation: If the request is not signed, the signature is not
            the accepted one, or the fee is out of bounds
    """
    status = effective_status(request, now_ms)
    context = _context(request, status, transition)

    if request.sponsor_account_id and request.sponsor_account_id != sponsor:
        raise AuthorizationError(
            f"This payment requires sponsor {request.sponsor_account_id}, but you are {sponsor}",
            guard="sponsor_is_pinned_sponsor",
            **context,
        )

    if status == PaymentStatus.RELAYED:
        claimed_by = request.claim.sponsor if request.claim else None
        if not (own_claim and claimed_by == sponsor):
            raise AlreadyProcessedError(
                f"Payment has already been relayed (claimed by {claimed_by})",
                guard="not_relayed",
                **context,
            )
    elif status in TERMINAL_STATUSES:
        raise AlreadyProcessedError(
            f"Payment has already been processed (status: {status.value})",
            guard="not_relayed",
            **context,
        )
    elif status == PaymentStatus.EXPIRED:
        raise ExpiredError(f"Payment request {request.id} has expired", **context)
    elif status != PaymentStatus.SIGNED:
        raise GuardViolation(
            f"Payment is not signed (status: {status.value})",
            guard="request_is_signed",
            **context,
        )

    if not request.signed_transaction_bytes:
        raise GuardViolation("Signed transaction bytes not found", guard="has_signed_payload", **context)

    if signed_sequence_number is not None and request.signed_sequence_number != signed_sequence_number:
        raise GuardViolation(
            f"Signed message {signed_sequence_number} is not the accepted signature "
            f"(accepted: {request.signed_sequence_number})",
            guard="accepted_signature",
            **context,
        )

    if sponsor_fee < 0:
        raise GuardViolation(f"Sponsor fee must not be negative (got {sponsor_fee})",
                             guard="non_negative_sponsor_fee", **context)
    if sponsor_fee > request.max_fee:
        raise GuardViolation(
            f"Sponsor fee {sponsor_fee} exceeds the request's max fee {request.max_fee}",
            guard="sponsor_fee_within_max_fee",
            **context,
        )


def check_can_fail(request: PaymentRequest, sponsor: str) -> None:
    """
    Guard for reporting an execution failure.

    Raises:
        AuthorizationError: If the request is pinned to or claimed by another sponsor
        AlreadyProcessedError: If an outcome is already recorded
        GuardViolation: If the request was never signed
    """
    context = _context(request, request.status, Transition.FAIL)

    if request.status in TERMINAL_STATUSES:
        raise AlreadyProcessedError(
            f"Payment has already been processed (status: {request.status.value})",
            guard="not_terminal",
            **context,
        )
    owner = request.claim.sponsor if request.claim else request.sponsor_account_id
    if owner and owner != sponsor:
        raise AuthorizationError(
            f"Only sponsor {owner} may report a failure for this payment",
            guard="sponsor_is_relayer",
            **context,
        )
    advance(request, Transition.FAIL)

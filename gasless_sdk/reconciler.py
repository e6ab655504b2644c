"""
Log reconciler: folds an ordered message stream into payment request state.

The fold is a single left-to-right pass in sequence-number order. Each
message is handled by a pure step function taking the current record for
its request id (or None) and returning the next record, or None when the
message is ignored. The fold never raises on well-formed but inconsistent
input; ignored messages are counted in `ReconcileDiagnostics`.
"""
import logging
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, fields
from types import MappingProxyType
from typing import Deque, Dict, Iterable, Iterator, Optional

from ._rate_limited_log import rate_limited_log
from .codec import decode
from .exceptions import DecodeError
from .lifecycle import Transition, accepts_outcome, next_status
from .models import (
    Claim, Completion, LogEntry, LogMessage, MessageType, PaymentClaimedMessage,
    PaymentCompletedMessage, PaymentRequest, PaymentRequestMessage,
    PaymentSignedMessage, PaymentStatus,
)

logger = logging.getLogger(__name__)

MAX_RECORDED_SKIPS = 256


@dataclass(frozen=True)
class ReconcileDiagnostics:
    """
    Counters of entries the fold did not apply.

    Attributes:
        decode_errors: Entries whose payload could not be decoded
        duplicate_requests: REQUEST messages for an id already seen
        ignored_signatures: SIGNED messages for a request that was not PENDING
        ignored_claims: CLAIMED messages that were not the first valid claim
        ignored_outcomes: COMPLETED/FAILED messages after a recorded outcome
        orphan_references: Messages referencing an unknown request id
        redelivered: Entries at or below the last folded sequence number
        skipped_sequence_numbers: Sequence numbers of the most recent skipped
            entries, oldest first (at most MAX_RECORDED_SKIPS)
    """
    decode_errors: int = 0
    duplicate_requests: int = 0
    ignored_signatures: int = 0
    ignored_claims: int = 0
    ignored_outcomes: int = 0
    orphan_references: int = 0
    redelivered: int = 0
    skipped_sequence_numbers: tuple = ()

    @property
    def skipped(self) -> int:
        """Number of delivered entries that did not change any request."""
        return (
            self.decode_errors + self.duplicate_requests + self.ignored_signatures
            + self.ignored_claims + self.ignored_outcomes + self.orphan_references
        )


# ── step functions ────────────────────────────────────────────────────────

def apply_request(current: Optional[PaymentRequest], entry: LogMessage) -> Optional[PaymentRequest]:
    """REQUEST: create a PENDING record unless the id is already known."""
    if current is not None:
        return None
    msg: PaymentRequestMessage = entry.message
    return PaymentRequest(
        id=msg.payment_request_id,
        sender=msg.sender,
        recipient=msg.recipient_account_id,
        payment_type=msg.payment_type,
        amount=msg.amount,
        token_id=msg.token_id,
        nft_serial_number=msg.nft_serial_number,
        sponsor_account_id=msg.sponsor_account_id,
        max_fee=msg.max_fee,
        expiration_time=msg.expiration_time,
        memo=msg.memo,
        nonce=msg.nonce,
        created_at=msg.timestamp,
        sequence_number=entry.sequence_number,
        consensus_timestamp=entry.consensus_timestamp,
        status=PaymentStatus.PENDING,
        transaction_bytes=msg.transaction_bytes,
    )


def apply_signed(current: Optional[PaymentRequest], entry: LogMessage) -> Optional[PaymentRequest]:
    """SIGNED: attach the signed transfer to a PENDING record."""
    if current is None:
        return None
    target = next_status(current.status, Transition.SIGN)
    if target is None:
        return None
    msg: PaymentSignedMessage = entry.message
    return current.model_copy(update={
        "status": target,
        "signed_transaction_bytes": msg.signed_transaction_bytes,
        "signed_sequence_number": entry.sequence_number,
        "signed_at": msg.timestamp,
    })


def apply_claim(current: Optional[PaymentRequest], entry: LogMessage) -> Optional[PaymentRequest]:
    """CLAIMED: the first claim on the accepted signature marks the record RELAYED."""
    if current is None or current.claim is not None:
        return None
    target = next_status(current.status, Transition.CLAIM)
    if target is None:
        return None
    msg: PaymentClaimedMessage = entry.message
    if msg.signed_sequence_number != current.signed_sequence_number:
        return None
    if current.sponsor_account_id and current.sponsor_account_id != msg.sponsor:
        return None
    return current.model_copy(update={
        "status": target,
        "claim": Claim(sponsor=msg.sponsor, sequence_number=entry.sequence_number, claimed_at=msg.timestamp),
    })


def apply_outcome(current: Optional[PaymentRequest], entry: LogMessage) -> Optional[PaymentRequest]:
    """COMPLETED/FAILED: the first recorded outcome wins."""
    if current is None or not accepts_outcome(current.status):
        return None
    msg = entry.message
    if isinstance(msg, PaymentCompletedMessage):
        status = PaymentStatus.COMPLETED
        completion = Completion(
            transaction_ref=msg.transaction_id,
            sponsor=msg.sponsor,
            network_fee_paid=msg.gas_paid,
            sponsor_fee_charged=msg.sponsor_fee,
            completed_at=msg.timestamp,
            sequence_number=entry.sequence_number,
        )
    else:
        status = PaymentStatus.FAILED
        completion = Completion(
            transaction_ref=msg.transaction_id,
            sponsor=msg.sponsor,
            completed_at=msg.timestamp,
            reason=msg.reason,
            sequence_number=entry.sequence_number,
        )
    return current.model_copy(update={"status": status, "completion": completion})


_STEPS = {
    MessageType.REQUEST: (apply_request, "duplicate_requests"),
    MessageType.SIGNED: (apply_signed, "ignored_signatures"),
    MessageType.CLAIMED: (apply_claim, "ignored_claims"),
    MessageType.COMPLETED: (apply_outcome, "ignored_outcomes"),
    MessageType.FAILED: (apply_outcome, "ignored_outcomes"),
}


# ── views ─────────────────────────────────────────────────────────────────

class ReconciledView(Mapping):
    """
    Read-only snapshot of reconciled state: a mapping of request id to
    PaymentRequest, plus the decoded messages by sequence number and the
    fold diagnostics.

    Two views compare equal when they hold the same requests.
    """

    def __init__(
        self,
        requests: Dict[str, PaymentRequest],
        messages: Dict[int, LogMessage],
        diagnostics: ReconcileDiagnostics,
        last_sequence_number: int,
        log_id: Optional[str] = None
    ):
        self._requests = MappingProxyType(dict(requests))
        self._messages = MappingProxyType(dict(messages))
        self.diagnostics = diagnostics
        self.last_sequence_number = last_sequence_number
        self.log_id = log_id

    def __getitem__(self, request_id: str) -> PaymentRequest:
        return self._requests[request_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._requests)

    def __len__(self) -> int:
        return len(self._requests)

    def __repr__(self) -> str:
        return (f"ReconciledView(log_id={self.log_id!r}, requests={len(self)}, "
                f"last_sequence_number={self.last_sequence_number}, skipped={self.diagnostics.skipped})")

    def message_at(self, sequence_number: int) -> Optional[LogMessage]:
        """Decoded message at `sequence_number`, or None if absent or undecodable."""
        return self._messages.get(sequence_number)


class Reconciler:
    """
    Incremental fold over one log.

    Entries may be fed in batches as they are fetched. Entries at or below
    the last folded sequence number are treated as redeliveries and dropped,
    so overlapping or duplicated batches converge to the same state as a
    single pass over the whole log.
    """

    def __init__(self, log_id: Optional[str] = None):
        self.log_id = log_id
        self.last_sequence_number = 0
        self._counters: Dict[str, int] = {
            field.name: 0 for field in fields(ReconcileDiagnostics) if field.name != "skipped_sequence_numbers"
        }
        self._recent_skips: Deque[int] = deque(maxlen=MAX_RECORDED_SKIPS)
        self._requests: Dict[str, PaymentRequest] = {}
        self._messages: Dict[int, LogMessage] = {}

    def feed(self, entries: Iterable[LogEntry]) -> int:
        """
        Fold a batch of entries.

        Args:
            entries: Entries in any order; they are folded by sequence number

        Returns:
            Number of new entries consumed (applied or skipped)
        """
        consumed = 0
        for entry in sorted(entries, key=lambda e: e.sequence_number):
            if entry.sequence_number <= self.last_sequence_number:
                self._count("redelivered")
                continue
            self.last_sequence_number = entry.sequence_number
            consumed += 1

            decoded = decode(entry)
            if isinstance(decoded, DecodeError):
                self._skip("decode_errors", entry.sequence_number)
                logger.debug(f"Skipping entry {entry.sequence_number}: {decoded}")
                rate_limited_log(
                    f"Log {self.log_id or '<unnamed>'} contains undecodable entries "
                    f"(latest at sequence {entry.sequence_number}: {decoded})",
                    key=f"decode:{self.log_id}",
                    logger_instance=logger,
                )
                continue

            self._messages[decoded.sequence_number] = decoded
            self._fold(decoded)
        return consumed

    def _fold(self, entry: LogMessage) -> None:
        step, ignored_counter = _STEPS[entry.type]
        request_id = entry.message.payment_request_id
        current = self._requests.get(request_id)
        if current is None and entry.type != MessageType.REQUEST:
            self._skip("orphan_references", entry.sequence_number)
            return

        updated = step(current, entry)
        if updated is None:
            self._skip(ignored_counter, entry.sequence_number)
            logger.debug(
                f"Ignoring {entry.type.value} at sequence {entry.sequence_number} "
                f"for request {request_id[:10]}... (status: {current.status.value if current else 'none'})"
            )
            return
        self._requests[request_id] = updated

    @property
    def diagnostics(self) -> ReconcileDiagnostics:
        return ReconcileDiagnostics(skipped_sequence_numbers=tuple(self._recent_skips), **self._counters)

    def _count(self, counter: str) -> None:
        self._counters[counter] += 1

    def _skip(self, counter: str, sequence_number: int) -> None:
        self._counters[counter] += 1
        self._recent_skips.append(sequence_number)

    def view(self) -> ReconciledView:
        """Snapshot of the current state."""
        return ReconciledView(
            self._requests, self._messages, self.diagnostics, self.last_sequence_number, self.log_id
        )


def reconcile(entries: Iterable[LogEntry], log_id: Optional[str] = None) -> ReconciledView:
    """
    Fold a complete message sequence from scratch.

    Args:
        entries: Log entries (ordered or not; they are sorted by sequence number)
        log_id: Log identifier used in diagnostics

    Returns:
        Reconciled view of every request in the log. Expiry is not applied;
        see `expiry.apply_expiry`.
    """
    reconciler = Reconciler(log_id)
    reconciler.feed(entries)
    return reconciler.view()

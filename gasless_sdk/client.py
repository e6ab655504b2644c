"""
GaslessPaymentClient - write and read paths of the gasless payment protocol.
"""
import logging
import threading
from typing import List, Optional, Union

from cachetools import TTLCache

from .codec import encode, sanitize_message
from .exceptions import (
    AlreadyProcessedError, GuardViolation, NotFoundError, TransactionRejectedError,
)
from .expiry import effective_status
from .ledger import LedgerClient, LedgerReceipt, TransferIntent
from .lifecycle import Transition, check_can_create, check_can_fail, check_can_relay, check_can_sign
from .log.base import LogReader, LogWriter
from .models import (
    CreateResult, MessageType, PaymentClaimedMessage, PaymentCompletedMessage,
    PaymentFailedMessage, PaymentRequest, PaymentRequestMessage, PaymentSignedMessage,
    PaymentStatus, PaymentType, RelayResult, SignResult,
)
from .query import DEFAULT_QUERY_LIMIT, PaymentQuery, run_query
from .reconciler import ReconciledView, Reconciler
from .request_id import derive_request_id, generate_nonce
from .utils import b64decode, b64encode, now_ms

DEFAULT_MAX_FEE = 0.05
DEFAULT_EXPIRATION_MS = 60 * 60 * 1000


class GaslessPaymentClient:
    """
    Client for the gasless payment protocol.

    The same client serves both parties: a sender creates and signs payment
    requests, a sponsor relays signed requests and pays the network fee.
    Every write runs the lifecycle guards against a freshly reconciled view
    of the log before anything is appended.

    Reconciled state is kept per log in incremental reconcilers, so repeated
    reads only fetch entries after the last folded sequence number. Cached
    reconcilers expire after `cache_ttl` seconds and are then rebuilt from
    the start of the log.
    """

    def __init__(
        self,
        reader: LogReader,
        writer: Optional[LogWriter],
        ledger: Optional[LedgerClient],
        account_id: str,
        private_key: Optional[str] = None,
        default_log_id: Optional[str] = None,
        require_claim: bool = False,
        cache_ttl: int = 300,
        cache_size: int = 64,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the client

        Args:
            reader: Log reader
            writer: Log writer (optional for read-only use)
            ledger: Ledger collaborator (optional for read-only use)
            account_id: Account of the party using the client (sender or sponsor)
            private_key: Key used to sign transfers (required for sign_payment)
            default_log_id: Log used when an operation is called without one
            require_claim: Claim a signed request on the log before relaying it
            cache_ttl: Seconds a cached reconciler is reused
            cache_size: Maximum number of logs with cached reconcilers
            logger: Optional logger instance to use for debug/info logging
        """
        if not account_id:
            raise ValueError("account_id is required")

        self.reader = reader
        self.writer = writer
        self.ledger = ledger
        self.account_id = account_id
        self._private_key = private_key
        self.default_log_id = default_log_id
        self.require_claim = require_claim
        self.logger = logger or logging.getLogger(__name__)

        self._reconcilers: TTLCache = TTLCache(maxsize=cache_size, ttl=cache_ttl)
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return (f"GaslessPaymentClient(account_id={self.account_id!r}, "
                f"default_log_id={self.default_log_id!r}, require_claim={self.require_claim})")

    def close(self) -> None:
        self.reader.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ── helpers ───────────────────────────────────────────────────────────

    def _resolve_log_id(self, log_id: Optional[str]) -> str:
        resolved = log_id or self.default_log_id
        if not resolved:
            raise ValueError("No log configured. Pass log_id or set default_log_id.")
        return resolved

    def _require_writer(self) -> LogWriter:
        if self.writer is None:
            raise ValueError("This client has no log writer")
        return self.writer

    def _require_ledger(self) -> LedgerClient:
        if self.ledger is None:
            raise ValueError("This client has no ledger")
        return self.ledger

    def _append(self, log_id: str, message) -> int:
        sequence_number = self._require_writer().append(log_id, encode(message))
        self.logger.debug(f"Appended to log {log_id} at sequence {sequence_number}: {sanitize_message(message)}")
        return sequence_number

    def get_view(
        self,
        log_id: Optional[str] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ReconciledView:
        """
        Fetch new entries and return the reconciled view of a log.

        Expiry is not applied to the returned view.

        Args:
            log_id: Log to read (defaults to default_log_id)
            deadline: Absolute `time.monotonic()` deadline for the fetch
            cancel_event: Event that aborts the fetch when set

        Raises:
            NotFoundError: If the log does not exist
            LogUnavailableError: If the log cannot be read after retries
            LogFetchCancelledError: If the deadline passes or the fetch is cancelled
        """
        log_id = self._resolve_log_id(log_id)
        with self._lock:
            reconciler = self._reconcilers.get(log_id)
            if reconciler is None:
                reconciler = Reconciler(log_id)
            after = reconciler.last_sequence_number or None
            entries = self.reader.fetch_messages(
                log_id, after_sequence=after, deadline=deadline, cancel_event=cancel_event
            )
            # Only fold once the fetch succeeded; an aborted fetch leaves state untouched
            consumed = reconciler.feed(entries)
            self._reconcilers[log_id] = reconciler
            if consumed:
                self.logger.debug(
                    f"Folded {consumed} new entries of log {log_id} "
                    f"(last sequence {reconciler.last_sequence_number})"
                )
            return reconciler.view()

    def invalidate(self, log_id: Optional[str] = None) -> None:
        """Drop cached state for one log, or for every log when log_id is None."""
        with self._lock:
            if log_id is None:
                self._reconcilers.clear()
            else:
                self._reconcilers.pop(log_id, None)

    # ── write path ────────────────────────────────────────────────────────

    def create_payment(
        self,
        recipient: str,
        payment_type: Union[PaymentType, str] = PaymentType.HBAR,
        amount: Optional[float] = None,
        token_id: Optional[str] = None,
        nft_serial_number: Optional[int] = None,
        sponsor_account_id: Optional[str] = None,
        max_fee: float = DEFAULT_MAX_FEE,
        expiration_time: Optional[int] = None,
        memo: Optional[str] = None,
        nonce: Optional[int] = None,
        log_id: Optional[str] = None
    ) -> CreateResult:
        """
        Publish a payment request.

        Args:
            recipient: Recipient account id
            payment_type: HBAR, TOKEN or NFT transfer
            amount: Amount to transfer (HBAR or token units); ignored for NFTs
            token_id: Token id (required for TOKEN and NFT)
            nft_serial_number: NFT serial number (required for NFT)
            sponsor_account_id: Pin the request to one sponsor; any sponsor may relay when None
            max_fee: Maximum fee the sender accepts, in HBAR
            expiration_time: Expiration time in ms since the epoch (default: one hour from now)
            memo: Optional memo
            nonce: Replay protection nonce (generated when omitted)
            log_id: Log to publish to (defaults to default_log_id)

        Returns:
            CreateResult with the log position, the request id and the unsigned transfer

        Raises:
            ValueError: If the parameters are invalid for the payment type
            AlreadyProcessedError: If a request with the derived id is already on the log
        """
        log_id = self._resolve_log_id(log_id)
        payment_type = PaymentType(payment_type)

        if payment_type in (PaymentType.HBAR, PaymentType.TOKEN):
            if amount is None or amount <= 0:
                raise ValueError(f"A positive amount is required for {payment_type.value}")
        if payment_type in (PaymentType.TOKEN, PaymentType.NFT) and not token_id:
            raise ValueError(f"token_id is required for {payment_type.value}")
        if payment_type == PaymentType.NFT:
            if nft_serial_number is None:
                raise ValueError("nft_serial_number is required for nft_transfer")
            amount = 1
        if max_fee < 0:
            raise ValueError(f"max_fee must not be negative (got {max_fee})")
        if recipient == self.account_id:
            raise ValueError("Sender and recipient must differ")

        now = now_ms()
        if expiration_time is None:
            expiration_time = now + DEFAULT_EXPIRATION_MS
        elif expiration_time <= now:
            raise ValueError("expiration_time must be in the future")
        if nonce is None:
            nonce = generate_nonce()

        request_id = derive_request_id(self.account_id, recipient, nonce)
        check_can_create(self.get_view(log_id), request_id)

        unsigned = self._require_ledger().build_transfer(TransferIntent(
            sender=self.account_id,
            recipient=recipient,
            payment_type=payment_type,
            amount=float(amount),
            token_id=token_id,
            nft_serial_number=nft_serial_number,
            max_fee=float(max_fee),
            memo=memo,
        ))
        transaction_bytes = b64encode(unsigned)

        message = PaymentRequestMessage(
            payment_request_id=request_id,
            timestamp=now,
            sender=self.account_id,
            payment_type=payment_type,
            recipient_account_id=recipient,
            amount=float(amount),
            max_fee=float(max_fee),
            expiration_time=int(expiration_time),
            nonce=int(nonce),
            transaction_bytes=transaction_bytes,
            token_id=token_id,
            nft_serial_number=nft_serial_number,
            sponsor_account_id=sponsor_account_id,
            memo=memo,
        )
        sequence_number = self._append(log_id, message)
        self.logger.info(
            f"Created payment request {request_id[:10]}... on log {log_id} at sequence {sequence_number}"
        )
        return CreateResult(
            log_id=log_id,
            sequence_number=sequence_number,
            request_id=request_id,
            transaction_bytes=transaction_bytes,
        )

    def sign_payment(
        self,
        request_id: str,
        log_id: Optional[str] = None,
        sequence_number: Optional[int] = None
    ) -> SignResult:
        """
        Sign a pending request and publish the signature.

        Args:
            request_id: Payment request id
            log_id: Log holding the request (defaults to default_log_id)
            sequence_number: Sequence number of the REQUEST message; looked
                up from the reconciled view when omitted

        Returns:
            SignResult with the log position of the SIGNED message

        Raises:
            NotFoundError: If no REQUEST for `request_id` exists at `sequence_number`
            GuardViolation: If the REQUEST at `sequence_number` has another id
            AuthorizationError: If this client's account is not the sender
            AlreadyProcessedError: If the request was already signed
            ExpiredError: If the request has expired
        """
        log_id = self._resolve_log_id(log_id)
        if not self._private_key:
            raise ValueError("A private key is required to sign payments")

        view = self.get_view(log_id)
        request = view.get(request_id)

        if sequence_number is None:
            if request is None:
                raise NotFoundError(f"Payment request {request_id} not found on log {log_id}",
                                    request_id=request_id, attempted=Transition.SIGN.value)
            sequence_number = request.sequence_number

        entry = view.message_at(sequence_number)
        if entry is None or entry.type != MessageType.REQUEST:
            raise NotFoundError(
                f"No payment request message at sequence {sequence_number} of log {log_id}",
                request_id=request_id,
                attempted=Transition.SIGN.value,
            )
        if entry.message.payment_request_id != request_id:
            raise GuardViolation(
                f"Payment request ID mismatch (expected {request_id}, "
                f"found {entry.message.payment_request_id})",
                guard="request_id_matches",
                request_id=request_id,
                attempted=Transition.SIGN.value,
            )

        check_can_sign(request, self.account_id, now_ms())

        signed = self._require_ledger().sign(b64decode(request.transaction_bytes), self._private_key)
        message = PaymentSignedMessage(
            payment_request_id=request_id,
            timestamp=now_ms(),
            signed_transaction_bytes=b64encode(signed),
            original_sequence_number=request.sequence_number,
            sender=request.sender,
            recipient_account_id=request.recipient,
            payment_type=request.payment_type,
            amount=request.amount,
            token_id=request.token_id,
            nft_serial_number=request.nft_serial_number,
            max_fee=request.max_fee,
            memo=request.memo,
        )
        signed_sequence = self._append(log_id, message)
        self.logger.info(f"Signed payment request {request_id[:10]}... at sequence {signed_sequence}")
        return SignResult(log_id=log_id, sequence_number=signed_sequence, request_id=request_id)

    def _claim(self, log_id: str, request: PaymentRequest, signed_sequence_number: int) -> None:
        """
        Append a claim and confirm it is the accepted one.

        Raises:
            AlreadyProcessedError: If another sponsor's claim was accepted first
        """
        message = PaymentClaimedMessage(
            payment_request_id=request.id,
            timestamp=now_ms(),
            sponsor=self.account_id,
            signed_sequence_number=signed_sequence_number,
        )
        claim_sequence = self._append(log_id, message)

        claimed = self.get_view(log_id).get(request.id)
        if claimed is None or claimed.claim is None or claimed.claim.sequence_number != claim_sequence:
            winner = claimed.claim.sponsor if claimed is not None and claimed.claim else None
            raise AlreadyProcessedError(
                f"Payment {request.id} was claimed by another sponsor ({winner})",
                guard="claim_accepted",
                request_id=request.id,
                current_status=claimed.status.value if claimed is not None else None,
                attempted=Transition.CLAIM.value,
            )
        self.logger.info(f"Claimed payment {request.id[:10]}... at sequence {claim_sequence}")

    def _append_failure(
        self,
        log_id: str,
        request_id: str,
        reason: str,
        transaction_ref: Optional[str] = None
    ) -> int:
        message = PaymentFailedMessage(
            payment_request_id=request_id,
            timestamp=now_ms(),
            sponsor=self.account_id,
            reason=reason,
            transaction_id=transaction_ref,
        )
        return self._append(log_id, message)

    def relay_payment(
        self,
        log_id: Optional[str],
        sequence_number: int,
        sponsor_fee: Optional[float] = None
    ) -> RelayResult:
        """
        Execute a signed request as sponsor and publish the outcome.

        Args:
            log_id: Log holding the signed request (defaults to default_log_id)
            sequence_number: Sequence number of the SIGNED message
            sponsor_fee: Fee charged by the sponsor, in HBAR (default 0)

        Returns:
            RelayResult describing the executed transfer

        Raises:
            NotFoundError: If there is no SIGNED message at `sequence_number`
            AuthorizationError: If the request is pinned to another sponsor
            AlreadyProcessedError: If the request was already relayed or claimed by another sponsor
            ExpiredError: If the request has expired
            GuardViolation: If the message is not the accepted signature or the fee is out of bounds
            TransactionRejectedError: If the ledger rejected the transfer (a FAILED record is appended)
            LedgerUnavailableError: If the ledger could not be reached (nothing is appended)
        """
        log_id = self._resolve_log_id(log_id)
        fee = float(sponsor_fee) if sponsor_fee is not None else 0.0
        ledger = self._require_ledger()

        view = self.get_view(log_id)
        entry = view.message_at(sequence_number)
        if entry is None or entry.type != MessageType.SIGNED:
            raise NotFoundError(
                f"No signed payment message at sequence {sequence_number} of log {log_id}",
                attempted=Transition.COMPLETE.value,
            )
        request_id = entry.message.payment_request_id
        request = view.get(request_id)
        if request is None:
            raise NotFoundError(f"Original payment request {request_id} not found on log {log_id}",
                                request_id=request_id, attempted=Transition.COMPLETE.value)

        check_can_relay(
            request,
            self.account_id,
            now_ms(),
            sponsor_fee=fee,
            signed_sequence_number=sequence_number,
            own_claim=self.require_claim,
            transition=Transition.CLAIM if self.require_claim else Transition.COMPLETE,
        )
        if self.require_claim and request.status != PaymentStatus.RELAYED:
            self._claim(log_id, request, sequence_number)

        self.logger.info(f"Relaying payment {request_id[:10]}... ({request.asset_description} to {request.recipient})")
        try:
            receipt: LedgerReceipt = ledger.submit(b64decode(request.signed_transaction_bytes))
        except TransactionRejectedError as e:
            if e.request_id is None:
                e.request_id = request_id
            e.attempted = Transition.COMPLETE.value
            self._append_failure(log_id, request_id, str(e))
            self.logger.error(f"Payment {request_id[:10]}... failed: {e}")
            raise

        if not receipt.success:
            reason = receipt.error or "Transaction failed"
            self._append_failure(log_id, request_id, reason, receipt.transaction_ref)
            self.logger.error(f"Payment {request_id[:10]}... failed: {reason}")
            raise TransactionRejectedError(
                reason, request_id=request_id, current_status=request.status.value,
                attempted=Transition.COMPLETE.value,
            )

        message = PaymentCompletedMessage(
            payment_request_id=request_id,
            timestamp=now_ms(),
            transaction_id=receipt.transaction_ref,
            sponsor=self.account_id,
            gas_paid=float(receipt.network_fee_paid),
            sponsor_fee=fee,
        )
        completed_sequence = self._append(log_id, message)
        self.logger.info(
            f"Relayed payment {request_id[:10]}... in {receipt.transaction_ref} "
            f"(gas paid: {receipt.network_fee_paid}, fee: {fee})"
        )
        return RelayResult(
            transaction_ref=receipt.transaction_ref,
            request_id=request_id,
            sponsor=self.account_id,
            gas_paid=receipt.network_fee_paid,
            sponsor_fee=fee,
            sequence_number=completed_sequence,
        )

    def report_failure(
        self,
        request_id: str,
        reason: str,
        log_id: Optional[str] = None,
        transaction_ref: Optional[str] = None
    ) -> int:
        """
        Publish an explicit FAILED record for a signed request.

        Returns:
            Sequence number of the FAILED message

        Raises:
            NotFoundError: If the request is not on the log
            AlreadyProcessedError: If an outcome is already recorded
            AuthorizationError: If another sponsor is pinned or holds the claim
            GuardViolation: If the request was never signed
        """
        log_id = self._resolve_log_id(log_id)
        request = self.get_view(log_id).get(request_id)
        if request is None:
            raise NotFoundError(f"Payment request {request_id} not found on log {log_id}",
                                request_id=request_id, attempted=Transition.FAIL.value)
        check_can_fail(request, self.account_id)
        sequence_number = self._append_failure(log_id, request_id, reason, transaction_ref)
        self.logger.info(f"Reported failure of payment {request_id[:10]}...: {reason}")
        return sequence_number

    # ── read path ─────────────────────────────────────────────────────────

    def get_payment(self, request_id: str, log_id: Optional[str] = None) -> PaymentRequest:
        """
        Current state of one request, with expiry applied.

        Raises:
            NotFoundError: If the request is not on the log
        """
        log_id = self._resolve_log_id(log_id)
        request = self.get_view(log_id).get(request_id)
        if request is None:
            raise NotFoundError(f"Payment request {request_id} not found on log {log_id}", request_id=request_id)
        status = effective_status(request, now_ms())
        if status != request.status:
            return request.model_copy(update={"status": status})
        return request

    def query_payments(
        self,
        query: Union[PaymentQuery, str, None] = None,
        sender_account_id: Optional[str] = None,
        recipient_account_id: Optional[str] = None,
        payment_type: Optional[Union[PaymentType, str]] = None,
        status: Optional[Union[PaymentStatus, str]] = None,
        limit: Optional[int] = DEFAULT_QUERY_LIMIT,
        now: Optional[int] = None
    ) -> List[PaymentRequest]:
        """
        Query reconciled requests of a log.

        Args:
            query: A PaymentQuery, or a log id (defaults to default_log_id)
            sender_account_id: Sender filter
            recipient_account_id: Recipient filter
            payment_type: Payment type filter
            status: Status filter (expiry is applied first)
            limit: Maximum number of results, None for all
            now: Evaluation time in ms (defaults to the current time)

        Returns:
            Matching requests, newest first
        """
        if not isinstance(query, PaymentQuery):
            query = PaymentQuery(
                log_id=self._resolve_log_id(query),
                sender_account_id=sender_account_id,
                recipient_account_id=recipient_account_id,
                payment_type=payment_type,
                status=status,
                limit=limit,
            )
        return run_query(self.get_view(query.log_id), query, now_ms=now)

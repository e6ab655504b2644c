"""
Data models for the gasless payments SDK.

Wire messages are pydantic models with camelCase aliases matching the JSON
carried in log entries. Materialized payment requests are frozen models
derived from the log and never written to it.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr, field_validator
from pydantic.alias_generators import to_camel

from .utils import b64decode

Amount = Union[StrictInt, StrictFloat]

PROTOCOL_VERSION = "1.0"


class PaymentType(str, Enum):
    """Kind of asset moved by a payment request."""
    HBAR = "hbar_transfer"
    TOKEN = "token_transfer"
    NFT = "nft_transfer"


class PaymentStatus(str, Enum):
    """Lifecycle status of a payment request."""
    PENDING = "pending"        # Request created, waiting for signature
    SIGNED = "signed"          # Sender signed the transfer
    RELAYED = "relayed"        # A sponsor claimed the relay
    COMPLETED = "completed"    # Transfer executed
    FAILED = "failed"          # Transfer failed
    EXPIRED = "expired"        # Expired before execution


class MessageType(str, Enum):
    """Discriminator values of log messages."""
    REQUEST = "gasless_payment_request"
    SIGNED = "gasless_payment_signed"
    CLAIMED = "gasless_payment_claimed"
    COMPLETED = "gasless_payment_completed"
    FAILED = "gasless_payment_failed"


class _WireMessage(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    message_type: ClassVar[MessageType]

    version: StrictStr = PROTOCOL_VERSION
    payment_request_id: StrictStr
    timestamp: StrictInt


def _check_base64(value: str) -> str:
    b64decode(value)
    return value


class PaymentRequestMessage(_WireMessage):
    """gasless_payment_request: the payment intent published by the sender."""
    message_type: ClassVar[MessageType] = MessageType.REQUEST

    type: Literal["gasless_payment_request"] = "gasless_payment_request"
    status: Literal["pending"] = "pending"
    sender: StrictStr
    payment_type: PaymentType
    recipient_account_id: StrictStr
    amount: Amount
    max_fee: Amount
    expiration_time: StrictInt
    nonce: StrictInt
    transaction_bytes: StrictStr
    token_id: Optional[StrictStr] = None
    nft_serial_number: Optional[StrictInt] = None
    sponsor_account_id: Optional[StrictStr] = None
    memo: Optional[StrictStr] = None

    @field_validator("transaction_bytes")
    @classmethod
    def check_transaction_bytes(cls, value: str) -> str:
        return _check_base64(value)


class PaymentSignedMessage(_WireMessage):
    """gasless_payment_signed: the sender's signature over the transfer."""
    message_type: ClassVar[MessageType] = MessageType.SIGNED

    type: Literal["gasless_payment_signed"] = "gasless_payment_signed"
    status: Literal["signed"] = "signed"
    signed_transaction_bytes: StrictStr
    original_sequence_number: StrictInt
    # Display copies of the request
    sender: Optional[StrictStr] = None
    recipient_account_id: Optional[StrictStr] = None
    payment_type: Optional[PaymentType] = None
    amount: Optional[Amount] = None
    token_id: Optional[StrictStr] = None
    nft_serial_number: Optional[StrictInt] = None
    max_fee: Optional[Amount] = None
    memo: Optional[StrictStr] = None

    @field_validator("signed_transaction_bytes")
    @classmethod
    def check_signed_bytes(cls, value: str) -> str:
        return _check_base64(value)


class PaymentClaimedMessage(_WireMessage):
    """gasless_payment_claimed: a sponsor reserving a signed request."""
    message_type: ClassVar[MessageType] = MessageType.CLAIMED

    type: Literal["gasless_payment_claimed"] = "gasless_payment_claimed"
    status: Literal["claimed"] = "claimed"
    sponsor: StrictStr
    signed_sequence_number: StrictInt


class PaymentCompletedMessage(_WireMessage):
    """gasless_payment_completed: execution result posted by the sponsor."""
    message_type: ClassVar[MessageType] = MessageType.COMPLETED

    type: Literal["gasless_payment_completed"] = "gasless_payment_completed"
    status: Literal["completed"] = "completed"
    transaction_id: StrictStr
    sponsor: StrictStr
    gas_paid: Amount
    sponsor_fee: Amount


class PaymentFailedMessage(_WireMessage):
    """gasless_payment_failed: execution error posted by the sponsor."""
    message_type: ClassVar[MessageType] = MessageType.FAILED

    type: Literal["gasless_payment_failed"] = "gasless_payment_failed"
    status: Literal["failed"] = "failed"
    sponsor: StrictStr
    reason: StrictStr
    transaction_id: Optional[StrictStr] = None


PaymentMessage = Annotated[
    Union[
        PaymentRequestMessage,
        PaymentSignedMessage,
        PaymentClaimedMessage,
        PaymentCompletedMessage,
        PaymentFailedMessage,
    ],
    Field(discriminator="type"),
]


@dataclass(frozen=True)
class LogEntry:
    """
    One raw entry delivered by a log reader.

    Attributes:
        sequence_number: Log-assigned, strictly increasing position
        consensus_timestamp: Log-assigned ordering timestamp ("seconds.nanos")
        payload: Opaque message bytes
    """
    sequence_number: int
    consensus_timestamp: str
    payload: bytes


@dataclass(frozen=True)
class LogMessage:
    """A log entry whose payload decoded into a typed message."""
    sequence_number: int
    consensus_timestamp: str
    message: PaymentMessage

    @property
    def type(self) -> MessageType:
        return self.message.message_type


class Completion(BaseModel):
    """Execution outcome attached by a COMPLETED or FAILED message."""
    model_config = ConfigDict(frozen=True)

    transaction_ref: Optional[str] = None
    sponsor: str
    network_fee_paid: float = 0
    sponsor_fee_charged: float = 0
    completed_at: int
    reason: Optional[str] = None
    sequence_number: int


class Claim(BaseModel):
    """Accepted relay claim of a sponsor."""
    model_config = ConfigDict(frozen=True)

    sponsor: str
    sequence_number: int
    claimed_at: int


TERMINAL_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED})


class PaymentRequest(BaseModel):
    """
    Materialized view of one payment request, rebuilt from the log.

    `sponsor_account_id` is None when any sponsor may relay.
    `created_at` is the timestamp declared in the REQUEST message (ms).
    """
    model_config = ConfigDict(frozen=True)

    id: str
    sender: str
    recipient: str
    payment_type: PaymentType
    amount: float
    token_id: Optional[str] = None
    nft_serial_number: Optional[int] = None
    sponsor_account_id: Optional[str] = None
    max_fee: float
    expiration_time: int
    memo: Optional[str] = None
    nonce: int
    created_at: int
    sequence_number: int
    consensus_timestamp: str
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_bytes: str
    signed_transaction_bytes: Optional[str] = None
    signed_sequence_number: Optional[int] = None
    signed_at: Optional[int] = None
    claim: Optional[Claim] = None
    completion: Optional[Completion] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def asset_description(self) -> str:
        """Short human readable description of what is transferred."""
        if self.payment_type == PaymentType.NFT:
            return f"NFT {self.token_id}/{self.nft_serial_number}"
        if self.payment_type == PaymentType.TOKEN:
            return f"{self.amount} tokens ({self.token_id})"
        return f"{self.amount} HBAR"


class CreateResult(BaseModel):
    """Result of publishing a payment request."""
    log_id: str
    sequence_number: int
    request_id: str
    transaction_bytes: str


class SignResult(BaseModel):
    """Result of publishing a signature."""
    log_id: str
    sequence_number: int
    request_id: str


class RelayResult(BaseModel):
    """Result of relaying a signed request."""
    transaction_ref: str
    request_id: str
    sponsor: str
    gas_paid: float
    sponsor_fee: float
    sequence_number: int

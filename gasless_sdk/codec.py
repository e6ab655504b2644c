"""
Wire codec for log messages.

Every log entry carries one JSON object whose `type` field selects one of
the message shapes in `models`. Decoding never raises for bad input from the
log: `decode` returns a `DecodeError` value so a single corrupt entry cannot
abort the surrounding stream.
"""
import logging
from typing import Any, Dict, Union

from pydantic import TypeAdapter, ValidationError

from .exceptions import DecodeError
from .models import LogEntry, LogMessage, PaymentMessage

logger = logging.getLogger(__name__)

_message_adapter: TypeAdapter = TypeAdapter(PaymentMessage)

# Fields that carry transaction bytes; never written to logs verbatim
_BYTES_FIELDS = ("transactionBytes", "signedTransactionBytes")


def decode_payload(payload: bytes) -> PaymentMessage:
    """
    Decode raw payload bytes into a typed message.

    Args:
        payload: UTF-8 encoded JSON object

    Returns:
        The message variant selected by the `type` discriminator

    Raises:
        DecodeError: If the payload is not valid UTF-8 JSON, has no or an
            unknown `type`, or fails structural validation
    """
    if not isinstance(payload, (bytes, bytearray)):
        raise DecodeError(f"Payload must be bytes, got {type(payload).__name__}")

    try:
        text = bytes(payload).decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"Payload is not valid UTF-8: {e}")

    try:
        return _message_adapter.validate_json(text)
    except ValidationError as e:
        # Keep only the first error; full reports can be large
        first = e.errors()[0] if e.error_count() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise DecodeError(f"Invalid message ({first.get('type', 'unknown')} at '{location}'): {first.get('msg', e)}")
    except ValueError as e:
        raise DecodeError(f"Invalid message: {e}")


def decode(entry: LogEntry) -> Union[LogMessage, DecodeError]:
    """
    Decode one log entry.

    Args:
        entry: Raw entry from a log reader

    Returns:
        A LogMessage on success, otherwise the DecodeError describing why
        the entry was rejected (returned, not raised)
    """
    try:
        message = decode_payload(entry.payload)
    except DecodeError as e:
        e.sequence_number = entry.sequence_number
        return e
    return LogMessage(
        sequence_number=entry.sequence_number,
        consensus_timestamp=entry.consensus_timestamp,
        message=message,
    )


def encode(message: PaymentMessage) -> bytes:
    """
    Encode a message to its wire form.

    Optional fields that are unset are omitted; `decode_payload(encode(m))`
    returns a message equal to `m`.
    """
    return message.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


def sanitize_message(message: PaymentMessage) -> Dict[str, Any]:
    """
    Wire dictionary of a message with transaction bytes redacted, for logging.
    """
    result = message.model_dump(mode="json", by_alias=True, exclude_none=True)
    for field in _BYTES_FIELDS:
        if field in result:
            result[field] = f"[REDACTED - {len(str(result[field]))} chars]"
    return result

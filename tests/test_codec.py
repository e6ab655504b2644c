"""
Tests for the wire codec.
"""
import json

import pytest

from gasless_sdk.codec import decode, decode_payload, encode, sanitize_message
from gasless_sdk.exceptions import DecodeError
from gasless_sdk.models import (
    LogEntry, MessageType, PaymentCompletedMessage, PaymentRequestMessage,
    PaymentSignedMessage, PaymentType,
)
from conftest import (
    NOW_MS, claimed_message, completed_message, failed_message, request_message, signed_message,
)


class TestEncode:
    """Tests for encoding messages to wire form."""

    def test_uses_camel_case_wire_names(self):
        wire = json.loads(encode(request_message()))

        assert wire["type"] == "gasless_payment_request"
        assert wire["status"] == "pending"
        assert wire["version"] == "1.0"
        assert wire["paymentType"] == "hbar_transfer"
        assert wire["recipientAccountId"] == "0.0.5002"
        assert "paymentRequestId" in wire
        assert "transactionBytes" in wire
        assert "payment_request_id" not in wire

    def test_omits_unset_optional_fields(self):
        wire = json.loads(encode(request_message()))

        assert "tokenId" not in wire
        assert "sponsorAccountId" not in wire
        assert "memo" not in wire

    def test_is_compact(self):
        assert b" " not in encode(completed_message("a" * 32))

    @pytest.mark.parametrize("message", [
        request_message(memo="coffee", sponsor_account_id="0.0.6001"),
        request_message(payment_type=PaymentType.NFT, token_id="0.0.777", nft_serial_number=3, amount=1),
        signed_message("a" * 32),
        claimed_message("a" * 32, signed_sequence_number=2),
        completed_message("a" * 32),
        failed_message("a" * 32),
    ])
    def test_round_trip(self, message):
        assert decode_payload(encode(message)) == message


class TestDecode:
    """Tests for decoding log payloads."""

    def test_decodes_original_wire_format(self):
        payload = json.dumps({
            "type": "gasless_payment_completed",
            "version": "1.0",
            "paymentRequestId": "f" * 32,
            "timestamp": NOW_MS,
            "transactionId": "0.0.6001@1700000000.000000001",
            "sponsor": "0.0.6001",
            "gasPaid": 0.001,
            "sponsorFee": 0.01,
            "status": "completed",
        }).encode()

        message = decode_payload(payload)

        assert isinstance(message, PaymentCompletedMessage)
        assert message.message_type == MessageType.COMPLETED
        assert message.sponsor_fee == 0.01

    def test_signed_message_accepts_display_copies(self):
        wire = json.loads(encode(signed_message("b" * 32)))
        wire.update({"sender": "0.0.5001", "amount": 10, "paymentType": "hbar_transfer"})

        message = decode_payload(json.dumps(wire).encode())

        assert isinstance(message, PaymentSignedMessage)
        assert message.sender == "0.0.5001"
        assert message.payment_type == PaymentType.HBAR

    @pytest.mark.parametrize("payload", [
        b"\xff\xfe not utf-8",
        b"not json at all",
        b"[1, 2, 3]",
        b'"just a string"',
        b"{}",
        b'{"type": "gasless_payment_refund", "paymentRequestId": "x", "timestamp": 1}',
    ])
    def test_rejects_malformed_payloads(self, payload):
        with pytest.raises(DecodeError):
            decode_payload(payload)

    def test_rejects_wrong_status_literal(self):
        wire = json.loads(encode(request_message()))
        wire["status"] = "completed"

        with pytest.raises(DecodeError):
            decode_payload(json.dumps(wire).encode())

    def test_rejects_string_amount(self):
        wire = json.loads(encode(request_message()))
        wire["amount"] = "10"

        with pytest.raises(DecodeError):
            decode_payload(json.dumps(wire).encode())

    def test_rejects_invalid_base64(self):
        wire = json.loads(encode(request_message()))
        wire["transactionBytes"] = "not*base64!"

        with pytest.raises(DecodeError) as exc_info:
            decode_payload(json.dumps(wire).encode())

        assert "transactionBytes" in str(exc_info.value)

    def test_rejects_non_bytes(self):
        with pytest.raises(DecodeError):
            decode_payload("a string")

    def test_decode_returns_error_with_sequence_number(self):
        result = decode(LogEntry(9, "1700000000.000000009", b"garbage"))

        assert isinstance(result, DecodeError)
        assert result.sequence_number == 9

    def test_decode_wraps_entry(self):
        message = request_message()
        result = decode(LogEntry(4, "1700000000.000000004", encode(message)))

        assert result.sequence_number == 4
        assert result.type == MessageType.REQUEST
        assert isinstance(result.message, PaymentRequestMessage)
        assert result.message == message


def test_sanitize_message_redacts_transaction_bytes():
    sanitized = sanitize_message(request_message())

    assert sanitized["transactionBytes"].startswith("[REDACTED")
    assert sanitized["sender"] == "0.0.5001"

    sanitized = sanitize_message(signed_message("c" * 32))
    assert sanitized["signedTransactionBytes"].startswith("[REDACTED")

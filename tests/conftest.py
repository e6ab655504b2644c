"""
Pytest fixtures for the gasless payments SDK tests.
"""
import time
from typing import List, Union
from unittest.mock import MagicMock

import pytest

from gasless_sdk._rate_limited_log import reset_rate_limits
from gasless_sdk.client import GaslessPaymentClient
from gasless_sdk.codec import encode
from gasless_sdk.ledger import LedgerClient, LedgerReceipt
from gasless_sdk.log.memory import InMemoryLog
from gasless_sdk.models import (
    LogEntry, PaymentClaimedMessage, PaymentCompletedMessage, PaymentFailedMessage,
    PaymentRequestMessage, PaymentSignedMessage, PaymentType,
)
from gasless_sdk.request_id import derive_request_id
from gasless_sdk.utils import b64encode

# Accounts used throughout the tests
SENDER = "0.0.5001"
RECIPIENT = "0.0.5002"
OTHER_SENDER = "0.0.5003"
SPONSOR = "0.0.6001"
OTHER_SPONSOR = "0.0.6002"

NOW_MS = 1_700_000_000_000
HOUR_MS = 60 * 60 * 1000

UNSIGNED_BYTES = b'{"to":"0x00","value":10}'
SIGNED_BYTES = b"\x02\xf8signed-transfer"


# Make time.sleep instantaneous so retries don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


# ─────────────────────────────────────────────────────────────────────────
#  MESSAGE BUILDERS
# ─────────────────────────────────────────────────────────────────────────

def request_message(
    sender: str = SENDER,
    recipient: str = RECIPIENT,
    nonce: int = 7,
    amount: float = 10,
    timestamp: int = NOW_MS,
    expiration_time: int = NOW_MS + HOUR_MS,
    **overrides
) -> PaymentRequestMessage:
    fields = dict(
        payment_request_id=derive_request_id(sender, recipient, nonce),
        timestamp=timestamp,
        sender=sender,
        payment_type=PaymentType.HBAR,
        recipient_account_id=recipient,
        amount=amount,
        max_fee=0.05,
        expiration_time=expiration_time,
        nonce=nonce,
        transaction_bytes=b64encode(UNSIGNED_BYTES),
    )
    fields.update(overrides)
    return PaymentRequestMessage(**fields)


def signed_message(request_id: str, original_sequence_number: int = 1,
                   timestamp: int = NOW_MS + 1000) -> PaymentSignedMessage:
    return PaymentSignedMessage(
        payment_request_id=request_id,
        timestamp=timestamp,
        signed_transaction_bytes=b64encode(SIGNED_BYTES),
        original_sequence_number=original_sequence_number,
    )


def claimed_message(request_id: str, signed_sequence_number: int, sponsor: str = SPONSOR,
                    timestamp: int = NOW_MS + 1500) -> PaymentClaimedMessage:
    return PaymentClaimedMessage(
        payment_request_id=request_id,
        timestamp=timestamp,
        sponsor=sponsor,
        signed_sequence_number=signed_sequence_number,
    )


def completed_message(request_id: str, sponsor: str = SPONSOR, sponsor_fee: float = 0.01,
                      gas_paid: float = 0.001, transaction_id: str = "0xabc",
                      timestamp: int = NOW_MS + 2000) -> PaymentCompletedMessage:
    return PaymentCompletedMessage(
        payment_request_id=request_id,
        timestamp=timestamp,
        transaction_id=transaction_id,
        sponsor=sponsor,
        gas_paid=gas_paid,
        sponsor_fee=sponsor_fee,
    )


def failed_message(request_id: str, sponsor: str = SPONSOR, reason: str = "INSUFFICIENT_PAYER_BALANCE",
                   timestamp: int = NOW_MS + 2000) -> PaymentFailedMessage:
    return PaymentFailedMessage(
        payment_request_id=request_id,
        timestamp=timestamp,
        sponsor=sponsor,
        reason=reason,
    )


def make_entries(*messages: Union[bytes, object], start: int = 1) -> List[LogEntry]:
    """Log entries numbered from `start`; raw bytes are used as-is."""
    entries = []
    for offset, message in enumerate(messages):
        payload = message if isinstance(message, bytes) else encode(message)
        sequence_number = start + offset
        entries.append(LogEntry(sequence_number, f"1700000000.{sequence_number:09d}", payload))
    return entries


# ─────────────────────────────────────────────────────────────────────────
#  FIXTURES
# ─────────────────────────────────────────────────────────────────────────

@pytest.fixture
def memory_log():
    """In-memory log with one empty topic"""
    log = InMemoryLog()
    log.create_log("0.0.4242")
    return log


@pytest.fixture
def mock_ledger():
    """Ledger stub that builds, signs and executes every transfer successfully"""
    ledger = MagicMock(spec=LedgerClient)
    ledger.build_transfer.return_value = UNSIGNED_BYTES
    ledger.sign.return_value = SIGNED_BYTES
    ledger.submit.return_value = LedgerReceipt(transaction_ref="0xfeed", network_fee_paid=0.002)
    ledger.get_balance.return_value = 100.0
    return ledger


@pytest.fixture
def sender_client(memory_log, mock_ledger):
    return GaslessPaymentClient(
        reader=memory_log,
        writer=memory_log,
        ledger=mock_ledger,
        account_id=SENDER,
        private_key="0x" + "11" * 32,
        default_log_id="0.0.4242",
    )


@pytest.fixture
def sponsor_client(memory_log, mock_ledger):
    return GaslessPaymentClient(
        reader=memory_log,
        writer=memory_log,
        ledger=mock_ledger,
        account_id=SPONSOR,
        default_log_id="0.0.4242",
    )

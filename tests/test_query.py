"""
Tests for the query engine.
"""
import random

import pytest
from pydantic import ValidationError

from gasless_sdk.models import PaymentStatus, PaymentType
from gasless_sdk.query import DEFAULT_QUERY_LIMIT, PaymentQuery, query_payments, run_query
from gasless_sdk.reconciler import reconcile
from conftest import (
    HOUR_MS, NOW_MS, OTHER_SENDER, RECIPIENT, SENDER, completed_message, make_entries,
    request_message, signed_message,
)


def _requests():
    return [
        request_message(sender=SENDER, nonce=1, timestamp=NOW_MS),
        request_message(sender=OTHER_SENDER, nonce=2, timestamp=NOW_MS + 10),
        request_message(sender=SENDER, nonce=3, timestamp=NOW_MS + 20,
                        payment_type=PaymentType.TOKEN, token_id="0.0.777"),
    ]


class TestFilters:
    """Tests for query filters."""

    @pytest.mark.parametrize("seed", [None, 1, 2, 3])
    def test_sender_filter(self, seed):
        messages = _requests()
        if seed is not None:
            random.Random(seed).shuffle(messages)
        view = reconcile(make_entries(*messages))

        results = query_payments(view, sender=SENDER, now_ms=NOW_MS)

        assert len(results) == 2
        assert all(r.sender == SENDER for r in results)

    def test_recipient_filter(self):
        view = reconcile(make_entries(*_requests(), request_message(recipient="0.0.5999", nonce=9)))

        results = query_payments(view, recipient=RECIPIENT, now_ms=NOW_MS)

        assert len(results) == 3

    def test_payment_type_filter(self):
        view = reconcile(make_entries(*_requests()))

        results = query_payments(view, payment_type=PaymentType.TOKEN, now_ms=NOW_MS)

        assert [r.nonce for r in results] == [3]

    def test_status_filter_sees_expiry(self):
        view = reconcile(make_entries(*_requests()))

        assert query_payments(view, status=PaymentStatus.PENDING, now_ms=NOW_MS + 2 * HOUR_MS) == []
        assert len(query_payments(view, status=PaymentStatus.EXPIRED, now_ms=NOW_MS + 2 * HOUR_MS)) == 3

    def test_filters_combine(self):
        first = request_message(nonce=1)
        view = reconcile(make_entries(
            first, request_message(nonce=2), signed_message(first.payment_request_id),
        ))

        results = query_payments(view, sender=SENDER, status=PaymentStatus.SIGNED, now_ms=NOW_MS)

        assert [r.id for r in results] == [first.payment_request_id]

    def test_end_to_end_completed_query(self):
        message = request_message(nonce=7, amount=10)
        request_id = message.payment_request_id
        view = reconcile(make_entries(message, signed_message(request_id), completed_message(request_id, sponsor_fee=0.01)))

        results = query_payments(view, status=PaymentStatus.COMPLETED, now_ms=NOW_MS)

        assert len(results) == 1
        assert results[0].completion.sponsor_fee_charged == 0.01


class TestOrdering:
    """Tests for ordering and limits."""

    def test_newest_first(self):
        view = reconcile(make_entries(*_requests()))

        results = query_payments(view, now_ms=NOW_MS)

        assert [r.nonce for r in results] == [3, 2, 1]

    def test_ties_broken_by_sequence_number(self):
        view = reconcile(make_entries(*[request_message(nonce=n, timestamp=NOW_MS) for n in range(4)]))

        results = query_payments(view, now_ms=NOW_MS)

        assert [r.sequence_number for r in results] == [4, 3, 2, 1]

    def test_limit_truncates_after_sort(self):
        view = reconcile(make_entries(*_requests()))

        results = query_payments(view, limit=2, now_ms=NOW_MS)

        assert [r.nonce for r in results] == [3, 2]

    def test_no_limit_returns_all(self):
        view = reconcile(make_entries(*[request_message(nonce=n) for n in range(15)]))

        assert len(query_payments(view, limit=None, now_ms=NOW_MS)) == 15

    def test_negative_limit(self):
        with pytest.raises(ValueError):
            query_payments({}, limit=-1)

    def test_repeated_queries_are_identical(self):
        view = reconcile(make_entries(*_requests()))
        assert query_payments(view, now_ms=NOW_MS) == query_payments(view, now_ms=NOW_MS)


class TestPaymentQuery:
    """Tests for the PaymentQuery parameters model."""

    def test_accepts_wire_names(self):
        query = PaymentQuery.model_validate({
            "logId": "0.0.4242",
            "senderAccountId": SENDER,
            "paymentType": "hbar_transfer",
            "status": "pending",
        })

        assert query.log_id == "0.0.4242"
        assert query.sender_account_id == SENDER
        assert query.payment_type == PaymentType.HBAR
        assert query.status == PaymentStatus.PENDING
        assert query.limit == DEFAULT_QUERY_LIMIT

    def test_log_id_is_required(self):
        with pytest.raises(ValidationError):
            PaymentQuery()

    def test_limit_must_be_positive(self):
        with pytest.raises(ValidationError):
            PaymentQuery(log_id="0.0.4242", limit=0)

    def test_run_query_defaults_to_ten(self):
        view = reconcile(make_entries(*[request_message(nonce=n) for n in range(12)]))

        results = run_query(view, PaymentQuery(log_id="0.0.4242"), now_ms=NOW_MS)

        assert len(results) == 10

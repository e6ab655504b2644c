#!/usr/bin/env python3
"""
Read-only view of a gasless payment topic through a mirror node.
"""
import logging
import sys

from gasless_sdk import GaslessConfig, GaslessPaymentClient, MirrorNodeLogReader, PaymentStatus
from gasless_sdk.exceptions import GaslessError

logging.basicConfig(level=logging.INFO)


def main():
    config = GaslessConfig.from_env()
    try:
        topic_id = config.require_topic_id()
    except ValueError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    reader = MirrorNodeLogReader(config.resolved_mirror_node_url())
    with GaslessPaymentClient(reader, writer=None, ledger=None,
                              account_id=config.account_id or "0.0.0", default_log_id=topic_id) as client:
        try:
            view = client.get_view()
        except GaslessError as e:
            print(f"Could not read topic {topic_id}: {e}")
            sys.exit(1)

        print(f"\nTopic {topic_id}: {len(view)} request(s) up to sequence {view.last_sequence_number}")
        if view.diagnostics.skipped:
            print(f"Skipped entries: {view.diagnostics.skipped}")

        for status in (PaymentStatus.SIGNED, PaymentStatus.COMPLETED):
            payments = client.query_payments(status=status, limit=5)
            print(f"\nLatest {status.value} payments:")
            for payment in payments:
                print(f"  {payment.id[:16]}... {payment.sender} -> {payment.recipient}: "
                      f"{payment.asset_description}")


if __name__ == "__main__":
    main()

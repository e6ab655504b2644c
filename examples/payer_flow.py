#!/usr/bin/env python3
"""
End-to-end gasless payment on a local log.

The log is an in-process InMemoryLog; transfers are built, signed and
executed on the JSON-RPC endpoint of the configured network, so both
accounts need to exist there and the sponsor needs HBAR for gas.
"""
import logging
import os

from gasless_sdk import (
    GaslessConfig, GaslessPaymentClient, InMemoryLog, NetworkConfig, PaymentType,
    SponsorBot, SponsorConfig, Web3Ledger,
)
from gasless_sdk.exceptions import GaslessError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    """
    Demonstrate the payer and sponsor sides of one payment.

    This example shows how to:
    1. Create and sign a payment request as the sender
    2. Relay it as a sponsor bot
    3. Read the reconciled payment back
    """
    config = GaslessConfig.from_env()
    sender_key = os.environ.get("SENDER_PRIVATE_KEY")
    recipient = os.environ.get("RECIPIENT_ACCOUNT_ID")

    if not (config.account_id and sender_key and recipient):
        print("ERROR: GASLESS_ACCOUNT_ID, SENDER_PRIVATE_KEY and RECIPIENT_ACCOUNT_ID are required")
        return

    log = InMemoryLog()
    log_id = log.create_log()
    ledger = Web3Ledger(
        config.resolved_rpc_url(),
        chain_id=NetworkConfig.get_chain_id(config.network),
    )

    sender = GaslessPaymentClient(
        reader=log, writer=log, ledger=ledger,
        account_id=os.environ.get("SENDER_ACCOUNT_ID", "0.0.5001"),
        private_key=sender_key,
        default_log_id=log_id,
    )
    sponsor = GaslessPaymentClient(
        reader=log, writer=log, ledger=ledger,
        account_id=config.account_id,
        default_log_id=log_id,
    )

    print(f"\n=== Gasless payment on {config.network} (log {log_id}) ===\n")
    try:
        created = sender.create_payment(recipient, PaymentType.HBAR, amount=1.0, memo="example")
        print(f"Created request {created.request_id} at sequence {created.sequence_number}")

        signed = sender.sign_payment(created.request_id)
        print(f"Signed at sequence {signed.sequence_number}")

        bot = SponsorBot(sponsor, SponsorConfig.from_config(config))
        for result in bot.poll_once():
            print(f"Relayed: {result.transaction_ref} (gas {result.gas_paid} HBAR, fee {result.sponsor_fee} HBAR)")

        payment = sender.get_payment(created.request_id)
        print(f"Final status: {payment.status.value}")
    except GaslessError as e:
        print(f"Payment failed: {e}")


if __name__ == "__main__":
    main()

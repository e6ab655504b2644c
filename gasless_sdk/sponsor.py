"""
Sponsor bot: polls a log for signed payments and relays them for a fee.
"""
import logging
import threading
from dataclasses import dataclass
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .client import GaslessPaymentClient
from .config import GaslessConfig
from .exceptions import ExternalCollaboratorError, GuardViolation, NotFoundError
from .models import PaymentRequest, PaymentStatus, RelayResult

logger = logging.getLogger(__name__)


class FeePolicy(BaseModel):
    """
    How a sponsor prices a relay.

    `flat` charges `flat_fee` HBAR per payment, `percentage` charges
    `percentage_fee` percent of the transferred amount. The fee never
    exceeds the request's `max_fee`.
    """
    model_config = ConfigDict(frozen=True)

    fee_model: Literal["flat", "percentage"] = "percentage"
    flat_fee: float = Field(default=0.01, ge=0)
    percentage_fee: float = Field(default=1.0, ge=0)

    def fee_for(self, request: PaymentRequest) -> float:
        if self.fee_model == "flat":
            fee = self.flat_fee
        else:
            fee = request.amount * self.percentage_fee / 100
        return round(min(fee, request.max_fee), 8)


class SponsorConfig(BaseModel):
    """
    Runtime settings of a sponsor bot.

    Attributes:
        fee_policy: Fee model
        min_balance: Relaying stops while the sponsor balance is below this (HBAR)
        poll_interval: Seconds between polls
        max_batch: Maximum payments relayed per poll
    """
    model_config = ConfigDict(frozen=True)

    fee_policy: FeePolicy = FeePolicy()
    min_balance: float = Field(default=10.0, ge=0)
    poll_interval: float = Field(default=5.0, gt=0)
    max_batch: int = Field(default=5, gt=0)

    @classmethod
    def from_config(cls, config: GaslessConfig) -> "SponsorConfig":
        return cls(
            fee_policy=FeePolicy(
                fee_model=config.fee_model,
                flat_fee=config.flat_fee,
                percentage_fee=config.percentage_fee,
            ),
            min_balance=config.min_balance,
            poll_interval=config.poll_interval_ms / 1000,
            max_batch=config.max_batch,
        )


@dataclass
class SponsorStats:
    """Running totals of a sponsor bot."""
    payments_relayed: int = 0
    total_gas_paid: float = 0.0
    total_fees_earned: float = 0.0
    total_volume: float = 0.0
    errors: int = 0

    @property
    def net_profit(self) -> float:
        return self.total_fees_earned - self.total_gas_paid

    def record(self, request: PaymentRequest, result: RelayResult) -> None:
        self.payments_relayed += 1
        self.total_gas_paid += result.gas_paid
        self.total_fees_earned += result.sponsor_fee
        self.total_volume += request.amount


class SponsorBot:
    """
    Relays signed payments that this sponsor may execute.

    A payment is eligible when it is SIGNED (and not expired) and either
    unpinned or pinned to this sponsor. With claims enabled, payments this
    sponsor claimed but never completed are retried. Failures of individual
    payments are logged and counted; they never stop the bot.
    """

    def __init__(
        self,
        client: GaslessPaymentClient,
        config: Optional[SponsorConfig] = None,
        log_id: Optional[str] = None
    ):
        self.client = client
        self.config = config or SponsorConfig()
        self.log_id = log_id or client.default_log_id
        if not self.log_id:
            raise ValueError("No log configured for the sponsor bot")
        self.stats = SponsorStats()

    @property
    def sponsor(self) -> str:
        return self.client.account_id

    def _eligible(self, request: PaymentRequest) -> bool:
        return request.sponsor_account_id in (None, self.sponsor)

    def has_sufficient_balance(self) -> bool:
        balance = self.client.ledger.get_balance(self.sponsor)
        if balance < self.config.min_balance:
            logger.warning(
                f"Sponsor balance {balance} HBAR is below the minimum of {self.config.min_balance} HBAR; "
                "skipping relays"
            )
            return False
        return True

    def _own_claims(self) -> List[PaymentRequest]:
        """RELAYED payments claimed by this sponsor whose relay never completed."""
        if not self.client.require_claim:
            return []
        relayed = self.client.query_payments(self.log_id, status=PaymentStatus.RELAYED, limit=None)
        return [request for request in relayed if request.claim and request.claim.sponsor == self.sponsor]

    def pending_payments(self) -> List[PaymentRequest]:
        """
        Payments this sponsor may relay, at most max_batch.

        Own claims left by an interrupted relay come first, then signed
        payments newest first.
        """
        signed = self.client.query_payments(self.log_id, status=PaymentStatus.SIGNED, limit=None)
        pending = self._own_claims() + [request for request in signed if self._eligible(request)]
        return pending[:self.config.max_batch]

    def poll_once(self) -> List[RelayResult]:
        """
        Run one polling round.

        Returns:
            Results of the payments relayed in this round
        """
        if not self.has_sufficient_balance():
            return []

        results = []
        for request in self.pending_payments():
            fee = self.config.fee_policy.fee_for(request)
            try:
                result = self.client.relay_payment(self.log_id, request.signed_sequence_number, sponsor_fee=fee)
            except (GuardViolation, NotFoundError) as e:
                # Another sponsor got there first, or the request changed since the query
                self.stats.errors += 1
                logger.info(f"Skipped payment {request.id[:10]}...: {e}")
                continue
            except ExternalCollaboratorError as e:
                self.stats.errors += 1
                logger.error(f"Relay of payment {request.id[:10]}... failed: {e}")
                if not e.retryable:
                    continue
                # Ledger unreachable: stop this round and retry on the next poll
                break
            self.stats.record(request, result)
            results.append(result)
        if results:
            logger.info(
                f"Relayed {len(results)} payment(s); total relayed {self.stats.payments_relayed}, "
                f"net profit {self.stats.net_profit:.8f} HBAR"
            )
        return results

    def run(self, stop_event: threading.Event) -> SponsorStats:
        """
        Poll until `stop_event` is set.

        Errors reading the log or the sponsor balance are logged and the
        round is retried after the poll interval.

        Returns:
            Final statistics
        """
        logger.info(f"Sponsor {self.sponsor} watching log {self.log_id}")
        while not stop_event.is_set():
            try:
                self.poll_once()
            except ExternalCollaboratorError as e:
                self.stats.errors += 1
                logger.warning(f"Polling log {self.log_id} failed: {e}")
            stop_event.wait(self.config.poll_interval)
        logger.info(
            f"Sponsor stopped: relayed {self.stats.payments_relayed}, "
            f"fees earned {self.stats.total_fees_earned:.8f}, gas paid {self.stats.total_gas_paid:.8f}"
        )
        return self.stats

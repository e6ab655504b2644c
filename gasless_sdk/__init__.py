"""
Gasless payments SDK.

Fee-sponsored payments coordinated over an append-only message log: a sender
publishes and signs a payment request, a sponsor executes the transfer and
records the outcome, and anyone can rebuild the state of every request by
reading the log.
"""
from .client import GaslessPaymentClient
from .config import GaslessConfig, NetworkConfig
from .exceptions import (
    AlreadyProcessedError, AuthorizationError, DecodeError, ExpiredError,
    ExternalCollaboratorError, GaslessError, GuardViolation, LedgerUnavailableError,
    LogFetchCancelledError, LogUnavailableError, NotFoundError, TransactionRejectedError,
)
from .ledger import LedgerClient, LedgerReceipt, TransferIntent, Web3Ledger
from .log import InMemoryLog, LogReader, LogWriter, MirrorNodeLogReader
from .models import (
    CreateResult, LogEntry, LogMessage, PaymentRequest, PaymentStatus, PaymentType,
    RelayResult, SignResult,
)
from .query import PaymentQuery, query_payments
from .reconciler import ReconciledView, Reconciler, reconcile
from .request_id import derive_request_id, generate_nonce
from .sponsor import FeePolicy, SponsorBot, SponsorConfig, SponsorStats
from .version import __version__

__all__ = [
    "GaslessPaymentClient",
    "GaslessConfig",
    "NetworkConfig",
    "GaslessError",
    "DecodeError",
    "NotFoundError",
    "GuardViolation",
    "ExpiredError",
    "AuthorizationError",
    "AlreadyProcessedError",
    "ExternalCollaboratorError",
    "LogUnavailableError",
    "LogFetchCancelledError",
    "LedgerUnavailableError",
    "TransactionRejectedError",
    "LedgerClient",
    "LedgerReceipt",
    "TransferIntent",
    "Web3Ledger",
    "LogReader",
    "LogWriter",
    "InMemoryLog",
    "MirrorNodeLogReader",
    "LogEntry",
    "LogMessage",
    "PaymentRequest",
    "PaymentStatus",
    "PaymentType",
    "CreateResult",
    "SignResult",
    "RelayResult",
    "PaymentQuery",
    "query_payments",
    "Reconciler",
    "ReconciledView",
    "reconcile",
    "derive_request_id",
    "generate_nonce",
    "FeePolicy",
    "SponsorBot",
    "SponsorConfig",
    "SponsorStats",
    "__version__",
]

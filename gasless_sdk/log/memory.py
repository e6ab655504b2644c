"""
In-memory log implementation.

A thread-safe, process-local log with log-assigned sequence numbers and
consensus timestamps. It has no external dependencies and is used for local
development and tests.
"""
import itertools
import logging
import threading
import time
from typing import Dict, List, Optional

from ..exceptions import LogFetchCancelledError, NotFoundError
from ..models import LogEntry
from .base import LogReader, LogWriter

logger = logging.getLogger(__name__)


class InMemoryLog(LogReader, LogWriter):
    """
    Log reader and writer backed by in-process lists.

    Sequence numbers start at 1 for every log and increase by one per
    appended message.
    """

    def __init__(self, shard: int = 0, realm: int = 0):
        self._logs: Dict[str, List[LogEntry]] = {}
        self._lock = threading.RLock()
        self._ids = itertools.count(1001)
        self._shard = shard
        self._realm = realm
        self._last_timestamp_ns = 0

    def create_log(self, log_id: Optional[str] = None) -> str:
        """
        Create an empty log.

        Args:
            log_id: Explicit id; generated ("0.0.N") when omitted

        Returns:
            The log id
        """
        with self._lock:
            if log_id is None:
                log_id = f"{self._shard}.{self._realm}.{next(self._ids)}"
            self._logs.setdefault(log_id, [])
            logger.debug(f"Created in-memory log {log_id}")
            return log_id

    def _consensus_timestamp(self) -> str:
        candidate = time.time_ns()
        if candidate <= self._last_timestamp_ns:
            candidate = self._last_timestamp_ns + 1
        self._last_timestamp_ns = candidate
        seconds, nanos = divmod(candidate, 1_000_000_000)
        return f"{seconds}.{nanos:09d}"

    def append(self, log_id: str, payload: bytes) -> int:
        with self._lock:
            entries = self._logs.get(log_id)
            if entries is None:
                raise NotFoundError(f"Log {log_id} does not exist")
            entry = LogEntry(
                sequence_number=len(entries) + 1,
                consensus_timestamp=self._consensus_timestamp(),
                payload=bytes(payload),
            )
            entries.append(entry)
            return entry.sequence_number

    def fetch_messages(
        self,
        log_id: str,
        after_sequence: Optional[int] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[LogEntry]:
        if cancel_event is not None and cancel_event.is_set():
            raise LogFetchCancelledError(f"Fetch of log {log_id} cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            raise LogFetchCancelledError(f"Deadline passed before fetching log {log_id}")

        with self._lock:
            entries = self._logs.get(log_id)
            if entries is None:
                raise NotFoundError(f"Log {log_id} does not exist")
            start = after_sequence or 0
            return list(entries[start:])

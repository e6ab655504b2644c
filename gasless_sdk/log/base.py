"""
Transport interfaces for the append-only message log.

Readers deliver entries ordered by sequence number; writers append opaque
payloads and return the sequence number readers will see for them.
"""
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

from ..models import LogEntry


class LogReader(ABC):
    """
    Abstract base class for log readers.
    """

    @abstractmethod
    def fetch_messages(
        self,
        log_id: str,
        after_sequence: Optional[int] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[LogEntry]:
        """
        Fetch entries of a log.

        Args:
            log_id: Identifier of the log (e.g. a topic id "0.0.1234")
            after_sequence: Only return entries with a greater sequence number
            deadline: Absolute `time.monotonic()` value after which the fetch
                is abandoned
            cancel_event: Event that abandons the fetch when set

        Returns:
            Entries ordered by sequence number

        Raises:
            NotFoundError: If the log does not exist
            LogUnavailableError: If the log cannot be read after retries
            LogFetchCancelledError: If the deadline passed or the event was set
        """
        pass

    def close(self) -> None:
        """Release any open connections."""
        pass


class LogWriter(ABC):
    """
    Abstract base class for log writers.
    """

    @abstractmethod
    def append(self, log_id: str, payload: bytes) -> int:
        """
        Append a payload to a log.

        Args:
            log_id: Identifier of the log
            payload: Message bytes

        Returns:
            Sequence number assigned to the message

        Raises:
            NotFoundError: If the log does not exist
            LogUnavailableError: If the log cannot be written
        """
        pass

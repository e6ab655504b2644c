"""
Hedera mirror node log reader.

Reads consensus topic messages through the mirror node REST API:

    GET {base}/api/v1/topics/{topic_id}/messages?order=asc&limit=N&sequencenumber=gt:K

Pages are followed through `links.next`. Messages larger than one chunk are
published as several consecutive topic messages sharing an initial
transaction id; they are reassembled here and delivered as one entry
carrying the sequence number and timestamp of the last chunk.
"""
import base64
import binascii
import logging
import random
import threading
import time
import urllib.parse
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .._rate_limited_log import rate_limited_log
from ..exceptions import LogFetchCancelledError, LogUnavailableError, NotFoundError
from ..models import LogEntry
from .base import LogReader

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_LOOKBACK_PAGES = 10


class MirrorNodeLogReader(LogReader):
    """
    Log reader for Hedera consensus topics via a mirror node.

    Transient failures (connection errors, timeouts, 5xx responses) are
    retried with exponential backoff and jitter. A caller deadline or cancel
    event is checked before every request and during every backoff wait.
    """

    def __init__(
        self,
        mirror_node_url: str,
        retry_count: int = 3,
        backoff_base: float = 0.5,
        timeout: int = 30,
        page_size: int = MAX_PAGE_SIZE,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the reader

        Args:
            mirror_node_url: Mirror node base URL (e.g. "https://testnet.mirrornode.hedera.com")
            retry_count: Number of retries for transient failures
            backoff_base: Base delay for exponential backoff in seconds
            timeout: Timeout for each HTTP request in seconds
            page_size: Messages requested per page (max 100)
            session: Optional preconfigured requests session
        """
        self.mirror_node_url = mirror_node_url.rstrip("/")
        self.retry_count = retry_count
        self.backoff_base = backoff_base
        self.timeout = timeout
        self.page_size = min(page_size, MAX_PAGE_SIZE)

        if session is None:
            # Connection-level retries; status retries are handled below
            session = requests.Session()
            retries = Retry(
                total=retry_count,
                connect=retry_count,
                read=retry_count,
                backoff_factor=backoff_base,
                status_forcelist=[502, 503, 504],
                allowed_methods=["GET"],
                raise_on_status=False,
            )
            session.mount("http://", HTTPAdapter(max_retries=retries))
            session.mount("https://", HTTPAdapter(max_retries=retries))
        self.session = session

    def _messages_url(self, topic_id: str, order: str = "asc", sequence_filter: Optional[str] = None) -> str:
        params = {"order": order, "limit": str(self.page_size)}
        if sequence_filter:
            params["sequencenumber"] = sequence_filter
        query = urllib.parse.urlencode(params, safe=":")
        return f"{self.mirror_node_url}/api/v1/topics/{urllib.parse.quote(topic_id)}/messages?{query}"

    def _check_cancelled(self, topic_id: str, deadline: Optional[float], cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise LogFetchCancelledError(f"Fetch of topic {topic_id} cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            raise LogFetchCancelledError(f"Deadline passed while fetching topic {topic_id}")

    def _wait(self, delay: float, topic_id: str, deadline: Optional[float], cancel_event: Optional[threading.Event]) -> None:
        if deadline is not None and time.monotonic() + delay >= deadline:
            raise LogFetchCancelledError(f"Deadline would pass during retry backoff for topic {topic_id}")
        if cancel_event is not None:
            if cancel_event.wait(delay):
                raise LogFetchCancelledError(f"Fetch of topic {topic_id} cancelled")
        else:
            time.sleep(delay)

    def _get_page(
        self,
        url: str,
        topic_id: str,
        deadline: Optional[float],
        cancel_event: Optional[threading.Event]
    ) -> Dict[str, Any]:
        """
        GET one page with retries.

        Raises:
            NotFoundError: On 404
            LogUnavailableError: When retries are exhausted or the response is unusable
            LogFetchCancelledError: On deadline or cancellation
        """
        attempt = 0
        while True:
            self._check_cancelled(topic_id, deadline, cancel_event)
            timeout = self.timeout
            if deadline is not None:
                timeout = max(0.001, min(timeout, deadline - time.monotonic()))

            error: Optional[str] = None
            try:
                response = self.session.get(url, timeout=timeout)
                if response.status_code == 404:
                    raise NotFoundError(f"Topic {topic_id} not found on mirror node")
                if response.status_code >= 500:
                    error = f"mirror node returned {response.status_code}"
                else:
                    response.raise_for_status()
                    try:
                        return response.json()
                    except ValueError as e:
                        raise LogUnavailableError(f"Invalid JSON response from mirror node: {e}", retryable=False)
            except requests.HTTPError as e:
                # 4xx other than 404: not retryable
                raise LogUnavailableError(f"Mirror node request failed: {e}", retryable=False)
            except requests.RequestException as e:
                error = str(e)

            if attempt >= self.retry_count:
                logger.error(f"Fetching topic {topic_id} failed after {attempt + 1} attempts: {error}")
                raise LogUnavailableError(f"Mirror node unavailable: {error}")

            attempt += 1
            delay = self.backoff_base * (2 ** (attempt - 1))
            # Add up to 10% jitter to avoid thundering herd
            delay += delay * random.uniform(0, 0.1)
            rate_limited_log(
                f"Retrying mirror node fetch for topic {topic_id} in {delay:.2f}s ({error})",
                key=f"mirror-retry:{topic_id}",
                logger_instance=logger,
            )
            self._wait(delay, topic_id, deadline, cancel_event)

    def _next_url(self, body: Dict[str, Any]) -> Optional[str]:
        next_link = (body.get("links") or {}).get("next")
        if not next_link:
            return None
        return urllib.parse.urljoin(self.mirror_node_url + "/", next_link)

    def _parse(self, topic_id: str, raw: Dict[str, Any]) -> Optional[Tuple[LogEntry, Dict[str, Any]]]:
        """Convert one mirror node message to an entry and its chunk info."""
        try:
            sequence_number = int(raw["sequence_number"])
            consensus_timestamp = str(raw["consensus_timestamp"])
            payload = base64.b64decode(raw.get("message") or "", validate=True)
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            # Undecodable base64 is kept as raw bytes so the codec can count it
            logger.debug(f"Malformed mirror node message in topic {topic_id}: {e}")
            if "sequence_number" not in raw:
                return None
            sequence_number = int(raw["sequence_number"])
            consensus_timestamp = str(raw.get("consensus_timestamp", ""))
            payload = str(raw.get("message", "")).encode("utf-8")
        return LogEntry(sequence_number, consensus_timestamp, payload), raw.get("chunk_info") or {}

    @staticmethod
    def _chunk_group_key(chunk_info: Dict[str, Any]) -> str:
        tx_id = chunk_info.get("initial_transaction_id") or {}
        if isinstance(tx_id, dict):
            return f"{tx_id.get('account_id')}@{tx_id.get('transaction_valid_start')}:{tx_id.get('nonce', 0)}"
        return str(tx_id)

    @staticmethod
    def _assemble(parts: Dict[int, LogEntry]) -> LogEntry:
        ordered = [parts[number] for number in sorted(parts)]
        last = max(ordered, key=lambda part: part.sequence_number)
        return LogEntry(
            sequence_number=last.sequence_number,
            consensus_timestamp=last.consensus_timestamp,
            payload=b"".join(part.payload for part in ordered),
        )

    def _find_earlier_chunks(
        self,
        topic_id: str,
        group_key: str,
        parts: Dict[int, LogEntry],
        total: int,
        deadline: Optional[float],
        cancel_event: Optional[threading.Event]
    ) -> None:
        """
        Page backwards from the earliest received chunk to collect the missing ones.

        Needed when the caller's cursor lies between the chunks of a message.
        Gives up after MAX_LOOKBACK_PAGES pages.
        """
        before = min(part.sequence_number for part in parts.values())
        url: Optional[str] = self._messages_url(topic_id, order="desc", sequence_filter=f"lt:{before}")
        pages = 0
        while url and len(parts) < total and pages < MAX_LOOKBACK_PAGES:
            body = self._get_page(url, topic_id, deadline, cancel_event)
            pages += 1
            for raw in body.get("messages") or []:
                parsed = self._parse(topic_id, raw) if isinstance(raw, dict) else None
                if parsed is None:
                    continue
                entry, chunk_info = parsed
                if int(chunk_info.get("total") or 1) > 1 and self._chunk_group_key(chunk_info) == group_key:
                    parts.setdefault(int(chunk_info.get("number") or 1), entry)
            url = self._next_url(body)

    def fetch_messages(
        self,
        log_id: str,
        after_sequence: Optional[int] = None,
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> List[LogEntry]:
        """
        Fetch the messages of a topic after `after_sequence`.

        Chunk groups are reassembled within the call and nothing is kept on
        the reader, so readers shared between clients return the same
        entries for the same cursor. A group whose first chunks lie at or
        before `after_sequence` is completed by paging backwards. A group
        whose last chunks are not published yet is left out; it is
        delivered once complete, under the sequence number of its last chunk.
        """
        entries: List[LogEntry] = []
        groups: Dict[str, Dict[int, LogEntry]] = {}
        totals: Dict[str, int] = {}
        url: Optional[str] = self._messages_url(
            log_id, sequence_filter=f"gt:{after_sequence}" if after_sequence else None
        )
        pages = 0

        while url:
            body = self._get_page(url, log_id, deadline, cancel_event)
            pages += 1
            for raw in body.get("messages") or []:
                parsed = self._parse(log_id, raw) if isinstance(raw, dict) else None
                if parsed is None:
                    continue
                entry, chunk_info = parsed
                total = int(chunk_info.get("total") or 1)
                if total <= 1:
                    entries.append(entry)
                    continue
                group_key = self._chunk_group_key(chunk_info)
                groups.setdefault(group_key, {})[int(chunk_info.get("number") or 1)] = entry
                totals[group_key] = total
            url = self._next_url(body)

        for group_key, parts in groups.items():
            total = totals[group_key]
            if len(parts) < total and min(parts) > 1:
                self._find_earlier_chunks(log_id, group_key, parts, total, deadline, cancel_event)
            if len(parts) < total:
                logger.debug(f"Chunk group {group_key} in topic {log_id} incomplete ({len(parts)}/{total})")
                continue
            entries.append(self._assemble(parts))

        entries.sort(key=lambda e: e.sequence_number)
        logger.debug(f"Fetched {len(entries)} entries from topic {log_id} in {pages} page(s)")
        return entries

    def close(self) -> None:
        """Close the HTTP session."""
        try:
            self.session.close()
        except Exception as e:
            logger.warning(f"Error closing mirror node session: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

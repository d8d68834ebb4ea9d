"""
CDX API Client for Internet Archive Wayback Machine

This module pages through the Wayback Machine's capture index (the CDX
Server API) to collect every snapshot recorded for a target, concurrently
and in a deterministic order, caching the merged list for later runs.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Tuple

import requests

from waymirror.core.connection_pool import ConnectionPool
from waymirror.core.errors import OtherHttpError, ParseError, StateCorruption, TransportError
from waymirror.utils.manifest import StateStore
from waymirror.utils.validators import index_query_url


HEADER_ROW = ["timestamp", "original"]
MAX_PAGE_BATCH = 5
DEFAULT_MAXIMUM_PAGES = 100
PAGE_BATCH_DELAY = 0.25


@dataclass(frozen=True)
class Snapshot:
    """One capture record: 14-digit timestamp and the original URL."""
    timestamp: str
    original_url: str

    def as_row(self) -> Tuple[str, str]:
        return (self.timestamp, self.original_url)


class SnapshotIndexFetcher:
    """
    Client for the Internet Archive CDX Server API.

    Pages are requested in small concurrent batches and reassembled in page
    order, so the merged list does not depend on which request finishes
    first.
    """

    CDX_BASE_URL = "https://web.archive.org/cdx/search/cdx"

    def __init__(self,
                 pool: ConnectionPool,
                 state: Optional[StateStore] = None,
                 concurrency: int = 1,
                 maximum_pages: int = DEFAULT_MAXIMUM_PAGES,
                 exact_url: bool = False,
                 capture_all: bool = False,
                 from_timestamp: Optional[str] = None,
                 to_timestamp: Optional[str] = None,
                 request_delay: float = PAGE_BATCH_DELAY,
                 timeout: float = 30):
        """
        Initialize the index fetcher.

        Args:
            pool: Shared connection pool
            state: Run state holding the snapshot cache (optional)
            concurrency: Configured worker count; batches hold min(concurrency, 5) pages
            maximum_pages: Upper bound on index pages to request
            exact_url: Only query the exact target, no pagination
            capture_all: Do not restrict the index to status 200 captures
            from_timestamp: Lower timestamp bound, up to 14 digits
            to_timestamp: Upper timestamp bound, up to 14 digits
            request_delay: Pause between page batches in seconds
            timeout: Request timeout in seconds
        """
        self.pool = pool
        self.state = state
        self.batch_size = max(1, min(concurrency, MAX_PAGE_BATCH))
        self.maximum_pages = maximum_pages
        self.exact_url = exact_url
        self.capture_all = capture_all
        self.from_timestamp = from_timestamp
        self.to_timestamp = to_timestamp
        self.request_delay = request_delay
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)
        self.failed_pages = 0
        self._failed_lock = threading.Lock()

    def fetch_all(self, target: str) -> List[Snapshot]:
        """
        Collect every snapshot recorded for target.

        Returns the cached list when one exists. Otherwise queries the exact
        target once, then pages "<target>/*" unless exact-URL mode is set.
        """
        cached = self._load_cache()
        if cached is not None:
            self.logger.info(f"Loaded {len(cached)} snapshots from cache")
            return cached

        self.logger.info(f"Getting snapshot pages for {target}")
        snapshots = self.fetch_page(index_query_url(target, self.exact_url), None)

        if not self.exact_url:
            snapshots.extend(self._fetch_paginated(f"{target}/*"))

        self.logger.info(f"Found {len(snapshots)} snapshots to consider")
        if self.failed_pages:
            self.logger.warning(
                f"{self.failed_pages} index page(s) failed and were treated as empty; "
                "the snapshot list may be incomplete"
            )

        self._save_cache(snapshots)
        return snapshots

    def _fetch_paginated(self, url: str) -> List[Snapshot]:
        merged: List[Snapshot] = []
        with ThreadPoolExecutor(max_workers=self.batch_size, thread_name_prefix="cdx-page") as executor:
            for batch_start in range(0, self.maximum_pages, self.batch_size):
                pages = range(batch_start, min(batch_start + self.batch_size, self.maximum_pages))
                futures = [executor.submit(self.fetch_page, url, page) for page in pages]
                # Reassemble in page order regardless of completion order
                results = [future.result() for future in futures]

                reached_end = False
                for page, rows in zip(pages, results):
                    if not rows:
                        self.logger.debug(f"Index page {page} is empty, pagination complete")
                        reached_end = True
                        break
                    merged.extend(rows)
                if reached_end:
                    break

                if self.request_delay > 0:
                    time.sleep(self.request_delay)
        return merged

    def fetch_page(self, url: str, page_index: Optional[int]) -> List[Snapshot]:
        """
        Fetch one index page. Any transport or parse failure yields an empty
        page, which the caller cannot tell apart from the end of the index.
        """
        try:
            rows = self._request_page(url, page_index)
        except (TransportError, ParseError, OtherHttpError) as e:
            with self._failed_lock:
                self.failed_pages += 1
            label = "initial" if page_index is None else str(page_index)
            self.logger.warning(f"Index page {label} failed, treating as empty: {e}")
            return []
        self.logger.debug(f"Index page {page_index}: {len(rows)} rows")
        return rows

    def _parameters(self, url: str, page_index: Optional[int]) -> List[Tuple[str, str]]:
        params = [
            ('output', 'json'),
            ('url', url),
            ('fl', 'timestamp,original'),
            ('collapse', 'digest'),
            ('gzip', 'false'),
        ]
        if not self.capture_all:
            params.append(('filter', 'statuscode:200'))
        if self.from_timestamp:
            params.append(('from', str(self.from_timestamp)))
        if self.to_timestamp:
            params.append(('to', str(self.to_timestamp)))
        if page_index is not None:
            params.append(('page', str(page_index)))
        return params

    def _request_page(self, url: str, page_index: Optional[int]) -> List[Snapshot]:
        params = self._parameters(url, page_index)
        with self.pool.connection() as session:
            try:
                response = session.get(self.CDX_BASE_URL, params=params, timeout=self.timeout)
            except requests.RequestException as e:
                raise TransportError(f"CDX API request failed: {e}", url) from e

        if response.status_code >= 400:
            raise OtherHttpError(response.status_code, getattr(response, 'reason', '') or '', url)

        body = (response.text or '').strip()
        if not body:
            return []
        try:
            data = json.loads(body)
        except ValueError as e:
            raise ParseError(f"Invalid response from CDX API: {e}", url) from e
        return self.parse_rows(data)

    @staticmethod
    def parse_rows(data) -> List[Snapshot]:
        """
        Turn CDX JSON rows into snapshots, dropping the header row.

        Raises:
            ParseError: If the payload is not a list of rows
        """
        if not isinstance(data, list):
            raise ParseError("Unexpected CDX response format: expected a list of rows")
        if data and data[0] == HEADER_ROW:
            data = data[1:]
        snapshots = []
        for row in data:
            if isinstance(row, list) and len(row) >= 2:
                snapshots.append(Snapshot(str(row[0]), str(row[1])))
        return snapshots

    def _load_cache(self) -> Optional[List[Snapshot]]:
        if self.state is None:
            return None
        try:
            rows = self.state.load_snapshots()
        except StateCorruption as e:
            self.logger.warning(f"Discarding snapshot cache, refetching: {e}")
            return None
        if rows is None:
            return None
        return [Snapshot(ts, url) for ts, url in rows]

    def _save_cache(self, snapshots: List[Snapshot]) -> None:
        if self.state is None:
            return
        try:
            self.state.save_snapshots([s.as_row() for s in snapshots])
        except OSError as e:
            self.logger.warning(f"Could not save snapshot cache: {e}")

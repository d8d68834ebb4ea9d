"""
Snapshot Retrieval Module

This module downloads archived bytes from Wayback Machine URLs with
redirect, rate-limit and retry handling, writing each capture to disk.
"""

import gzip
import logging
import time
import zlib
from dataclasses import dataclass
from typing import Mapping
from urllib.parse import urljoin

import requests
import urllib3

from waymirror.core.connection_pool import ConnectionPool
from waymirror.core.errors import (DecompressionError, MirrorError, NotFound, OtherHttpError,
                                   RateLimited, TooManyRedirects, TransportError)
from waymirror.core.logger import FailureTracker
from waymirror.utils.file_manager import FileManager


WAYBACK_URL = "https://web.archive.org/web/{timestamp}{suffix}/{url}"
RAW_SUFFIX = "id_"

MAX_RETRIES = 3
RETRY_DELAY = 2.0
RATE_LIMIT = 0.25  # base pacing interval between requests, in seconds
MAX_REDIRECT_DEPTH = 2


@dataclass
class FetchedResponse:
    status_code: int
    reason: str
    headers: Mapping[str, str]
    body: bytes


def build_wayback_url(timestamp: str, url: str, rewritten: bool = False) -> str:
    """Wayback URL for a capture; literal square brackets are escaped."""
    url = url.replace('[', '%5B').replace(']', '%5D')
    suffix = "" if rewritten else RAW_SUFFIX
    return WAYBACK_URL.format(timestamp=timestamp, suffix=suffix, url=url)


def decompress_body(body: bytes, content_encoding: str) -> bytes:
    """
    Undo gzip/deflate transfer encoding.

    Raises:
        DecompressionError: If the body is marked as compressed but corrupt
    """
    encoding = (content_encoding or '').lower()
    try:
        if 'gzip' in encoding:
            return gzip.decompress(body)
        if 'deflate' in encoding:
            try:
                return zlib.decompress(body)
            except zlib.error:
                return zlib.decompress(body, -zlib.MAX_WBITS)
    except (OSError, EOFError, zlib.error) as e:
        raise DecompressionError(f"Corrupt {encoding} body: {e}")
    return body


class SnapshotRetriever:
    """
    Fetches one capture at a time with retries.

    Per request: 2xx is saved, 3xx is followed (bounded depth), 429 pauses
    and retries, 404 is terminal, anything else is retried. In capture-all
    mode every response class is saved as-is.
    """

    def __init__(self,
                 pool: ConnectionPool,
                 files: FileManager,
                 failures: FailureTracker,
                 rewritten: bool = False,
                 capture_all: bool = False,
                 timeout: float = 30,
                 max_retries: int = MAX_RETRIES,
                 retry_delay: float = RETRY_DELAY,
                 request_delay: float = RATE_LIMIT):
        """
        Initialize the retriever.

        Args:
            pool: Shared connection pool
            files: File manager writing into the output tree
            failures: Tracker receiving URLs that ultimately failed
            rewritten: Fetch archive-rewritten pages instead of original bytes
            capture_all: Save every response class, not only successes
            timeout: Request timeout in seconds
            max_retries: Retry budget per file
            retry_delay: Base delay, multiplied by the attempt number
            request_delay: Base pacing interval; rate limiting waits twice this
        """
        self.pool = pool
        self.files = files
        self.failures = failures
        self.rewritten = rewritten
        self.capture_all = capture_all
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.request_delay = request_delay
        self.logger = logging.getLogger(__name__)

    def download_with_retry(self, file_path: str, file_url: str, timestamp: str) -> int:
        """
        Download one capture to file_path.

        Returns:
            Number of bytes written

        Raises:
            NotFound: The capture does not exist (not recorded as a failure)
            MirrorError: A non-retryable error, or a retryable one once retries are used up
        """
        attempt = 0
        while True:
            try:
                return self._fetch_to_file(file_path, file_url, timestamp)
            except NotFound:
                raise
            except (MirrorError, OSError) as e:
                retryable = not isinstance(e, MirrorError) or e.retryable
                if retryable and attempt < self.max_retries:
                    attempt += 1
                    self.logger.warning(f"Retry {attempt}/{self.max_retries} for {file_url}: {e}")
                    time.sleep(self.retry_delay * attempt)
                    continue
                self.failures.record(file_url, e)
                raise

    def _fetch_to_file(self, file_path: str, file_url: str, timestamp: str) -> int:
        target = build_wayback_url(timestamp, file_url, self.rewritten)
        depth = 0
        while True:
            response = self._request(target)
            status = response.status_code

            if status == 429:
                time.sleep(self.request_delay * 2)
                raise RateLimited("Rate limited, retrying...", file_url)

            if self.capture_all or 200 <= status < 300:
                return self._save(file_path, response, file_url)

            if 300 <= status < 400:
                location = response.headers.get('Location')
                if not location:
                    raise OtherHttpError(status, "redirect without Location", file_url)
                depth += 1
                if depth >= MAX_REDIRECT_DEPTH:
                    raise TooManyRedirects(f"Too many redirects for {file_url}", file_url)
                target = urljoin(target, location)
                self.logger.debug(f"Following redirect for {file_url} -> {target}")
                continue

            if status == 404:
                raise NotFound(f"Not found in archive: {file_url}", file_url)

            raise OtherHttpError(status, response.reason, file_url)

    def _request(self, url: str) -> FetchedResponse:
        with self.pool.connection() as session:
            try:
                response = session.get(url, timeout=self.timeout, allow_redirects=False, stream=True)
                try:
                    body = response.raw.read(decode_content=False) or b""
                finally:
                    response.close()
            except (requests.RequestException, urllib3.exceptions.HTTPError) as e:
                raise TransportError(f"Request failed for {url}: {e}", url) from e
        return FetchedResponse(
            status_code=response.status_code,
            reason=response.reason or "",
            headers=response.headers,
            body=body,
        )

    def _save(self, file_path: str, response: FetchedResponse, file_url: str) -> int:
        body = response.body
        encoding = response.headers.get('Content-Encoding', '')
        if encoding:
            try:
                body = decompress_body(body, encoding)
            except DecompressionError as e:
                self.logger.warning(f"{e} for {file_url}, writing raw bytes")
        return self.files.write_bytes(file_path, body)


"""
In-memory stand-in for the Wayback Machine used by the test scripts.

FakeArchive hands out FakeSession objects through session_factory, which is
what ConnectionPool expects, and answers both capture-index queries and
snapshot fetches from canned data. Every request is recorded.
"""

import json
import threading

from requests.structures import CaseInsensitiveDict

from waymirror.core.cdx_client import HEADER_ROW, SnapshotIndexFetcher
from waymirror.core.retriever import build_wayback_url


class FakeRaw:
    def __init__(self, body: bytes):
        self._body = body

    def read(self, decode_content=False):
        return self._body


class FakeResponse:
    def __init__(self, status_code=200, body=b"", headers=None, reason="OK", text=None):
        self.status_code = status_code
        self.reason = reason
        self.headers = CaseInsensitiveDict(headers or {})
        self.raw = FakeRaw(body)
        self.text = text if text is not None else body.decode('utf-8', errors='replace')
        self.closed = False

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, archive):
        self.archive = archive
        self.closed = False
        self.requests = 0

    def get(self, url, params=None, timeout=None, allow_redirects=True, stream=False):
        self.requests += 1
        return self.archive.handle(url, params)

    def close(self):
        self.closed = True


class FakeArchive:
    """
    Canned archive.

    cdx_pages maps a page index (None for the initial query) to a list of
    [timestamp, original] rows, a FakeResponse, an exception to raise, or a
    callable returning one of those.

    captures maps a Wayback URL to a list of responses served in order; the
    last one repeats. Unknown capture URLs answer 404.
    """

    def __init__(self):
        self.cdx_pages = {}
        self.captures = {}
        self.requests = []
        self.sessions = []
        self._lock = threading.Lock()

    def session_factory(self):
        session = FakeSession(self)
        with self._lock:
            self.sessions.append(session)
        return session

    def add_capture(self, timestamp, url, *responses):
        self.captures[build_wayback_url(timestamp, url)] = list(responses)

    def handle(self, url, params):
        with self._lock:
            self.requests.append((url, params))

        if url == SnapshotIndexFetcher.CDX_BASE_URL:
            page = dict(params or []).get('page')
            value = self.cdx_pages.get(int(page) if page is not None else None, [])
            if callable(value):
                value = value()
            if isinstance(value, Exception):
                raise value
            if isinstance(value, FakeResponse):
                return value
            if not value:
                return FakeResponse(200, text="")
            return FakeResponse(200, text=json.dumps([HEADER_ROW] + value))

        with self._lock:
            responses = self.captures.get(url)
            if not responses:
                return FakeResponse(404, reason="Not Found")
            response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def capture_requests(self, url=None):
        with self._lock:
            urls = [u for u, _ in self.requests if u != SnapshotIndexFetcher.CDX_BASE_URL]
        if url is None:
            return urls
        return [u for u in urls if u == url]

    def index_requests(self):
        with self._lock:
            return [dict(p or []) for u, p in self.requests if u == SnapshotIndexFetcher.CDX_BASE_URL]

"""
Download pipeline: bounded-concurrency download of a curated plan into the
output tree, resumable through the download ledger.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, List, Optional

from waymirror.core.connection_pool import ConnectionPool
from waymirror.core.curator import DownloadPlanEntry
from waymirror.core.errors import MirrorError, NotFound
from waymirror.core.retriever import RATE_LIMIT, SnapshotRetriever
from waymirror.utils.file_manager import FileManager
from waymirror.utils.manifest import StateStore


SAVED = "saved"
EXISTS = "exists"
NOT_FOUND = "not_found"
FAILED = "failed"


@dataclass
class DownloadSummary:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    saved: int = 0
    not_found: int = 0


class RunContext:
    """Counters shared by the workers of one run, mutated under one lock."""

    def __init__(self, total: int):
        self.total = total
        self._lock = threading.Lock()
        self._summary = DownloadSummary()

    def complete(self, outcome: str) -> int:
        """Count one finished unit of work and return the processed count."""
        with self._lock:
            self._summary.processed += 1
            if outcome == SAVED:
                self._summary.saved += 1
            elif outcome in (EXISTS, NOT_FOUND):
                self._summary.skipped += 1
                if outcome == NOT_FOUND:
                    self._summary.not_found += 1
            elif outcome == FAILED:
                self._summary.failed += 1
            return self._summary.processed

    def skip_before_dispatch(self, count: int) -> None:
        with self._lock:
            self._summary.skipped += count

    def summary(self) -> DownloadSummary:
        with self._lock:
            return DownloadSummary(**vars(self._summary))


class DownloadPipeline:
    def __init__(self,
                 pool: ConnectionPool,
                 retriever: SnapshotRetriever,
                 files: FileManager,
                 state: StateStore,
                 concurrency: int = 1,
                 request_delay: float = RATE_LIMIT,
                 post_process: Optional[Callable[[DownloadPlanEntry, str], None]] = None):
        self.pool = pool
        self.retriever = retriever
        self.files = files
        self.state = state
        self.worker_count = max(1, min(concurrency, pool.capacity))
        self.request_delay = request_delay
        self.post_process = post_process
        self.logger = logging.getLogger(__name__)

    def download_all(self,
                     entries: List[DownloadPlanEntry],
                     progress: Optional[Callable[[object], None]] = None) -> DownloadSummary:
        """
        Download every plan entry not already in the ledger.

        Returns processed/skipped/failed counts. Individual failures never
        abort the run; they are recorded in the retriever's failure tracker.
        """
        self.state.load_downloaded()
        pending = [entry for entry in entries if not self.state.is_downloaded(entry.file_id)]
        already = len(entries) - len(pending)

        context = RunContext(len(pending))
        context.skip_before_dispatch(already)
        if already:
            self.logger.info(f"Skipping {already} files already downloaded in a previous run")

        if not pending:
            self.logger.info("No files to download.")
            return context.summary()

        self.logger.info(f"{len(pending)} files to download with {self.worker_count} worker(s)")
        with ThreadPoolExecutor(max_workers=self.worker_count, thread_name_prefix="download") as executor:
            futures = [executor.submit(self._process, entry, context, progress) for entry in pending]
            for future in as_completed(futures):
                future.result()

        summary = context.summary()
        self.logger.info(
            f"Download finished: {summary.saved} saved, {summary.skipped} skipped, {summary.failed} failed"
        )
        return summary

    def _process(self, entry: DownloadPlanEntry, context: RunContext,
                 progress: Optional[Callable[[object], None]]) -> str:
        try:
            outcome, message = self.download_file(entry)
        finally:
            if self.request_delay > 0:
                time.sleep(self.request_delay)
        count = context.complete(outcome)
        self.logger.info(f"{message} ({count}/{context.total})")
        if progress:
            progress({"type": "file", "stage": outcome, "url": entry.file_url,
                      "index": count, "total": context.total})
        return outcome

    def download_file(self, entry: DownloadPlanEntry):
        """
        Download one entry.

        Returns:
            Tuple of (outcome, message)
        """
        file_url = entry.file_url
        dir_path, file_path = self.files.resolve_path(entry.file_id)

        if self.files.file_exists(file_path):
            return EXISTS, f"{file_url} # {file_path} already exists."

        try:
            self.files.structure_dir_path(dir_path)
        except OSError as e:
            self.retriever.failures.record(file_url, e)
            return FAILED, f"{file_url} # {e}"

        try:
            self.retriever.download_with_retry(file_path, file_url, entry.timestamp)
        except NotFound:
            return NOT_FOUND, f"{file_url} # skipped, not found in archive"
        except (MirrorError, OSError) as e:
            # already recorded by the retriever
            return FAILED, f"{file_url} # {e}"

        try:
            self.state.mark_downloaded(entry.file_id)
        except OSError as e:
            self.retriever.failures.record(file_url, e)
            return FAILED, f"{file_url} # could not update download ledger: {e}"

        if self.post_process:
            try:
                self.post_process(entry, file_path)
            except (OSError, ValueError) as e:
                self.logger.warning(f"Post-processing failed for {file_path}: {e}")
        return SAVED, f"{file_url} -> {file_path}"

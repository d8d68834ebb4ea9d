"""
waymirror Orchestrator: runs the end-to-end mirror (index → plan → download).
"""

from __future__ import annotations

import os
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from .cdx_client import DEFAULT_MAXIMUM_PAGES, SnapshotIndexFetcher
from .connection_pool import CONNECTION_POOL_SIZE, ConnectionPool
from .curator import DownloadPlanEntry, SnapshotCurator
from .errors import ConfigurationError
from .link_rewriter import LinkRewriter
from .logger import FailureTracker
from .pipeline import DownloadPipeline, DownloadSummary
from .retriever import RATE_LIMIT, SnapshotRetriever
from waymirror.utils.file_manager import FileManager
from waymirror.utils.filters import compile_filter
from waymirror.utils.manifest import StateStore
from waymirror.utils.validators import backup_name, validate_url


@dataclass
class RunConfig:
    base_url: str
    directory: Optional[str] = None  # None = websites/<host>/
    exact_url: bool = False
    all_timestamps: bool = False
    from_timestamp: Optional[str] = None
    to_timestamp: Optional[str] = None
    only_filter: Optional[str] = None
    exclude_filter: Optional[str] = None
    capture_all: bool = False
    maximum_pages: int = DEFAULT_MAXIMUM_PAGES
    concurrency: int = 1
    timeout: float = 30
    rewritten: bool = False
    rewrite_links: bool = False
    ignore_url_params: bool = False
    keep_params: Sequence[str] = field(default_factory=tuple)
    reset: bool = False
    keep_state: bool = False
    request_delay: float = RATE_LIMIT
    failure_report: Optional[str] = None  # text report written when any file fails

    def validate(self) -> None:
        ok, _, err = validate_url(self.base_url)
        if not ok:
            raise ConfigurationError(err)
        if self.maximum_pages is None or int(self.maximum_pages) <= 0:
            raise ConfigurationError("Maximum pages must be positive")
        if int(self.concurrency) <= 0:
            raise ConfigurationError("Concurrency must be positive")
        for name in ('from_timestamp', 'to_timestamp'):
            value = getattr(self, name)
            if value and (not str(value).isdigit() or len(str(value)) > 14):
                raise ConfigurationError(f"{name} must be up to 14 digits (yyyyMMddhhmmss)")

    @property
    def output_dir(self) -> str:
        if self.directory:
            return self.directory
        return os.path.join('websites', backup_name(self.base_url))


class MirrorController:
    def __init__(self, config: RunConfig,
                 logger: Optional[logging.Logger] = None,
                 pool: Optional[ConnectionPool] = None):
        config.validate()
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.pool = pool or ConnectionPool(capacity=CONNECTION_POOL_SIZE)
        self.state = StateStore(config.output_dir)
        self.files = FileManager(config.output_dir)
        self.failures = FailureTracker(self.logger)
        self.fetcher = SnapshotIndexFetcher(
            self.pool,
            state=self.state,
            concurrency=config.concurrency,
            maximum_pages=config.maximum_pages,
            exact_url=config.exact_url,
            capture_all=config.capture_all,
            from_timestamp=config.from_timestamp,
            to_timestamp=config.to_timestamp,
            request_delay=config.request_delay,
            timeout=config.timeout,
        )
        self.curator = SnapshotCurator(
            include=compile_filter(config.only_filter),
            exclude=compile_filter(config.exclude_filter),
            ignore_params=config.ignore_url_params,
            keep_params=config.keep_params,
        )
        self.retriever = SnapshotRetriever(
            self.pool,
            self.files,
            self.failures,
            rewritten=config.rewritten,
            capture_all=config.capture_all,
            timeout=config.timeout,
            request_delay=config.request_delay,
        )
        self.rewriter = LinkRewriter(config.base_url) if config.rewrite_links else None
        self.pipeline = DownloadPipeline(
            self.pool,
            self.retriever,
            self.files,
            self.state,
            concurrency=config.concurrency,
            request_delay=config.request_delay,
            post_process=self._rewrite_links if self.rewriter else None,
        )
        if config.reset:
            self.state.clear()

    def _rewrite_links(self, entry: DownloadPlanEntry, file_path: str) -> None:
        site_root = self.config.output_dir
        if self.config.all_timestamps:
            site_root = os.path.join(site_root, entry.timestamp)
        self.rewriter.rewrite_file(file_path, site_root)

    def build_plan(self) -> List[DownloadPlanEntry]:
        snapshots = self.fetcher.fetch_all(self.config.base_url)
        return self.curator.curate(snapshots, all_timestamps=self.config.all_timestamps)

    def list_files(self) -> List[Dict[str, str]]:
        """Return the download plan without downloading anything."""
        try:
            return [entry.to_dict() for entry in self.build_plan()]
        finally:
            self.pool.shutdown()

    def run(self, progress: Optional[Callable[[object], None]] = None) -> Dict[str, int]:
        """Fetch the index, curate it and download the plan."""
        start_time = time.time()
        summary = DownloadSummary()
        try:
            if progress:
                progress("Getting snapshot pages...")
            self.logger.info(
                f"Downloading {self.config.base_url} to {self.config.output_dir} from Wayback Machine archives."
            )
            plan = self.build_plan()
            if progress:
                progress({"type": "discovery", "total": len(plan)})
            if plan:
                summary = self.pipeline.download_all(plan, progress=progress)
            else:
                self.logger.info("No files to download.")
        finally:
            self.pool.shutdown()
        self._finish_state()

        elapsed = time.time() - start_time
        self.logger.info(f"Download completed in {elapsed:.2f}s, saved in {self.config.output_dir}")
        self.failures.log_summary()
        if self.config.failure_report and self.failures.has_failures():
            self.failures.save_report(self.config.failure_report)

        stats = {
            "processed": summary.processed,
            "saved": summary.saved,
            "skipped": summary.skipped,
            "not_found": summary.not_found,
            "failed": summary.failed,
        }
        if progress:
            progress({"type": "counters", "stats": stats})
        return stats

    def _finish_state(self) -> None:
        if self.failures.has_failures():
            if self.config.reset:
                self.state.clear()
            else:
                self.logger.info("Download had failures; keeping state files so a re-run can resume")
            return
        if not self.config.keep_state:
            self.state.clear()

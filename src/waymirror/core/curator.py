"""
Snapshot curation: turns raw capture-index rows into an ordered download plan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import unquote_to_bytes

from waymirror.core.cdx_client import Snapshot
from waymirror.utils.filters import UrlPredicate
from waymirror.utils.tidy_bytes import tidy_bytes
from waymirror.utils.validators import normalize_url


@dataclass(frozen=True)
class DownloadPlanEntry:
    resource_id: str
    snapshot: Snapshot
    timestamp: str
    file_id: str  # on-disk identifier; "<timestamp>/<resource_id>" in all-timestamps mode

    @property
    def file_url(self) -> str:
        return self.snapshot.original_url

    def to_dict(self) -> Dict[str, str]:
        return {'file_url': self.file_url, 'timestamp': self.timestamp, 'file_id': self.file_id}


def strip_host(original_url: str) -> Optional[str]:
    """Return the part of the URL after scheme and host, or None if malformed."""
    parts = original_url.split('/')
    if len(parts) < 4:
        return None
    return '/'.join(parts[3:])


def decode_identifier(raw: str) -> str:
    """Percent-decode ("+" as space) and repair into valid UTF-8."""
    if not raw:
        return ""
    data = unquote_to_bytes(raw.replace('+', ' '))
    return tidy_bytes(data).decode('utf-8')


class SnapshotCurator:
    """
    Normalizes, filters and deduplicates snapshots.

    Curated mode keeps the newest capture of each resource; all-timestamps
    mode keeps every distinct (timestamp, resource) pair.
    """

    def __init__(self,
                 include: Optional[UrlPredicate] = None,
                 exclude: Optional[UrlPredicate] = None,
                 ignore_params: bool = False,
                 keep_params: Sequence[str] = ()):
        self.include = include
        self.exclude = exclude
        self.ignore_params = ignore_params
        self.keep_params = tuple(keep_params)
        self.logger = logging.getLogger(__name__)

    def resource_id(self, original_url: str) -> Optional[str]:
        raw = strip_host(original_url)
        if raw is None:
            return None
        normalized = normalize_url(raw, ignore_params=self.ignore_params, keep_params=self.keep_params)
        return decode_identifier(normalized)

    def accepts(self, url: str) -> bool:
        if self.exclude is not None and self.exclude(url):
            self.logger.debug(f"File url matches exclude filter, ignoring: {url}")
            return False
        if self.include is not None and not self.include(url):
            self.logger.debug(f"File url doesn't match only filter, ignoring: {url}")
            return False
        return True

    def _surviving(self, snapshots: Iterable[Snapshot]) -> Iterable[Tuple[Snapshot, str]]:
        for snapshot in snapshots:
            resource_id = self.resource_id(snapshot.original_url)
            if resource_id is None or not snapshot.timestamp.isdigit():
                self.logger.debug(f"Malformed file url, ignoring: {snapshot.original_url}")
                continue
            if not self.accepts(snapshot.original_url):
                continue
            yield snapshot, resource_id

    def curate(self, snapshots: Iterable[Snapshot], all_timestamps: bool = False) -> List[DownloadPlanEntry]:
        if all_timestamps:
            plan = self._curate_all_timestamps(snapshots)
        else:
            plan = self._curate_latest(snapshots)
        self.logger.info(f"{len(plan)} files in download plan")
        return plan

    def _curate_latest(self, snapshots: Iterable[Snapshot]) -> List[DownloadPlanEntry]:
        latest: Dict[str, DownloadPlanEntry] = {}
        for snapshot, resource_id in self._surviving(snapshots):
            current = latest.get(resource_id)
            if current is None or int(snapshot.timestamp) > int(current.timestamp):
                latest[resource_id] = DownloadPlanEntry(resource_id, snapshot, snapshot.timestamp, resource_id)
        # sorted() is stable, so equal timestamps keep first-seen order
        return sorted(latest.values(), key=lambda entry: int(entry.timestamp), reverse=True)

    def _curate_all_timestamps(self, snapshots: Iterable[Snapshot]) -> List[DownloadPlanEntry]:
        seen = set()
        plan: List[DownloadPlanEntry] = []
        for snapshot, resource_id in self._surviving(snapshots):
            key = (snapshot.timestamp, resource_id)
            if key in seen:
                self.logger.debug(f"Duplicate file and timestamp combo, ignoring: {resource_id}")
                continue
            seen.add(key)
            file_id = f"{snapshot.timestamp}/{resource_id}"
            plan.append(DownloadPlanEntry(resource_id, snapshot, snapshot.timestamp, file_id))
        return plan

"""
Run state utilities for skipping redundant work and enabling resume.

Two files live next to the output tree:
- a snapshot cache, the merged capture-index rows as a JSON array
- a download ledger, an append-only text file with one downloaded file id
  per line
"""

import json
import logging
import os
import threading
from typing import List, Optional, Set, Tuple

from waymirror.core.errors import StateCorruption


SNAPSHOT_CACHE_NAME = ".waymirror_snapshots.json"
LEDGER_NAME = ".waymirror_downloaded.txt"


def _ledger_line(file_id: str) -> str:
    # one id per line; embedded line breaks would split an entry
    return file_id.replace('\r', '%0D').replace('\n', '%0A')


class StateStore:
    def __init__(self, output_dir: str):
        self.output_dir = output_dir
        self.snapshot_path = os.path.join(output_dir, SNAPSHOT_CACHE_NAME)
        self.ledger_path = os.path.join(output_dir, LEDGER_NAME)
        self.logger = logging.getLogger(__name__)
        self._ledger_lock = threading.Lock()
        self._downloaded: Optional[Set[str]] = None

    def has_snapshot_cache(self) -> bool:
        return os.path.isfile(self.snapshot_path)

    def load_snapshots(self) -> Optional[List[Tuple[str, str]]]:
        """
        Read the cached capture-index rows.

        Returns None when no cache exists.

        Raises:
            StateCorruption: If the cache cannot be read or parsed
        """
        if not self.has_snapshot_cache():
            return None
        try:
            with open(self.snapshot_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StateCorruption(f"Unreadable snapshot cache {self.snapshot_path}: {e}")

        if not isinstance(data, list):
            raise StateCorruption(f"Snapshot cache {self.snapshot_path} is not a list")
        rows = []
        for row in data:
            if not isinstance(row, list) or len(row) < 2:
                raise StateCorruption(f"Malformed row in snapshot cache: {row!r}")
            rows.append((str(row[0]), str(row[1])))
        return rows

    def save_snapshots(self, rows: List[Tuple[str, str]]) -> None:
        os.makedirs(self.output_dir, exist_ok=True)
        tmp_path = self.snapshot_path + '.tmp'
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump([[ts, url] for ts, url in rows], f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.snapshot_path)
        self.logger.info(f"Saved {len(rows)} snapshots to cache: {self.snapshot_path}")

    def load_downloaded(self) -> Set[str]:
        """Read the ledger. A missing or unreadable ledger counts as empty."""
        downloaded: Set[str] = set()
        if os.path.exists(self.ledger_path):
            try:
                with open(self.ledger_path, 'r', encoding='utf-8') as f:
                    for line in f:
                        line = line.rstrip('\n')
                        if line:
                            downloaded.add(line)
            except (OSError, UnicodeDecodeError) as e:
                self.logger.warning(f"Download ledger unreadable, starting with an empty one: {e}")
                downloaded = set()
        with self._ledger_lock:
            self._downloaded = downloaded
        return set(downloaded)

    def is_downloaded(self, file_id: str) -> bool:
        if self._downloaded is None:
            self.load_downloaded()
        with self._ledger_lock:
            return _ledger_line(file_id) in self._downloaded

    def mark_downloaded(self, file_id: str) -> None:
        """Append one id to the ledger and flush it to disk."""
        line = _ledger_line(file_id)
        with self._ledger_lock:
            os.makedirs(self.output_dir, exist_ok=True)
            with open(self.ledger_path, 'a', encoding='utf-8') as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())
            if self._downloaded is not None:
                self._downloaded.add(line)

    def clear(self) -> None:
        """Delete both state files."""
        with self._ledger_lock:
            for path in (self.snapshot_path, self.ledger_path):
                if os.path.exists(path):
                    os.remove(path)
                    self.logger.info(f"Removed state file: {path}")
            self._downloaded = None

"""
File Management Utilities

This module maps resource identifiers onto the mirrored output tree and
writes downloaded bytes to it safely.
"""

import os
import re
import tempfile
import threading
import logging
from typing import Tuple


# Characters Windows refuses in file names
WINDOWS_RESERVED_RE = re.compile(r'[:*?&=<>\\|]')

MAX_RESTRUCTURE_DEPTH = 16


def escape_reserved(path: str) -> str:
    """Percent-escape characters that the Windows file system forbids."""
    return WINDOWS_RESERVED_RE.sub(lambda m: '%' + format(ord(m.group(0)), '02x'), path)


class FileManager:
    """
    Resolves output paths and writes files under a destination root.

    Layout:
    - empty id                          -> <root>/index.html
    - id ending in "/" or without a "." -> <root>/<id>/index.html
    - anything else                     -> <root>/<id>
    """

    def __init__(self, base_output_dir: str, escape_reserved_chars: bool = None):
        """
        Initialize the file manager.

        Args:
            base_output_dir: Destination root for the mirrored tree
            escape_reserved_chars: Escape Windows-reserved characters in paths
                (defaults to True on Windows)
        """
        self.base_output_dir = base_output_dir
        if escape_reserved_chars is None:
            escape_reserved_chars = os.name == 'nt'
        self.escape_reserved_chars = escape_reserved_chars
        self.logger = logging.getLogger(__name__)
        self._structure_lock = threading.Lock()

    def _segments(self, file_id: str) -> list:
        segments = []
        for segment in file_id.split('/'):
            if not segment:
                continue
            if segment in ('.', '..'):
                # never let an archived URL climb out of the output tree
                segment = segment.replace('.', '%2E')
            if self.escape_reserved_chars:
                segment = escape_reserved(segment)
            segments.append(segment)
        return segments

    def resolve_path(self, file_id: str) -> Tuple[str, str]:
        """
        Resolve the directory and file path for a file id.

        Returns:
            Tuple of (dir_path, file_path)
        """
        root = self.base_output_dir
        segments = self._segments(file_id)

        if not segments:
            dir_path = root
            file_path = os.path.join(root, 'index.html')
        elif file_id.endswith('/') or '.' not in segments[-1]:
            dir_path = os.path.join(root, *segments)
            file_path = os.path.join(dir_path, 'index.html')
        else:
            dir_path = os.path.join(root, *segments[:-1])
            file_path = os.path.join(root, *segments)

        return dir_path, file_path

    def structure_dir_path(self, dir_path: str) -> None:
        """
        Create dir_path, moving aside any file that sits where a directory
        has to go.

        A file "a/b" blocking the directory "a/b/" is moved to "a/b/index.html".
        """
        with self._structure_lock:
            for _ in range(MAX_RESTRUCTURE_DEPTH):
                try:
                    os.makedirs(dir_path, exist_ok=True)
                    return
                except (FileExistsError, NotADirectoryError):
                    blocking = self._blocking_file(dir_path)
                    if blocking is None:
                        raise
                    temporary = blocking + '.temp'
                    permanent = os.path.join(blocking, 'index.html')
                    os.replace(blocking, temporary)
                    os.makedirs(blocking)
                    os.replace(temporary, permanent)
                    self.logger.info(f"{blocking} -> {permanent}")
            raise OSError(f"Could not create directory {dir_path}: too many conflicting files")

    def _blocking_file(self, dir_path: str):
        """Find the closest ancestor of dir_path (or itself) that is a regular file."""
        current = os.path.abspath(dir_path)
        root = os.path.abspath(self.base_output_dir)
        candidates = []
        while True:
            candidates.append(current)
            parent = os.path.dirname(current)
            if current == root or parent == current:
                break
            current = parent
        for candidate in reversed(candidates):
            if os.path.isfile(candidate):
                return candidate
        return None

    def file_exists(self, file_path: str) -> bool:
        return os.path.isfile(file_path)

    def write_bytes(self, file_path: str, data: bytes) -> int:
        """
        Write data atomically: temp file in the same directory, fsync, rename.

        Returns:
            Number of bytes written
        """
        directory = os.path.dirname(file_path) or '.'
        fd, tmp_path = tempfile.mkstemp(prefix='.part-', dir=directory)
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, file_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        self.logger.debug(f"Saved {len(data)} bytes: {file_path}")
        return len(data)

"""
Scanner - Input tree traversal.

Walks the input directory with os.scandir, yielding candidate files
with a supported extension. Hidden files and directories are skipped,
which keeps the URL cache and temp files out of the candidate set.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import AsyncGenerator, List

from .config import get_config, BatchConfig
from .models import ScanResult
from .errors import handle_error


logger = logging.getLogger(__name__)

SYSTEM_FILES = {".DS_Store", "Thumbs.db", "desktop.ini"}


class Scanner:
    """
    Input directory scanner.

    Yields absolute paths of candidate files, descending into
    sub-directories only when the config asks for a recursive scan.
    """

    def __init__(self, config: BatchConfig | None = None):
        self.config = config or get_config()
        self._skipped = 0
        self._errors = 0

    async def scan(self, root: Path | None = None) -> ScanResult:
        """
        Scan the input tree and return all candidate files.

        Args:
            root: Directory to scan (default: config.input_dir)
        """
        root = root or self.config.input_dir
        start_time = time.monotonic()
        self._skipped = 0
        self._errors = 0

        files: List[Path] = []
        async for path in self.scan_iter(root):
            files.append(path)

        duration = time.monotonic() - start_time
        logger.debug(f"Scanned {len(files)} files in {duration:.2f}s")

        return ScanResult(
            files=sorted(files),
            skipped_count=self._skipped,
            error_count=self._errors,
            duration_seconds=duration,
        )

    async def scan_iter(self, root: Path | None = None) -> AsyncGenerator[Path, None]:
        """Streaming interface: yield files as they're found."""
        root = root or self.config.input_dir

        if not root.exists():
            logger.warning(f"Directory does not exist: {root}")
            return

        async for path in self._scan_directory(root):
            yield path

    async def _scan_directory(self, directory: Path) -> AsyncGenerator[Path, None]:
        try:
            entries = list(os.scandir(directory))
        except OSError as e:
            handle_error(e, directory, "scan_directory")
            self._errors += 1
            return

        subdirs: List[Path] = []

        for entry in entries:
            if entry.name.startswith("."):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    subdirs.append(Path(entry.path))
                elif entry.is_file(follow_symlinks=False):
                    if self._should_skip_file(entry.name):
                        self._skipped += 1
                        continue
                    yield Path(entry.path)
            except OSError as e:
                handle_error(e, Path(entry.path), "scan_entry")
                self._errors += 1

        # Give other tasks a turn between directories
        await asyncio.sleep(0)

        if not self.config.recursive:
            return

        for subdir in subdirs:
            async for path in self._scan_directory(subdir):
                yield path

    def _should_skip_file(self, name: str) -> bool:
        """Check if a file should be skipped."""
        if name in SYSTEM_FILES:
            return True

        ext = Path(name).suffix.lower()
        return ext not in self.config.supported_extensions

    def is_supported(self, path: Path) -> bool:
        return not path.name.startswith(".") and not self._should_skip_file(path.name)

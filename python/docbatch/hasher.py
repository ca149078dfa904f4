"""
Hasher - Content fingerprints using xxHash.

Fingerprints are for change detection only, not security, so xxHash64
(2.5GB/s) is used instead of a cryptographic digest. Files are
fingerprinted by their raw bytes; URL items are fingerprinted by the URL
string itself, so dedup answers "have I processed this URL before"
rather than "has the remote page changed".
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

import xxhash

from .config import get_config, BatchConfig
from .models import WorkItem
from .errors import handle_error


logger = logging.getLogger(__name__)

FINGERPRINT_LENGTH = 16  # xxh64 hex digest


def fingerprint_text(text: str) -> str:
    """Fingerprint a string (used for URL identities)."""
    return xxhash.xxh64(text.encode("utf-8")).hexdigest()


def fingerprint_file(path: Path) -> str:
    """Fingerprint the bytes of a file, reading in 64KB chunks."""
    hasher = xxhash.xxh64()
    with open(path, "rb") as f:
        while chunk := f.read(65536):
            hasher.update(chunk)
    return hasher.hexdigest()


class Hasher:
    """
    Parallel fingerprinting of work items.

    File reads run in a small thread pool so a large input tree does not
    block the event loop. Items whose file vanished or cannot be read
    are dropped (and logged), never raised.
    """

    def __init__(self, config: BatchConfig | None = None, max_workers: int = 8):
        self.config = config or get_config()
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="hasher"
            )
        return self._executor

    async def fingerprint_items(self, items: List[WorkItem]) -> List[WorkItem]:
        """
        Set `fingerprint` on every item that can be read.

        Returns:
            The items that were fingerprinted successfully, in input order.
        """
        if not items:
            return []

        loop = asyncio.get_running_loop()
        executor = self._get_executor()

        tasks = [
            loop.run_in_executor(executor, self._fingerprint_sync, item)
            for item in items
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        fingerprinted: List[WorkItem] = []
        for item, result in zip(items, results):
            if isinstance(result, Exception):
                # Already logged in _fingerprint_sync
                continue
            item.fingerprint = result
            fingerprinted.append(item)

        logger.debug(f"Fingerprinted {len(fingerprinted)}/{len(items)} items")
        return fingerprinted

    def _fingerprint_sync(self, item: WorkItem) -> str:
        """Synchronous fingerprinting (runs in thread pool)."""
        if item.is_url:
            return fingerprint_text(item.key)
        try:
            return fingerprint_file(item.path)
        except Exception as e:
            handle_error(e, item.path, "fingerprint")
            raise

    async def fingerprint_path(self, path: Path) -> Optional[str]:
        """Fingerprint one file, returning None if it cannot be read."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self._get_executor(), fingerprint_file, path)
        except OSError as e:
            handle_error(e, path, "fingerprint")
            return None

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None

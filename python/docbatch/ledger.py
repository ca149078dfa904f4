"""
HashLedger - Persisted record of what has already been processed.

The ledger maps a work-item key (absolute path or URL) to the
fingerprint it had when it was last processed successfully. An item is
skipped iff an entry exists for its key and the entry's fingerprint
equals the freshly computed one.

File format (JSON):
    {
      "version": "1.0.0",
      "lastUpdated": "<ISO-8601>",
      "files": {"<key>": {"hash", "outputPath", "processedAt", "retries"}}
    }

A file with any other version is discarded, not migrated. Load and save
failures are logged and never raised: the processor keeps going with
the in-memory ledger and tries again at the next save point.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .config import get_config, BatchConfig
from .errors import LedgerError
from .models import Ledger, LedgerEntry, LEDGER_VERSION, utc_now_iso


logger = logging.getLogger(__name__)


class HashLedger:
    """
    Loads, queries, mutates and saves the ledger file.

    The Ledger value itself is plain data; it is owned by the orchestrator
    and only mutated between batches, so no locking is needed here.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        config: BatchConfig | None = None,
        version: str = LEDGER_VERSION,
    ):
        self.config = config or get_config()
        self.path = Path(path) if path else self.config.ledger_path
        self.version = version

    def empty(self) -> Ledger:
        """A fresh ledger with the runtime's schema version."""
        return Ledger(version=self.version)

    def load(self) -> Ledger:
        """
        Read the persisted ledger.

        Returns a fresh empty ledger when the file is missing, cannot be
        parsed, or carries a different schema version.
        """
        if not self.path.exists():
            logger.debug(f"No ledger at {self.path}, starting fresh")
            return self.empty()

        try:
            data = self._read()
            version = data.get("version")
            if version != self.version:
                logger.warning(
                    f"Ledger version mismatch. Expected {self.version}, "
                    f"got {version}. Starting fresh."
                )
                return self.empty()
            return self._parse(data)
        except LedgerError as e:
            logger.error(f"Failed to load ledger {self.path}: {e}")
            return self.empty()

    def _read(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise LedgerError(str(e)) from e
        if not isinstance(data, dict):
            raise LedgerError("ledger root is not an object")
        return data

    @staticmethod
    def _parse(data: dict) -> Ledger:
        try:
            return Ledger.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise LedgerError(f"malformed entry: {e}") from e

    def save(self, ledger: Ledger) -> bool:
        """
        Write the full ledger via temp file + rename.

        The live file is never rewritten in place, so a crash mid-write
        leaves the previous good copy intact.

        Returns:
            True if the ledger was written.
        """
        ledger.last_updated = utc_now_iso()
        try:
            self._write(ledger)
        except LedgerError as e:
            logger.error(f"Failed to save ledger {self.path}: {e}")
            return False
        logger.debug(f"Saved ledger to {self.path}")
        return True

    def _write(self, ledger: Ledger) -> None:
        tmp_name: Optional[str] = None

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(ledger.to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise LedgerError(str(e)) from e
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    @staticmethod
    def is_processed(ledger: Ledger, key: str, fingerprint: str) -> bool:
        """True iff `key` has an entry whose fingerprint matches."""
        entry = ledger.files.get(key)
        if entry is None:
            return False
        return entry.hash == fingerprint

    @staticmethod
    def mark_processed(
        ledger: Ledger,
        key: str,
        fingerprint: str,
        output_path: Path | str,
        retries: int = 0,
    ) -> LedgerEntry:
        """
        Upsert the entry for `key`. Call only after extraction succeeded.
        """
        entry = LedgerEntry(
            hash=fingerprint,
            output_path=str(output_path),
            processed_at=utc_now_iso(),
            retries=retries,
        )
        ledger.files[key] = entry
        return entry

    @staticmethod
    def get_entry(ledger: Ledger, key: str) -> Optional[LedgerEntry]:
        return ledger.files.get(key)

    @staticmethod
    def remove_entry(ledger: Ledger, key: str) -> None:
        ledger.files.pop(key, None)

    @staticmethod
    def stats(ledger: Ledger) -> dict:
        """Number of tracked keys and the last-updated timestamp."""
        return {
            "total_files": len(ledger.files),
            "last_updated": ledger.last_updated,
        }

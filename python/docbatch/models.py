"""
Data Models - Type definitions for the batch pipeline.

These dataclasses represent the data flowing through one cycle:
discovery → fingerprint → (URL resolution) → extraction → ledger.
Only LedgerEntry/Ledger are persisted; everything else lives for a
single cycle.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional


LEDGER_VERSION = "1.0.0"


def utc_now_iso() -> str:
    """Current time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SourceKind(Enum):
    """Where a work item came from."""
    FILE = "file"
    URL = "url"


class JobStatus(Enum):
    """Lifecycle of a job within one batch."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class FetchLayer(Enum):
    """Retrieval backends of the URL fallback chain, in order."""
    DIRECT = "fetch"
    BROWSER = "playwright"
    REMOTE = "browserless"


@dataclass
class WorkItem:
    """
    A candidate for processing, created fresh every discovery cycle.

    The key is the absolute source path for files, or the URL string
    itself for URL-derived items. URL items get a `path` only once their
    content has been fetched into the URL cache.
    """
    key: str
    kind: SourceKind
    relative_path: str
    path: Optional[Path] = None
    url: Optional[str] = None
    output_name: Optional[str] = None
    fingerprint: Optional[str] = None

    @classmethod
    def for_file(cls, path: Path, input_dir: Path) -> "WorkItem":
        try:
            relative = path.relative_to(input_dir)
        except ValueError:
            relative = Path(path.name)
        return cls(
            key=str(path),
            kind=SourceKind.FILE,
            relative_path=relative.as_posix(),
            path=path,
        )

    @classmethod
    def for_url(cls, url: str, output_name: Optional[str] = None) -> "WorkItem":
        return cls(
            key=url,
            kind=SourceKind.URL,
            relative_path=url,
            url=url,
            output_name=output_name,
        )

    @property
    def is_url(self) -> bool:
        return self.kind is SourceKind.URL


@dataclass
class UrlEntry:
    """One parsed line of a URL-list file."""
    url: str
    filename: Optional[str] = None


@dataclass
class LedgerEntry:
    """Persisted outcome of the last successful processing of a key."""
    hash: str
    output_path: str
    processed_at: str
    retries: int = 0

    def to_dict(self) -> dict:
        return {
            "hash": self.hash,
            "outputPath": self.output_path,
            "processedAt": self.processed_at,
            "retries": self.retries,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerEntry":
        return cls(
            hash=str(data["hash"]),
            output_path=str(data.get("outputPath", "")),
            processed_at=str(data.get("processedAt", "")),
            retries=int(data.get("retries", 0)),
        )


@dataclass
class Ledger:
    """The full persisted state: version tag, timestamp and entries."""
    version: str = LEDGER_VERSION
    last_updated: str = field(default_factory=utc_now_iso)
    files: Dict[str, LedgerEntry] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "lastUpdated": self.last_updated,
            "files": {key: entry.to_dict() for key, entry in self.files.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Ledger":
        files = data.get("files") or {}
        if not isinstance(files, dict):
            raise ValueError("'files' is not an object")
        return cls(
            version=str(data.get("version", "")),
            last_updated=str(data.get("lastUpdated", "")),
            files={key: LedgerEntry.from_dict(value) for key, value in files.items()},
        )


@dataclass
class Job:
    """
    One WorkItem moving through the scheduler in a single cycle.

    Discarded after its batch completes; only the ledger mutation or the
    quarantine artifact survives.
    """
    id: str
    item: WorkItem
    status: JobStatus = JobStatus.PENDING
    retries: int = 0
    error: Optional[str] = None
    output_path: Optional[Path] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    @property
    def duration_seconds(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return self.end_time - self.start_time


@dataclass
class FetchOutcome:
    """Result of one layer attempt (or of the whole chain)."""
    url: str
    layer: FetchLayer
    success: bool
    content: str = ""
    error: Optional[str] = None

    @classmethod
    def ok(cls, url: str, layer: FetchLayer, content: str) -> "FetchOutcome":
        return cls(url=url, layer=layer, success=True, content=content)

    @classmethod
    def failed(cls, url: str, layer: FetchLayer, error: str) -> "FetchOutcome":
        return cls(url=url, layer=layer, success=False, error=error)


@dataclass
class ExtractionResult:
    """What the conversion service returned for one input."""
    success: bool
    content: str = ""
    error: Optional[str] = None


@dataclass
class ScanResult:
    """Result of scanning the input tree."""
    files: List[Path]
    skipped_count: int
    error_count: int
    duration_seconds: float


@dataclass
class CycleStats:
    """Statistics from one processing cycle."""
    files_scanned: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    urls_processed: int = 0
    urls_skipped: int = 0
    urls_failed: int = 0
    lists_processed: int = 0
    duration_seconds: float = 0.0

    def __str__(self) -> str:
        return (
            f"Processed {self.files_processed} files "
            f"({self.files_skipped} skipped, {self.files_failed} failed), "
            f"{self.urls_processed} URLs "
            f"({self.urls_skipped} skipped, {self.urls_failed} failed) "
            f"in {self.duration_seconds:.2f}s"
        )

"""
Test Configuration - Shared fixtures for batch processor tests.

Uses pytest fixtures to create isolated input/output/error trees and
fake collaborators for the conversion service and fetch layers.
"""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Generator, Optional

import pytest

from docbatch.config import BatchConfig, set_config
from docbatch.models import ExtractionResult, FetchLayer
from docbatch.resolver import RetrievalLayer


class FakeGateway:
    """
    Stands in for the kreuzberg CLI.

    Fails for any path whose name is in `fail_names` (or always, with
    `always_fail`), optionally after a simulated duration. Tracks calls
    and the peak number of concurrent extractions.
    """

    def __init__(
        self,
        fail_names: Optional[set] = None,
        always_fail: bool = False,
        delay: float = 0.0,
        fail_first: int = 0,
    ):
        self.fail_names = fail_names or set()
        self.always_fail = always_fail
        self.delay = delay
        self.fail_first = fail_first
        self.calls: list[Path] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def extract(self, input_path: Path) -> ExtractionResult:
        self.calls.append(Path(input_path))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.always_fail or Path(input_path).name in self.fail_names:
                return ExtractionResult(success=False, error="conversion failed: corrupt input")
            if self.fail_first > 0:
                self.fail_first -= 1
                return ExtractionResult(success=False, error="transient failure")
            return ExtractionResult(success=True, content=f"text of {Path(input_path).name}")
        finally:
            self.in_flight -= 1

    def close(self):
        self.closed = True


class FakeLayer(RetrievalLayer):
    """Retrieval layer with a scripted result."""

    def __init__(
        self,
        layer: FetchLayer,
        succeed: bool,
        content: str = "<html><main>content</main></html>",
        enabled: bool = True,
    ):
        super().__init__(BatchConfig())
        self.layer = layer
        self.succeed = succeed
        self.content = content
        self._enabled = enabled
        self.calls: list[str] = []

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def _retrieve(self, url: str) -> str:
        self.calls.append(url)
        if not self.succeed:
            raise ConnectionError(f"{self.layer.value} unavailable")
        return self.content


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="docbatch_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> BatchConfig:
    """Create an isolated test configuration."""
    config = BatchConfig(
        input_dir=temp_dir / "input",
        output_dir=temp_dir / "output",
        error_dir=temp_dir / "error",
        kreuzberg_config=temp_dir / "kreuzberg.toml",
        watch_interval=1,
        concurrent_jobs=2,
        max_retries=3,
        retry_delay=0.0,
        add_timestamp=False,
        watch_events=False,
        debounce_ms=50,
    )
    config.ensure_directories()
    set_config(config)
    return config


@pytest.fixture
def sample_files(test_config: BatchConfig) -> dict[str, Path]:
    """Create sample inputs for testing."""
    root = test_config.input_dir
    files = {}

    pdf = root / "report.pdf"
    pdf.write_bytes(b"%PDF-1.4 fake report body")
    files["pdf"] = pdf

    md = root / "notes.md"
    md.write_text("# Notes\n\nSome content here.")
    files["md"] = md

    nested_dir = root / "scans" / "2024"
    nested_dir.mkdir(parents=True)
    nested = nested_dir / "receipt.png"
    nested.write_bytes(b"\x89PNG\r\n\x1a\nfake")
    files["nested"] = nested

    # Hidden file (should be skipped)
    hidden = root / ".draft.pdf"
    hidden.write_bytes(b"%PDF hidden")
    files["hidden"] = hidden

    # Unsupported extension (should be skipped)
    binary = root / "tool.exe"
    binary.write_bytes(b"MZ\x00\x00")
    files["unsupported"] = binary

    return files


@pytest.fixture
def url_list(test_config: BatchConfig) -> Path:
    """A URL list file with a comment, a named entry and an unnamed one."""
    path = test_config.input_dir / "reading.txt"
    path.write_text(
        "# weekly reading\n"
        "https://a.example/articles/first x\n"
        "https://b.example/\n"
    )
    return path


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def make_gateway():
    """Factory for gateways with scripted failures."""
    return FakeGateway


@pytest.fixture
def make_layer():
    """Factory for scripted retrieval layers."""
    return FakeLayer

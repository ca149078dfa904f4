"""
ExtractionGateway - Contract to the external conversion service.

Runs the `kreuzberg extract` CLI as a blocking subprocess (in a thread
pool so the event loop stays free) with a hard timeout. Success means
exit code 0 with the extracted text on stdout; anything else is a
failure whose message is the service's stderr.
"""

import asyncio
import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List

from .config import get_config, BatchConfig
from .errors import ExtractionError, handle_error
from .models import ExtractionResult


logger = logging.getLogger(__name__)


class ExtractionGateway:
    """
    Submit (path, options) to the conversion service, get text or a failure.

    Never raises: every failure mode (non-zero exit, timeout, missing
    binary) comes back as an unsuccessful ExtractionResult.
    """

    def __init__(self, config: BatchConfig | None = None):
        self.config = config or get_config()
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=max(self.config.concurrent_jobs, 1),
                thread_name_prefix="extractor"
            )
        return self._executor

    def build_command(self, input_path: Path) -> List[str]:
        """CLI invocation for one input."""
        args = [
            self.config.kreuzberg_bin,
            "extract",
            str(Path(input_path).resolve()),
            "--format", "text",
        ]

        if self.config.kreuzberg_config.exists():
            args += ["--config", str(self.config.kreuzberg_config)]

        if self.config.ocr_enabled:
            args += ["--ocr", "true"]

        if self.config.force_ocr:
            args += ["--force-ocr", "true"]

        if self.config.quality_processing:
            args += ["--quality", "true"]

        return args

    async def extract(self, input_path: Path) -> ExtractionResult:
        """Extract text from one input."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._get_executor(), self._extract_sync, Path(input_path)
        )

    def _extract_sync(self, input_path: Path) -> ExtractionResult:
        """Synchronous extraction (runs in thread pool)."""
        command = self.build_command(input_path)
        logger.debug(f"Extracting: {input_path}")

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.config.extraction_timeout,
            )
        except subprocess.TimeoutExpired:
            message = f"Extraction timed out after {self.config.extraction_timeout:.0f}s"
            handle_error(ExtractionError(input_path, message), input_path, "extract")
            return ExtractionResult(success=False, error=message)
        except OSError as e:
            # Binary missing or not executable
            message = f"Cannot run {self.config.kreuzberg_bin}: {e}"
            handle_error(ExtractionError(input_path, message), input_path, "extract")
            return ExtractionResult(success=False, error=message)

        if result.returncode != 0:
            message = result.stderr.strip() or f"Exit code {result.returncode}"
            handle_error(ExtractionError(input_path, message), input_path, "extract")
            return ExtractionResult(success=False, error=message)

        return ExtractionResult(success=True, content=result.stdout)

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None

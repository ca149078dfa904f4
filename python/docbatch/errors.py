"""
Error Handling - Centralized error policies and custom exceptions.

This module defines how per-file errors are handled while scanning and
fingerprinting inputs, and the exception types raised at component
boundaries. Nothing here is allowed to escape a job or a cycle: the
scheduler and orchestrator turn these into job outcomes and log lines.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


@dataclass
class ErrorPolicy:
    """How an error type is reported."""
    log_level: int
    message_template: str = "{file}: {error}"


class BatchError(Exception):
    """Base exception for batch processing errors."""
    pass


class ConfigError(BatchError):
    """Configuration failed validation at startup."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


class LedgerError(BatchError):
    """The ledger file could not be read or written."""
    pass


class ExtractionError(BatchError):
    """The conversion service rejected or failed an input."""

    def __init__(self, path: Path, message: str):
        self.path = path
        super().__init__(message)


class FetchError(BatchError):
    """A retrieval layer could not produce usable content."""
    pass


class JavaScriptRequiredError(FetchError):
    """Direct fetch succeeded but the body needs client-side rendering."""
    pass


# Error type to policy mapping (first match wins, so subclasses come first)
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    PermissionError: ErrorPolicy(
        log_level=logging.WARNING,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    IsADirectoryError: ErrorPolicy(
        log_level=logging.DEBUG,
        message_template="Expected file, got directory: {file}"
    ),
    ExtractionError: ErrorPolicy(
        log_level=logging.DEBUG,
        message_template="Extraction failed: {file} - {error}"
    ),
    OSError: ErrorPolicy(
        log_level=logging.WARNING,
        message_template="OS error reading file: {file} - {error}"
    ),
}


def handle_error(
    error: Exception,
    file_path: Optional[Path | str] = None,
    context: str = ""
) -> None:
    """
    Log an error according to the defined policies.

    Only logs. The caller decides whether the item is skipped or retried.

    Args:
        error: The exception that occurred
        file_path: Path (or URL) of the item being processed
        context: Additional context for logging
    """
    policy = None
    for error_type, p in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            policy = p
            break

    # Default policy for unknown errors
    if policy is None:
        policy = ErrorPolicy(
            log_level=logging.ERROR,
            message_template="Unexpected error: {file} - {error}"
        )

    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

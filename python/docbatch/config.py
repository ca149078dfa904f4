"""
Batch Configuration - Centralized settings for the batch processor.

Uses environment variables with sensible defaults. Every numeric setting
falls back to its default when the variable is missing or not a number,
so a bad value never stops the processor from starting. Structural
problems (interval below one second, no workers, negative retries) are
reported by validate() and are fatal at startup only.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set

from .errors import ConfigError


logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() == "true" or value.strip() == "1"


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={value!r}, using {default}")
        return default


def _env_ms(name: str, default_seconds: float) -> float:
    """Read a millisecond value and return seconds."""
    default_ms = int(default_seconds * 1000)
    return _env_int(name, default_ms) / 1000.0


def _env_str(name: str, default: str) -> str:
    value = os.environ.get(name)
    return value if value else default


@dataclass
class BatchConfig:
    """
    Configuration for the batch processor.

    Durations are stored in seconds. Directory defaults match the
    container layout (/files/input, /files/output, /files/error).
    """

    # --- Watch ---
    watch_interval: int = 30        # Seconds between cycles
    concurrent_jobs: int = 4        # Jobs per batch
    recursive: bool = True
    watch_events: bool = True       # Wake early on filesystem events
    debounce_ms: int = 2000

    # --- Output ---
    add_timestamp: bool = True
    skip_existing: bool = True
    preserve_structure: bool = True
    hash_file: str = ".processed.json"
    output_extension: str = ".md"

    # --- URL fetching ---
    fetch_urls: bool = True
    url_file: str = "urls.txt"
    url_cache_dir: str = ".url-cache"
    fetch_timeout: float = 30.0
    user_agent: str = "Mozilla/5.0 (compatible; KreuzbergBot/1.0)"

    # --- Layer 2: headless browser ---
    playwright_enabled: bool = False
    playwright_wait: float = 5.0    # Settle delay after navigation
    playwright_timeout: float = 60.0

    # --- Layer 3: remote rendering API ---
    browserless_enabled: bool = False
    browserless_url: str = "http://browserless:3000"
    browserless_token: str = ""

    # --- Retries ---
    max_retries: int = 3
    retry_delay: float = 5.0

    # --- Extraction service ---
    kreuzberg_bin: str = "kreuzberg"
    kreuzberg_config: Path = field(default_factory=lambda: Path("/config/kreuzberg.toml"))
    extraction_timeout: float = 300.0
    ocr_enabled: bool = True
    force_ocr: bool = False
    ocr_language: str = "eng"
    quality_processing: bool = True

    # --- Directories ---
    input_dir: Path = field(default_factory=lambda: Path("/files/input"))
    output_dir: Path = field(default_factory=lambda: Path("/files/output"))
    error_dir: Path = field(default_factory=lambda: Path("/files/error"))

    # --- Logging ---
    log_level: str = "info"
    verbose: bool = False

    # --- Supported File Types ---
    supported_extensions: Set[str] = field(default_factory=lambda: {
        # Documents
        ".pdf", ".docx", ".doc", ".pptx", ".ppt", ".xlsx", ".xls",
        ".odt", ".rtf", ".epub", ".txt", ".md", ".markdown",
        # Web
        ".html", ".htm", ".xml", ".json", ".yaml", ".yml", ".toml",
        # Images (OCR)
        ".png", ".jpg", ".jpeg", ".tiff", ".tif", ".bmp", ".gif", ".webp",
        # Email
        ".eml", ".msg",
        # Archives
        ".zip", ".tar", ".gz",
    })

    def __post_init__(self):
        """Ensure all directory paths are absolute."""
        self.input_dir = Path(self.input_dir).expanduser().resolve()
        self.output_dir = Path(self.output_dir).expanduser().resolve()
        self.error_dir = Path(self.error_dir).expanduser().resolve()
        self.kreuzberg_config = Path(self.kreuzberg_config).expanduser()

    @property
    def ledger_path(self) -> Path:
        """Location of the persisted ledger file."""
        return self.output_dir / self.hash_file

    @property
    def url_cache_path(self) -> Path:
        """Directory where fetched URL bodies are written before extraction."""
        return self.input_dir / self.url_cache_dir

    def validate(self) -> List[str]:
        """Return a list of configuration errors (empty when valid)."""
        errors: List[str] = []

        if self.watch_interval < 1:
            errors.append("WATCH_INTERVAL must be at least 1 second")

        if self.concurrent_jobs < 1:
            errors.append("CONCURRENT_JOBS must be at least 1")

        if self.max_retries < 0:
            errors.append("MAX_RETRIES cannot be negative")

        return errors

    def check(self) -> None:
        """Raise ConfigError if validate() reports any problem."""
        errors = self.validate()
        if errors:
            raise ConfigError(errors)

    def ensure_directories(self) -> None:
        """Create input, output and error directories if missing."""
        for directory in (self.input_dir, self.output_dir, self.error_dir):
            if not directory.exists():
                directory.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created directory: {directory}")

    @classmethod
    def from_env(cls) -> "BatchConfig":
        """
        Create config from environment variables.

        Timeouts and delays are read in milliseconds (FETCH_TIMEOUT,
        PLAYWRIGHT_WAIT, PLAYWRIGHT_TIMEOUT, RETRY_DELAY,
        EXTRACTION_TIMEOUT); WATCH_INTERVAL is read in seconds.
        """
        defaults = cls()

        return cls(
            watch_interval=_env_int("WATCH_INTERVAL", defaults.watch_interval),
            concurrent_jobs=_env_int("CONCURRENT_JOBS", defaults.concurrent_jobs),
            recursive=_env_bool("RECURSIVE", defaults.recursive),
            watch_events=_env_bool("WATCH_EVENTS", defaults.watch_events),
            debounce_ms=_env_int("DEBOUNCE_MS", defaults.debounce_ms),
            add_timestamp=_env_bool("ADD_TIMESTAMP", defaults.add_timestamp),
            skip_existing=_env_bool("SKIP_EXISTING", defaults.skip_existing),
            preserve_structure=_env_bool("PRESERVE_STRUCTURE", defaults.preserve_structure),
            hash_file=_env_str("HASH_FILE", defaults.hash_file),
            fetch_urls=_env_bool("FETCH_URLS", defaults.fetch_urls),
            url_file=_env_str("URL_FILE", defaults.url_file),
            fetch_timeout=_env_ms("FETCH_TIMEOUT", defaults.fetch_timeout),
            user_agent=_env_str("USER_AGENT", defaults.user_agent),
            playwright_enabled=_env_bool("PLAYWRIGHT_ENABLED", defaults.playwright_enabled),
            playwright_wait=_env_ms("PLAYWRIGHT_WAIT", defaults.playwright_wait),
            playwright_timeout=_env_ms("PLAYWRIGHT_TIMEOUT", defaults.playwright_timeout),
            browserless_enabled=_env_bool("BROWSERLESS_ENABLED", defaults.browserless_enabled),
            browserless_url=_env_str("BROWSERLESS_URL", defaults.browserless_url),
            browserless_token=_env_str("BROWSERLESS_TOKEN", defaults.browserless_token),
            max_retries=_env_int("MAX_RETRIES", defaults.max_retries),
            retry_delay=_env_ms("RETRY_DELAY", defaults.retry_delay),
            kreuzberg_bin=_env_str("KREUZBERG_BIN", defaults.kreuzberg_bin),
            kreuzberg_config=Path(_env_str("KREUZBERG_CONFIG", str(defaults.kreuzberg_config))),
            extraction_timeout=_env_ms("EXTRACTION_TIMEOUT", defaults.extraction_timeout),
            ocr_enabled=_env_bool("OCR_ENABLED", defaults.ocr_enabled),
            force_ocr=_env_bool("FORCE_OCR", defaults.force_ocr),
            ocr_language=_env_str("OCR_LANGUAGE", defaults.ocr_language),
            quality_processing=_env_bool("QUALITY_PROCESSING", defaults.quality_processing),
            input_dir=Path(_env_str("INPUT_DIR", str(defaults.input_dir))),
            output_dir=Path(_env_str("OUTPUT_DIR", str(defaults.output_dir))),
            error_dir=Path(_env_str("ERROR_DIR", str(defaults.error_dir))),
            log_level=_env_str("LOG_LEVEL", defaults.log_level).lower(),
            verbose=_env_bool("VERBOSE", defaults.verbose),
        )


# Singleton default config
_default_config: Optional[BatchConfig] = None


def get_config() -> BatchConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = BatchConfig.from_env()
    return _default_config


def set_config(config: BatchConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config

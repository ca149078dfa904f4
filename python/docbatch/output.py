"""
Output - Where results and quarantined inputs land.

Output files mirror the input tree (when structure preservation is on)
and carry an optional timestamp suffix. Inputs that exhaust their
retries are copied, never moved, into the error tree next to a
`.error.txt` log.
"""

import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .config import get_config, BatchConfig
from .models import WorkItem, utc_now_iso


logger = logging.getLogger(__name__)

ERROR_LOG_SUFFIX = ".error.txt"


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """Compact UTC timestamp used in file names: YYYYMMDD_HHMMSS."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d_%H%M%S")


class OutputLayout:
    """Maps inputs to output and quarantine locations."""

    def __init__(self, config: BatchConfig | None = None):
        self.config = config or get_config()

    def _relative(self, path: Path) -> Path:
        try:
            return path.relative_to(self.config.input_dir)
        except ValueError:
            return Path(path.name)

    def output_path_for(self, input_path: Path, now: Optional[datetime] = None) -> Path:
        """
        Output location for an input file.

        `<stem>[_<timestamp>]<ext>` in the output dir, or in the mirrored
        sub-directory when preserve_structure is set.
        """
        return self._output_path(self._relative(Path(input_path)), now)

    def output_path_for_item(self, item: WorkItem, now: Optional[datetime] = None) -> Path:
        """Like output_path_for, but fetched URL bodies land at the output root."""
        if item.is_url:
            return self._output_path(Path(Path(item.path).name), now)
        return self.output_path_for(item.path, now)

    def _output_path(self, relative: Path, now: Optional[datetime]) -> Path:
        stem = relative.stem
        if self.config.add_timestamp:
            name = f"{stem}_{generate_timestamp(now)}{self.config.output_extension}"
        else:
            name = f"{stem}{self.config.output_extension}"

        parent = relative.parent
        if self.config.preserve_structure and str(parent) != ".":
            return self.config.output_dir / parent / name
        return self.config.output_dir / name

    def write_output(self, output_path: Path, content: str) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(content, encoding="utf-8")

    def quarantine_path_for(self, input_path: Path) -> Path:
        return self.config.error_dir / self._relative(Path(input_path))

    def quarantine(self, item: WorkItem, error: str) -> Optional[Path]:
        """
        Copy a failed input into the error tree with a sibling log file.

        Returns:
            The quarantine copy's path, or None if it could not be written.
        """
        if item.path is None:
            return None

        source = Path(item.path)
        target = self.quarantine_path_for(source)
        log_path = target.with_name(target.name + ERROR_LOG_SUFFIX)

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            log_path.write_text(
                f"Error: {error}\n"
                f"Timestamp: {utc_now_iso()}\n"
                f"Original path: {source}\n",
                encoding="utf-8",
            )
        except OSError as e:
            logger.error(f"Failed to quarantine {source}: {e}")
            return None

        logger.warning(f"Quarantined: {source} → {target}")
        return target

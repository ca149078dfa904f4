"""
Orchestrator - Cycle driver and main entry point.

One cycle:
    1. DISCOVER: scan the input tree, split URL lists from documents
    2. URLS: for each unseen URL list, resolve and extract every URL
    3. FILES: fingerprint documents, drop those the ledger has seen
    4. RUN: concurrency-bounded batches through the scheduler
    5. PERSIST: save the ledger and report counts

A URL list is recorded in the ledger like any input, but it has no output
file of its own: its entry's outputPath is the URL cache directory that
holds the fetched pages.

Cycles repeat every `watch_interval` seconds (sooner when the watcher
sees new input) until SIGINT/SIGTERM. Shutdown lets the in-flight batch
finish, saves the ledger and exits 0. An error inside a cycle is logged
and the next cycle still runs.
"""

import asyncio
import logging
import signal
import sys
import time
from pathlib import Path
from typing import List, Optional, Tuple

from .config import BatchConfig, get_config, set_config
from .errors import ConfigError
from .gateway import ExtractionGateway
from .hasher import Hasher
from .ledger import HashLedger
from .models import CycleStats, JobStatus, WorkItem
from .output import OutputLayout
from .resolver import ContentResolver
from .scanner import Scanner
from .scheduler import JobScheduler, RunState
from .urllist import CONTENT_EXTENSION, is_url_list_file, parse_url_file, url_to_filename
from .watcher import AsyncWatcher


logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Owns the ledger and runs discovery → dedup → extraction → persistence.

    Collaborators can be injected (tests pass a fake gateway/resolver);
    everything else is built from the config.
    """

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        gateway: Optional[ExtractionGateway] = None,
        resolver: Optional[ContentResolver] = None,
        state: Optional[RunState] = None,
    ):
        self.config = config or get_config()
        if config:
            set_config(config)

        self.state = state or RunState()
        self._ledger_store = HashLedger(config=self.config)
        self.ledger = self._ledger_store.load()

        self._scanner = Scanner(self.config)
        self._hasher = Hasher(self.config)
        self._gateway = gateway or ExtractionGateway(self.config)
        self._scheduler = JobScheduler(
            self.ledger,
            config=self.config,
            ledger_store=self._ledger_store,
            gateway=self._gateway,
            resolver=resolver or ContentResolver(self.config),
            layout=OutputLayout(self.config),
            state=self.state,
        )
        self._watcher: Optional[AsyncWatcher] = None

        logger.info(f"Loaded ledger: {len(self.ledger.files)} entries tracked")

    async def run_cycle(self) -> CycleStats:
        """Run one full processing cycle."""
        start_time = time.monotonic()
        stats = CycleStats()
        logger.info("Starting processing cycle...")

        url_lists, files = await self._discover()
        stats.files_scanned = len(files)

        if self.config.fetch_urls and url_lists:
            await self._process_url_lists(url_lists, stats)
        elif url_lists:
            logger.debug(f"URL fetching disabled, ignoring {len(url_lists)} URL lists")

        if not self.state.is_shutting_down:
            await self._process_files(files, stats)

        self.save()

        stats.duration_seconds = time.monotonic() - start_time
        tracked = HashLedger.stats(self.ledger)["total_files"]
        logger.info(f"Cycle completed: {stats}. Total tracked: {tracked}")
        return stats

    async def _discover(self) -> Tuple[List[Path], List[Path]]:
        """Split scanned files into URL lists and documents."""
        scan = await self._scanner.scan()
        url_lists: List[Path] = []
        files: List[Path] = []

        for path in scan.files:
            if path.name == self.config.url_file or is_url_list_file(path):
                url_lists.append(path)
            else:
                files.append(path)

        logger.debug(f"Discovered {len(files)} files and {len(url_lists)} URL lists")
        return url_lists, files

    async def _process_url_lists(self, url_lists: List[Path], stats: CycleStats) -> None:
        for list_path in url_lists:
            if self.state.is_shutting_down:
                break

            list_key = str(list_path)
            list_fingerprint = await self._hasher.fingerprint_path(list_path)
            if list_fingerprint is None:
                continue

            if HashLedger.is_processed(self.ledger, list_key, list_fingerprint):
                logger.debug(f"URL list already processed: {list_path.name}")
                continue

            entries = parse_url_file(list_path)
            logger.info(f"Found {len(entries)} URLs in {list_path.name}")

            # Same URL listed twice is one item
            unique = {}
            for entry in entries:
                unique.setdefault(entry.url, WorkItem.for_url(entry.url, entry.filename))
            items = await self._hasher.fingerprint_items(list(unique.values()))
            self._assign_cache_names(items)

            pending = [
                item for item in items
                if not HashLedger.is_processed(self.ledger, item.key, item.fingerprint)
            ]
            stats.urls_skipped += len(items) - len(pending)

            jobs = self._scheduler.build_jobs(pending)
            finished = await self._scheduler.run_batches(jobs)

            completed = sum(1 for job in finished if job.status is JobStatus.COMPLETED)
            stats.urls_processed += completed
            stats.urls_failed += len(finished) - completed

            # Only a fully handled list is recorded; otherwise the
            # unfinished URLs are retried next cycle
            if len(finished) == len(jobs) and completed == len(jobs):
                HashLedger.mark_processed(
                    self.ledger, list_key, list_fingerprint, self.config.url_cache_path
                )
                stats.lists_processed += 1

    @staticmethod
    def _assign_cache_names(items: List[WorkItem]) -> None:
        """Give every URL of one list its own cache file (and so its own output)."""
        taken = set()
        for item in items:
            name = url_to_filename(item.url, item.output_name)
            if name in taken:
                stem = name[:-len(CONTENT_EXTENSION)]
                name = f"{stem}_{item.fingerprint[:8]}{CONTENT_EXTENSION}"
            taken.add(name)
            item.output_name = name

    async def _process_files(self, files: List[Path], stats: CycleStats) -> None:
        items = [WorkItem.for_file(path, self.config.input_dir) for path in files]
        items = await self._hasher.fingerprint_items(items)

        if self.config.skip_existing:
            pending = []
            for item in items:
                if HashLedger.is_processed(self.ledger, item.key, item.fingerprint):
                    logger.debug(f"Skipping already processed: {item.relative_path}")
                    continue
                pending.append(item)
        else:
            pending = items

        stats.files_skipped += len(items) - len(pending)

        if not pending:
            logger.debug("No new files to process")
            return

        logger.info(f"Processing {len(pending)} new files...")
        jobs = self._scheduler.build_jobs(pending)
        finished = await self._scheduler.run_batches(jobs)

        completed = sum(1 for job in finished if job.status is JobStatus.COMPLETED)
        stats.files_processed += completed
        stats.files_failed += len(finished) - completed

    def save(self) -> bool:
        return self._ledger_store.save(self.ledger)

    async def run_forever(self) -> None:
        """
        Run cycles until shutdown is requested.

        The first cycle starts immediately; later ones after
        `watch_interval` seconds or a watcher wake-up.
        """
        self._install_signal_handlers()
        self._start_watcher()

        try:
            while not self.state.is_shutting_down:
                await self._run_cycle_safely()
                if self.state.is_shutting_down:
                    break
                await self._wait_for_next_cycle()
        finally:
            self.save()
            logger.info("Shutdown complete.")

    async def _run_cycle_safely(self) -> Optional[CycleStats]:
        try:
            return await self.run_cycle()
        except Exception:
            logger.exception("Cycle error")
            return None

    async def _wait_for_next_cycle(self) -> None:
        interval = float(self.config.watch_interval)
        waiters = [asyncio.create_task(self.state.wait())]
        if self._watcher:
            waiters.append(asyncio.create_task(self._watcher.wait_for_changes(interval)))

        done, pending = await asyncio.wait(
            waiters, timeout=interval, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()

        if self._watcher and waiters[-1] in done and waiters[-1].result():
            logger.debug("Input changed, starting cycle early")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.state.request_shutdown, sig.name)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported here")

    def _start_watcher(self) -> None:
        if not self.config.watch_events:
            return
        try:
            watcher = AsyncWatcher(self.config)
            watcher.start()
        except OSError as e:
            logger.warning(f"File watcher unavailable, relying on the timer: {e}")
            return
        self._watcher = watcher

    def close(self):
        """Clean up resources."""
        if self._watcher:
            self._watcher.stop()
            self._watcher = None
        self._hasher.close()
        self._gateway.close()


def _log_settings(config: BatchConfig) -> None:
    logger.info("Kreuzberg batch processor starting")
    logger.info(f"Watch interval: {config.watch_interval}s")
    logger.info(f"Concurrent jobs: {config.concurrent_jobs}")
    logger.info(f"Input directory: {config.input_dir}")
    logger.info(f"Output directory: {config.output_dir}")
    logger.info(f"Error directory: {config.error_dir}")
    logger.info(f"URL fetching: {config.fetch_urls}")
    logger.info(f"Playwright enabled: {config.playwright_enabled}")
    logger.info(f"Browserless enabled: {config.browserless_enabled}")


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Watch a directory and extract text from new documents and URLs")
    parser.add_argument("--input", help="Input directory (default: $INPUT_DIR)")
    parser.add_argument("--output", help="Output directory (default: $OUTPUT_DIR)")
    parser.add_argument("--error", help="Error directory (default: $ERROR_DIR)")
    parser.add_argument("--interval", type=int, help="Seconds between cycles (default: $WATCH_INTERVAL)")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    config = BatchConfig.from_env()
    if args.input:
        config.input_dir = Path(args.input)
    if args.output:
        config.output_dir = Path(args.output)
    if args.error:
        config.error_dir = Path(args.error)
    if args.interval is not None:
        config.watch_interval = args.interval
    if args.verbose:
        config.verbose = True
    config.__post_init__()

    level = logging.DEBUG if config.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    try:
        config.check()
    except ConfigError as e:
        logger.error("Configuration errors:")
        for error in e.errors:
            logger.error(f"  - {error}")
        return 1

    _log_settings(config)
    config.ensure_directories()

    async def _main():
        orchestrator = Orchestrator(config)
        try:
            if args.once:
                await orchestrator.run_cycle()
            else:
                await orchestrator.run_forever()
        finally:
            orchestrator.close()

    try:
        asyncio.run(_main())
    except KeyboardInterrupt:
        logger.info("Stopped.")

    return 0


if __name__ == "__main__":
    sys.exit(main())

"""
JobScheduler - Concurrency-bounded batches with per-job retries.

Jobs are split into sequential batches of at most `concurrent_jobs`.
Every job in a batch runs concurrently and the next batch starts only
after all of them reached a terminal status. Ledger updates for a batch
are applied here, sequentially, after the batch's gather returns, and
the ledger is saved before the next batch begins. A crash therefore
loses at most the batch that was in flight.

Retry protocol per job: attempts 1..max_retries against the extraction
gateway with a fixed delay between attempts. A job that fails its last
attempt is marked failed and its input is copied to the error tree; the
ledger is left untouched for that key so it is retried next cycle.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List, Optional

from .config import get_config, BatchConfig
from .gateway import ExtractionGateway
from .ledger import HashLedger
from .models import Job, JobStatus, Ledger, WorkItem
from .output import OutputLayout
from .resolver import ContentResolver
from .urllist import url_to_filename


logger = logging.getLogger(__name__)


class RunState:
    """
    Cooperative shutdown flag shared by the orchestrator and scheduler.

    Checked only at batch and item boundaries; an in-flight job always
    runs to completion (or to its own timeout).
    """

    def __init__(self):
        self._shutdown = asyncio.Event()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self, reason: str = "") -> None:
        if not self._shutdown.is_set():
            logger.info(f"Shutdown requested{f' ({reason})' if reason else ''}")
        self._shutdown.set()

    async def wait(self) -> None:
        await self._shutdown.wait()


class JobScheduler:
    """Drives work items through resolution, extraction and the ledger."""

    def __init__(
        self,
        ledger: Ledger,
        config: BatchConfig | None = None,
        ledger_store: Optional[HashLedger] = None,
        gateway: Optional[ExtractionGateway] = None,
        resolver: Optional[ContentResolver] = None,
        layout: Optional[OutputLayout] = None,
        state: Optional[RunState] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or get_config()
        self.ledger = ledger
        self.ledger_store = ledger_store or HashLedger(config=self.config)
        self.gateway = gateway or ExtractionGateway(self.config)
        self.resolver = resolver or ContentResolver(self.config)
        self.layout = layout or OutputLayout(self.config)
        self.state = state or RunState()
        self._sleep = sleep
        self._job_counter = 0

    def build_jobs(self, items: List[WorkItem]) -> List[Job]:
        """One pending job per item."""
        stamp = int(time.time() * 1000)
        jobs = []
        for item in items:
            jobs.append(Job(id=f"job_{stamp}_{self._job_counter}", item=item))
            self._job_counter += 1
        return jobs

    async def run_batches(
        self,
        jobs: List[Job],
        concurrency_limit: Optional[int] = None,
    ) -> List[Job]:
        """
        Run jobs in sequential, concurrency-bounded batches.

        Stops starting new batches once shutdown is requested.

        Returns:
            The jobs that were run (all in a terminal status).
        """
        limit = concurrency_limit or self.config.concurrent_jobs
        if limit < 1:
            raise ValueError("concurrency limit must be at least 1")

        finished: List[Job] = []
        total_batches = (len(jobs) + limit - 1) // limit

        for batch_number, start in enumerate(range(0, len(jobs), limit), start=1):
            if self.state.is_shutting_down:
                logger.info(
                    f"Shutdown requested, not starting batch {batch_number}/{total_batches}"
                )
                break

            batch = jobs[start:start + limit]
            logger.debug(f"Running batch {batch_number}/{total_batches} ({len(batch)} jobs)")

            results = await asyncio.gather(*(self.run_job(job) for job in batch))

            self._record_results(results)
            self.ledger_store.save(self.ledger)
            finished.extend(results)

        return finished

    def _record_results(self, jobs: List[Job]) -> None:
        """Apply ledger updates for a finished batch (single control path)."""
        for job in jobs:
            if job.status is not JobStatus.COMPLETED:
                continue
            if job.item.fingerprint is None:
                logger.error(f"Completed job {job.id} has no fingerprint, not recorded")
                continue
            self.ledger_store.mark_processed(
                self.ledger,
                job.item.key,
                job.item.fingerprint,
                job.output_path or "",
                job.retries,
            )

    async def run_job(self, job: Job) -> Job:
        """
        Drive one job to a terminal status. Never raises.
        """
        job.status = JobStatus.PROCESSING
        job.start_time = time.monotonic()

        try:
            if job.item.is_url and job.item.path is None:
                if not await self._resolve(job):
                    return job
            await self._extract_with_retries(job)
        except Exception as e:
            logger.exception(f"Unexpected error in job {job.id} ({job.item.relative_path})")
            job.status = JobStatus.FAILED
            job.error = str(e) or type(e).__name__
        finally:
            job.end_time = time.monotonic()

        return job

    async def _resolve(self, job: Job) -> bool:
        """
        Fetch a URL item's content into the URL cache.

        Resolution exhaustion fails the job without quarantine: there is
        no input file to copy.
        """
        item = job.item
        outcome = await self.resolver.resolve(item.url)

        if not outcome.success:
            job.status = JobStatus.FAILED
            job.error = outcome.error
            logger.error(f"Failed to fetch URL: {item.url}")
            return False

        cache_path = self.config.url_cache_path / url_to_filename(item.url, item.output_name)
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(outcome.content, encoding="utf-8")
        item.path = cache_path
        logger.debug(f"Fetched {item.url} via {outcome.layer.value} → {cache_path}")
        return True

    async def _extract_with_retries(self, job: Job) -> None:
        item = job.item
        output_path = self.layout.output_path_for_item(item)
        attempts = max(self.config.max_retries, 1)

        for attempt in range(1, attempts + 1):
            logger.debug(f"Processing attempt {attempt}/{attempts}: {item.relative_path}")

            result = await self.gateway.extract(item.path)
            if result.success:
                try:
                    self.layout.write_output(output_path, result.content)
                except OSError as e:
                    result.success = False
                    result.error = f"Cannot write output {output_path}: {e}"

            if result.success:
                job.status = JobStatus.COMPLETED
                job.output_path = output_path
                logger.info(f"Extracted: {item.relative_path} → {output_path}")
                return

            job.error = result.error or "Unknown error"
            job.retries = attempt

            if attempt < attempts:
                logger.debug(f"Retrying {item.relative_path} in {self.config.retry_delay:.1f}s...")
                await self._sleep(self.config.retry_delay)

        job.status = JobStatus.FAILED
        logger.error(f"Extraction failed for {item.relative_path} after {attempts} attempts: {job.error}")
        self.layout.quarantine(item, job.error)

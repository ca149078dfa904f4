"""
Scheduler Tests - Verify batching, retries, quarantine and ledger updates.

Tests:
- Retry bound and quarantine on terminal failure
- Concurrency bound per batch
- Ledger written only for completed jobs, saved after every batch
- Shutdown observed at batch boundaries
- URL items: resolution then extraction
"""

import pytest

from docbatch.hasher import fingerprint_text
from docbatch.ledger import HashLedger
from docbatch.models import FetchLayer, JobStatus, Ledger, WorkItem
from docbatch.resolver import ContentResolver
from docbatch.scheduler import JobScheduler, RunState


class CountingLedger(HashLedger):
    """HashLedger that records how many entries each save persisted."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.saved_sizes = []

    def save(self, ledger):
        self.saved_sizes.append(len(ledger.files))
        return super().save(ledger)


def _file_items(config, names):
    items = []
    for name in names:
        path = config.input_dir / name
        path.write_bytes(f"content of {name}".encode())
        item = WorkItem.for_file(path, config.input_dir)
        item.fingerprint = f"fp-{name}"
        items.append(item)
    return items


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_scheduler(test_config, sleeps):
    def _make(gateway, resolver=None, state=None):
        async def record_sleep(seconds):
            sleeps.append(seconds)

        return JobScheduler(
            Ledger(),
            config=test_config,
            ledger_store=CountingLedger(config=test_config),
            gateway=gateway,
            resolver=resolver or ContentResolver(test_config, layers=[]),
            state=state,
            sleep=record_sleep,
        )
    return _make


class TestBuildJobs:
    """Tests for JobScheduler.build_jobs()."""

    def test_one_pending_job_per_item(self, test_config, fake_gateway, make_scheduler):
        items = _file_items(test_config, ["a.pdf", "b.pdf"])
        jobs = make_scheduler(fake_gateway).build_jobs(items)

        assert [job.item for job in jobs] == items
        assert all(job.status is JobStatus.PENDING and job.retries == 0 for job in jobs)
        assert len({job.id for job in jobs}) == 2


class TestRetries:
    """Tests for the per-job retry protocol."""

    @pytest.mark.asyncio
    async def test_always_failing_job(self, test_config, make_gateway, make_scheduler, sleeps):
        """maxRetries=3 with a failing gateway: 3 attempts, failed, one quarantine copy + log."""
        gateway = make_gateway(always_fail=True)
        scheduler = make_scheduler(gateway)
        [item] = _file_items(test_config, ["broken.pdf"])
        [job] = scheduler.build_jobs([item])

        await scheduler.run_job(job)

        assert len(gateway.calls) == 3
        assert job.status is JobStatus.FAILED
        assert job.retries == 3
        assert job.error == "conversion failed: corrupt input"
        assert sleeps == [test_config.retry_delay] * 2

        quarantined = sorted(p.name for p in test_config.error_dir.rglob("*") if p.is_file())
        assert quarantined == ["broken.pdf", "broken.pdf.error.txt"]
        assert item.path.exists()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, test_config, make_gateway, make_scheduler):
        """A job that fails twice then succeeds completes with retries=2."""
        gateway = make_gateway(fail_first=2)
        scheduler = make_scheduler(gateway)
        [job] = scheduler.build_jobs(_file_items(test_config, ["flaky.pdf"]))

        await scheduler.run_job(job)

        assert job.status is JobStatus.COMPLETED
        assert job.retries == 2
        assert job.output_path.read_text() == "text of flaky.pdf"
        assert not any(test_config.error_dir.iterdir())

    @pytest.mark.asyncio
    async def test_fixed_delay_between_attempts(self, test_config, make_gateway, make_scheduler, sleeps):
        """The delay is constant, with no sleep after the last attempt."""
        test_config.retry_delay = 1.5
        test_config.max_retries = 4
        scheduler = make_scheduler(make_gateway(always_fail=True))
        [job] = scheduler.build_jobs(_file_items(test_config, ["x.pdf"]))

        await scheduler.run_job(job)

        assert sleeps == [1.5, 1.5, 1.5]

    @pytest.mark.asyncio
    async def test_zero_retries_still_attempts_once(self, test_config, make_gateway, make_scheduler):
        test_config.max_retries = 0
        gateway = make_gateway(always_fail=True)
        scheduler = make_scheduler(gateway)
        [job] = scheduler.build_jobs(_file_items(test_config, ["once.pdf"]))

        await scheduler.run_job(job)

        assert len(gateway.calls) == 1
        assert job.status is JobStatus.FAILED


class TestBatches:
    """Tests for JobScheduler.run_batches()."""

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, test_config, make_gateway, make_scheduler):
        """With a limit of 2, no more than 2 jobs are ever in flight."""
        gateway = make_gateway(delay=0.05)
        scheduler = make_scheduler(gateway)
        jobs = scheduler.build_jobs(_file_items(test_config, [f"d{i}.pdf" for i in range(5)]))

        finished = await scheduler.run_batches(jobs, concurrency_limit=2)

        assert len(finished) == 5
        assert gateway.max_in_flight == 2
        assert all(job.status is JobStatus.COMPLETED for job in finished)

    @pytest.mark.asyncio
    async def test_ledger_saved_after_each_batch(self, test_config, fake_gateway, make_scheduler):
        """Each batch's results are persisted before the next batch starts."""
        scheduler = make_scheduler(fake_gateway)
        jobs = scheduler.build_jobs(_file_items(test_config, [f"d{i}.pdf" for i in range(5)]))

        await scheduler.run_batches(jobs, concurrency_limit=2)

        assert scheduler.ledger_store.saved_sizes == [2, 4, 5]
        reloaded = scheduler.ledger_store.load()
        assert len(reloaded.files) == 5

    @pytest.mark.asyncio
    async def test_only_completed_jobs_recorded(self, test_config, make_gateway, make_scheduler):
        """Every ledger key belongs to a completed job, never a failed one."""
        gateway = make_gateway(fail_names={"bad.pdf"})
        scheduler = make_scheduler(gateway)
        jobs = scheduler.build_jobs(_file_items(test_config, ["good.pdf", "bad.pdf", "fine.md"]))

        finished = await scheduler.run_batches(jobs)

        completed = {job.item.key for job in finished if job.status is JobStatus.COMPLETED}
        failed = {job.item.key for job in finished if job.status is JobStatus.FAILED}
        assert set(scheduler.ledger.files) == completed
        assert failed and not (failed & set(scheduler.ledger.files))

        entry = scheduler.ledger.files[str(test_config.input_dir / "good.pdf")]
        assert entry.hash == "fp-good.pdf"
        assert entry.output_path == str(test_config.output_dir / "good.md")

    @pytest.mark.asyncio
    async def test_shutdown_stops_new_batches(self, test_config, fake_gateway, make_scheduler):
        """A batch in flight finishes, but no new batch starts after shutdown."""
        state = RunState()
        scheduler = make_scheduler(fake_gateway, state=state)
        jobs = scheduler.build_jobs(_file_items(test_config, [f"d{i}.pdf" for i in range(6)]))

        original = fake_gateway.extract

        async def extract_then_stop(path):
            state.request_shutdown("test")
            return await original(path)

        fake_gateway.extract = extract_then_stop
        finished = await scheduler.run_batches(jobs, concurrency_limit=2)

        assert len(finished) == 2
        assert all(job.status is JobStatus.COMPLETED for job in finished)
        assert all(job.status is JobStatus.PENDING for job in jobs[2:])
        assert scheduler.ledger_store.saved_sizes == [2]


class TestUrlJobs:
    """Tests for URL-derived jobs."""

    @pytest.mark.asyncio
    async def test_resolved_url_is_extracted(self, test_config, fake_gateway, make_layer, make_scheduler):
        resolver = ContentResolver(test_config, layers=[
            make_layer(FetchLayer.DIRECT, succeed=True, content="<main>hello</main>"),
        ])
        scheduler = make_scheduler(fake_gateway, resolver=resolver)
        item = WorkItem.for_url("https://a.example/post", "x")
        item.fingerprint = fingerprint_text(item.key)
        [job] = scheduler.build_jobs([item])

        await scheduler.run_batches([job])

        cached = test_config.url_cache_path / "x.html"
        assert cached.read_text() == "<main>hello</main>"
        assert fake_gateway.calls == [cached]
        assert job.status is JobStatus.COMPLETED
        assert job.output_path == test_config.output_dir / "x.md"
        assert HashLedger.is_processed(scheduler.ledger, "https://a.example/post", item.fingerprint)

    @pytest.mark.asyncio
    async def test_unresolvable_url_not_quarantined(self, test_config, fake_gateway, make_layer, make_scheduler):
        resolver = ContentResolver(test_config, layers=[
            make_layer(FetchLayer.DIRECT, succeed=False),
        ])
        scheduler = make_scheduler(fake_gateway, resolver=resolver)
        item = WorkItem.for_url("https://down.example")
        item.fingerprint = fingerprint_text(item.key)
        [job] = scheduler.build_jobs([item])

        await scheduler.run_batches([job])

        assert job.status is JobStatus.FAILED
        assert job.error == "All fetch methods failed"
        assert fake_gateway.calls == []
        assert not any(test_config.error_dir.iterdir())
        assert scheduler.ledger.files == {}

    @pytest.mark.asyncio
    async def test_custom_name_stays_in_cache(self, test_config, fake_gateway, make_layer, make_scheduler):
        """A name with parent references is written inside the URL cache."""
        resolver = ContentResolver(test_config, layers=[
            make_layer(FetchLayer.DIRECT, succeed=True, content="<main>hi</main>"),
        ])
        scheduler = make_scheduler(fake_gateway, resolver=resolver)
        item = WorkItem.for_url("https://a.example/x", "../../escaped")
        item.fingerprint = fingerprint_text(item.key)
        [job] = scheduler.build_jobs([item])

        await scheduler.run_batches([job])

        assert job.status is JobStatus.COMPLETED
        assert item.path == test_config.url_cache_path / "escaped.html"
        assert not (test_config.input_dir / "escaped.html").exists()
        assert not (test_config.input_dir.parent / "escaped.html").exists()

import asyncio
from pathlib import Path

from models.database import create_engine_for_url, create_session_factory, init_db
from models.report_job import JOB_COMPLETED, JOB_FAILED, JOB_PROCESSING, JOB_QUEUED
from services.job_store import MAX_ERROR_LENGTH, ReportJobStore


async def _store(tmp_path: Path) -> ReportJobStore:
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    await init_db(engine)
    return ReportJobStore(create_session_factory(engine))


async def _queued(store: ReportJobStore, owner_id: str = "user-1"):
    return await store.create(
        owner_id=owner_id,
        title="Weekly",
        platform="trofos",
        template="standard",
        configuration={"project_id": "12"},
    )


def test_create_persists_a_queued_job(tmp_path: Path) -> None:
    async def scenario():
        store = await _store(tmp_path)
        job = await _queued(store)
        return await store.get(job.id)

    job = asyncio.run(scenario())

    assert job.status == JOB_QUEUED
    assert job.progress == 0
    assert job.configuration == {"project_id": "12"}
    assert job.to_status_dict() == {"id": str(job.id), "status": "queued", "progress": 0}


def test_try_start_is_single_flight(tmp_path: Path) -> None:
    async def scenario():
        store = await _store(tmp_path)
        job = await _queued(store)
        results = await asyncio.gather(*(store.try_start(job.id) for _ in range(5)))
        return results, await store.get(job.id)

    results, job = asyncio.run(scenario())

    assert results.count(True) == 1
    assert job.status == JOB_PROCESSING
    assert job.started_at is not None


def test_progress_never_moves_backwards(tmp_path: Path) -> None:
    async def scenario():
        store = await _store(tmp_path)
        job = await _queued(store)
        before_start = await store.update_progress(job.id, 10)
        await store.try_start(job.id)
        forward = await store.update_progress(job.id, 40)
        backward = await store.update_progress(job.id, 30)
        return before_start, forward, backward, await store.get(job.id)

    before_start, forward, backward, job = asyncio.run(scenario())

    assert (before_start, forward, backward) == (False, True, False)
    assert job.progress == 40


def test_terminal_jobs_reject_further_writes(tmp_path: Path) -> None:
    async def scenario():
        store = await _store(tmp_path)
        job = await _queued(store)
        await store.try_start(job.id)
        completed = await store.complete(job.id, "/tmp/report.pdf")
        writes = (
            await store.update_progress(job.id, 100),
            await store.fail(job.id, "late failure"),
            await store.complete(job.id, "/tmp/other.pdf"),
            await store.try_start(job.id),
        )
        return completed, writes, await store.get(job.id)

    completed, writes, job = asyncio.run(scenario())

    assert completed is True
    assert writes == (False, False, False, False)
    assert job.status == JOB_COMPLETED
    assert job.progress == 100
    assert job.file_path == "/tmp/report.pdf"
    assert job.error is None


def test_fail_keeps_last_progress_and_truncates_error(tmp_path: Path) -> None:
    async def scenario():
        store = await _store(tmp_path)
        job = await _queued(store)
        await store.try_start(job.id)
        await store.update_progress(job.id, 30)
        await store.fail(job.id, "x" * (MAX_ERROR_LENGTH + 50))
        return await store.get(job.id)

    job = asyncio.run(scenario())

    assert job.status == JOB_FAILED
    assert job.progress == 30
    assert len(job.error) == MAX_ERROR_LENGTH
    assert job.completed_at is not None


def test_list_for_owner_is_scoped_and_newest_first(tmp_path: Path) -> None:
    async def scenario():
        store = await _store(tmp_path)
        first = await _queued(store)
        second = await _queued(store)
        await _queued(store, owner_id="someone-else")
        return first, second, await store.list_for_owner("user-1")

    first, second, jobs = asyncio.run(scenario())

    assert {job.id for job in jobs} == {first.id, second.id}
    assert all(job.owner_id == "user-1" for job in jobs)

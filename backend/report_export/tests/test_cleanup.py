import pytest

from report_export.models import JobStatus


@pytest.mark.anyio
async def test_expired_jobs_and_files_removed_once(services, submit, clock):
    job = submit("alice")
    await services.scheduler.tick()
    assert job.status is JobStatus.COMPLETED

    report = services.cleanup.tick()
    assert report.removed == 0
    assert services.jobs.get(job.id) is job

    clock.advance(services.settings.job_retention_seconds + 1)
    report = services.cleanup.tick()

    assert report.ok
    assert report.jobs_removed == 1
    assert report.cache_entries_removed == 1
    assert len(services.jobs) == 0
    assert len(services.cache) == 0

    again = services.cleanup.tick()
    assert again.ok
    assert again.removed == 0
    assert again.limiter_states_removed == 0


@pytest.mark.anyio
async def test_cache_entry_expires_before_the_job(services, submit, clock):
    job = submit("alice")
    await services.scheduler.tick()

    clock.advance(services.settings.cache_ttl_seconds + 1)
    report = services.cleanup.tick()

    assert report.cache_entries_removed == 1
    assert report.jobs_removed == 0
    assert services.jobs.get(job.id).status is JobStatus.COMPLETED


def test_live_jobs_are_kept(services, submit, clock):
    job = submit("alice")
    clock.advance(services.settings.job_retention_seconds * 2)

    services.cleanup.tick()

    assert services.jobs.get(job.id) is job
    assert services.rate_limiter.concurrent_jobs("alice") == 1


@pytest.mark.anyio
async def test_failure_in_one_step_is_recorded(services, submit, clock, monkeypatch):
    submit("alice")
    await services.scheduler.tick()
    clock.advance(services.settings.job_retention_seconds + 1)

    def broken_sweep():
        raise RuntimeError("cache sweep broke")

    monkeypatch.setattr(services.cache, "sweep_expired", broken_sweep)
    report = services.cleanup.tick()

    assert not report.ok
    assert [f.item for f in report.failures] == ["result_cache"]
    assert report.failures[0].error == "cache sweep broke"
    assert report.jobs_removed == 1
    assert len(services.cache) == 0

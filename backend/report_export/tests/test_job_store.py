import pytest

from report_export.core import UserAnalyticsOptions
from report_export.errors import InvalidTransition, JobBusy, JobNotFound
from report_export.models import ExportFormat, ExportKind, JobStatus


def test_create_starts_pending(services, submit, clock):
    job = submit("alice", ExportKind.RANKINGS, ExportFormat.EXCEL)

    assert job.status is JobStatus.PENDING
    assert job.progress == 0
    assert job.result_key is None
    assert job.created_at == clock()
    assert job.expires_at == clock() + services.settings.job_retention_seconds
    assert services.jobs.get(job.id) is job


def test_job_owned_by_someone_else_looks_missing(services, submit):
    job = submit("alice")
    assert services.jobs.get_owned(job.id, "alice") is job
    with pytest.raises(JobNotFound):
        services.jobs.get_owned(job.id, "mallory")
    with pytest.raises(JobNotFound):
        services.jobs.get_owned("nope", "alice")


def test_list_pending_is_oldest_first(services, clock):
    jobs = services.jobs
    late = jobs.create("a", ExportKind.USER_ANALYTICS, ExportFormat.PDF, UserAnalyticsOptions())
    clock.advance(-10)
    early = jobs.create("b", ExportKind.USER_ANALYTICS, ExportFormat.PDF, UserAnalyticsOptions())

    assert [j.id for j in jobs.list_pending()] == [early.id, late.id]


def test_list_for_owner_newest_first(services, submit, clock):
    first = submit("alice")
    services.rate_limiter.release("alice")
    clock.advance(5)
    second = submit("alice")
    submit("bob")

    assert [j.id for j in services.jobs.list_for_owner("alice")] == [second.id, first.id]


def test_state_machine(services, submit):
    jobs = services.jobs
    job = submit()

    with pytest.raises(InvalidTransition):
        jobs.mark_completed(job.id, "export:x", "f.pdf", 10)

    jobs.transition_to_in_progress(job.id)
    with pytest.raises(InvalidTransition):
        jobs.transition_to_in_progress(job.id)

    jobs.update_progress(job.id, 40)
    jobs.update_progress(job.id, 20)
    assert job.progress == 40

    jobs.mark_completed(job.id, "export:x", "f.pdf", 10)
    assert job.status is JobStatus.COMPLETED
    assert job.progress == 100
    assert job.result_key == "export:x"
    assert job.completed_at is not None

    with pytest.raises(InvalidTransition):
        jobs.mark_failed(job.id, "late failure")
    with pytest.raises(InvalidTransition):
        jobs.update_progress(job.id, 100)


def test_mark_failed_defaults_message(services, submit):
    job = submit()
    services.jobs.transition_to_in_progress(job.id)
    services.jobs.mark_failed(job.id, "")

    assert job.status is JobStatus.FAILED
    assert job.error_message == "Unknown error"
    assert job.result_key is None


def test_delete_pending_returns_the_slot(services, submit):
    job = submit("alice")
    assert services.rate_limiter.concurrent_jobs("alice") == 1

    services.jobs.delete(job.id, "alice")

    assert services.rate_limiter.concurrent_jobs("alice") == 0
    with pytest.raises(JobNotFound):
        services.jobs.get(job.id)


def test_delete_in_progress_is_refused(services, submit):
    job = submit("alice")
    services.jobs.transition_to_in_progress(job.id)

    with pytest.raises(JobBusy):
        services.jobs.delete(job.id, "alice")
    assert services.jobs.get(job.id) is job


def test_delete_by_non_owner(services, submit):
    job = submit("alice")
    with pytest.raises(JobNotFound):
        services.jobs.delete(job.id, "mallory")
    assert len(services.jobs) == 1


def test_delete_completed_drops_cached_file(services, submit):
    job = submit("alice")
    services.jobs.transition_to_in_progress(job.id)
    services.cache.store("export:" + job.id, b"file")
    services.jobs.mark_completed(job.id, "export:" + job.id, "f.pdf", 4)
    services.rate_limiter.release("alice")

    services.jobs.delete(job.id, "alice")

    assert ("export:" + job.id) not in services.cache
    assert services.rate_limiter.concurrent_jobs("alice") == 0


def test_list_expired_terminal(services, submit, clock):
    done = submit("alice")
    pending = submit("bob")
    services.jobs.transition_to_in_progress(done.id)
    services.jobs.mark_failed(done.id, "boom")

    clock.advance(100)
    assert services.jobs.list_expired_terminal(100) == []
    clock.advance(1)
    assert services.jobs.list_expired_terminal(100) == [done]
    assert pending not in services.jobs.list_expired_terminal(0)


def test_remove_refuses_live_jobs(services, submit):
    job = submit()
    with pytest.raises(InvalidTransition):
        services.jobs.remove(job.id)
    assert services.jobs.remove("missing") is None


def test_counts(services, submit, clock):
    submit("alice")
    services.rate_limiter.release("alice")
    clock.advance(50)
    submit("alice")

    assert services.jobs.counts()["PENDING"] == 2

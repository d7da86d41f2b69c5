"""Tests for the job queue contract, run against both queue backends."""

import pydantic
import pytest

from unit09.errors import NotFoundError, ValidationError
from unit09.worker.jobs import Job, JobStatus, JobType, ObserveRepoPayload, parse_payload


def observe(queue, repo_key="repo-1", **kwargs):
    return queue.enqueue(JobType.OBSERVE_REPO, {"repo_key": repo_key}, **kwargs)


def dispatch(queue):
    job = queue.next()
    assert job is not None
    return queue.mark_started(job)


class TestEnqueue:
    def test_new_job_is_pending(self, job_queue):
        job = observe(job_queue)

        stored = job_queue.get(job.id)
        assert stored.status is JobStatus.PENDING
        assert stored.attempts == 0
        assert stored.started_at is None
        assert stored.id.startswith("job-")
        assert stored.payload.source.repo_key == "repo-1"
        assert stored.payload.source.revision == "HEAD"

    def test_identical_payloads_are_distinct_jobs(self, job_queue):
        first = observe(job_queue)
        second = observe(job_queue)

        assert first.id != second.id
        assert [job.id for job in job_queue.list()] == [first.id, second.id]

    def test_max_attempts_override(self, job_queue):
        job = observe(job_queue, max_attempts=1)
        assert job_queue.get(job.id).max_attempts == 1

    def test_string_job_type(self, job_queue):
        job = job_queue.enqueue("forkEvolution", {"repo_key": "r", "fork_id": "f"})
        assert job.type is JobType.FORK_EVOLUTION
        assert job.subject_key == "f"

    def test_payload_missing_field_rejected(self, job_queue):
        with pytest.raises(pydantic.ValidationError):
            job_queue.enqueue(JobType.FORK_EVOLUTION, {"repo_key": "r"})
        assert job_queue.list() == []

    def test_mismatched_source_rejected(self, job_queue):
        with pytest.raises(pydantic.ValidationError):
            job_queue.enqueue(
                JobType.ANALYZE_REPO, {"repo_key": "a", "source": {"repo_key": "b"}}
            )

    def test_unknown_job_type_rejected(self, job_queue):
        with pytest.raises(ValueError):
            job_queue.enqueue("teleport", {"repo_key": "r"})


class TestNext:
    def test_empty_queue(self, job_queue):
        assert job_queue.next() is None

    def test_next_does_not_start(self, job_queue):
        job = observe(job_queue)

        offered = job_queue.next()

        assert offered.id == job.id
        assert job_queue.get(job.id).status is JobStatus.PENDING
        assert job_queue.next().id == job.id

    def test_oldest_first_and_running_skipped(self, job_queue):
        first = observe(job_queue, "a")
        second = observe(job_queue, "b")

        dispatch(job_queue)

        assert job_queue.next().id == second.id
        assert job_queue.get(first.id).status is JobStatus.RUNNING

    def test_retryable_job_reoffered_in_enqueue_order(self, job_queue):
        first = observe(job_queue, "a")
        second = observe(job_queue, "b")

        started = dispatch(job_queue)
        job_queue.mark_failed(started, "boom")

        assert job_queue.get(first.id).status is JobStatus.RETRYABLE
        assert job_queue.next().id == first.id
        assert second.id != first.id


class TestTransitions:
    def test_mark_started(self, job_queue):
        observe(job_queue)
        job = dispatch(job_queue)

        assert job.status is JobStatus.RUNNING
        assert job.started_at is not None
        assert job_queue.get(job.id).status is JobStatus.RUNNING

    def test_cannot_start_running_job(self, job_queue):
        observe(job_queue)
        job = dispatch(job_queue)
        with pytest.raises(ValidationError):
            job_queue.mark_started(job)

    def test_mark_completed(self, job_queue):
        observe(job_queue)
        job = dispatch(job_queue)

        job_queue.mark_completed(job, {"observation": {"files": 3}})

        stored = job_queue.get(job.id)
        assert stored.status is JobStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.result == {"observation": {"files": 3}}
        assert job.status is JobStatus.COMPLETED
        assert job_queue.next() is None

    def test_repeat_completion_keeps_first_result(self, job_queue):
        observe(job_queue)
        job = dispatch(job_queue)
        job_queue.mark_completed(job, {"n": 1})

        job_queue.mark_completed(job, {"n": 2})

        assert job_queue.get(job.id).result == {"n": 1}

    def test_failure_with_attempts_left_is_retryable(self, job_queue):
        observe(job_queue)
        job = dispatch(job_queue)

        job_queue.mark_failed(job, "stage observe-code failed: boom")

        stored = job_queue.get(job.id)
        assert stored.status is JobStatus.RETRYABLE
        assert stored.attempts == 1
        assert stored.error == "stage observe-code failed: boom"
        assert stored.failed_at is None
        assert stored.completed_at is None

    def test_exhausted_attempts_fail(self, job_queue):
        observe(job_queue, max_attempts=2)
        for _ in range(2):
            job = dispatch(job_queue)
            job_queue.mark_failed(job, "boom")

        stored = job_queue.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.attempts == 2
        assert stored.failed_at is not None
        assert job_queue.next() is None

    def test_terminal_failure_skips_retries(self, job_queue):
        observe(job_queue)
        job = dispatch(job_queue)

        job_queue.mark_failed(job, "no handler", terminal=True)

        stored = job_queue.get(job.id)
        assert stored.status is JobStatus.FAILED
        assert stored.attempts == 1

    def test_failed_job_cannot_complete(self, job_queue):
        observe(job_queue, max_attempts=1)
        job = dispatch(job_queue)
        job_queue.mark_failed(job, "boom")

        with pytest.raises(ValidationError):
            job_queue.mark_completed(job, {})

    def test_completed_job_cannot_fail(self, job_queue):
        observe(job_queue)
        job = dispatch(job_queue)
        job_queue.mark_completed(job, {})

        with pytest.raises(ValidationError):
            job_queue.mark_failed(job, "late")

    def test_unknown_job(self, job_queue):
        stranger = Job(type=JobType.OBSERVE_REPO, payload=ObserveRepoPayload(repo_key="r"))

        assert job_queue.get(stranger.id) is None
        with pytest.raises(NotFoundError):
            job_queue.mark_started(stranger)


class TestSnapshots:
    def test_list_is_a_snapshot(self, job_queue):
        job = observe(job_queue)

        (listed,) = job_queue.list()
        listed.status = JobStatus.COMPLETED
        listed.payload.source.revision = "main"

        stored = job_queue.get(job.id)
        assert stored.status is JobStatus.PENDING
        assert stored.payload.source.revision == "HEAD"

    def test_activity_counts(self, job_queue):
        assert job_queue.activity() == {"started": 0, "completed": 0, "failed": 0, "active": 0}

        observe(job_queue)
        done = dispatch(job_queue)
        job_queue.mark_completed(done, {"ok": True})
        retried = observe(job_queue, "repo-2", max_attempts=3)
        job_queue.mark_failed(dispatch(job_queue), "first")
        job_queue.mark_failed(dispatch(job_queue), "second")
        dispatch(job_queue)
        orphan = observe(job_queue, "repo-3")
        job_queue.mark_failed(orphan, "No handler", terminal=True)

        assert job_queue.get(retried.id).status is JobStatus.RUNNING
        assert job_queue.activity() == {"started": 4, "completed": 1, "failed": 2, "active": 1}


class TestJobModel:
    def test_payload_must_match_type(self):
        with pytest.raises(pydantic.ValidationError):
            Job(type=JobType.DECOMPOSE, payload=ObserveRepoPayload(repo_key="r"))

    def test_parse_payload_sets_discriminator(self):
        payload = parse_payload(JobType.SYNC_ON_CHAIN, {"repo_key": "r"})
        assert payload.type == "syncOnChain"

    def test_to_dict_is_json_ready(self):
        job = Job(type=JobType.OBSERVE_REPO, payload=ObserveRepoPayload(repo_key="r"))
        data = job.to_dict()
        assert data["type"] == "observeRepo"
        assert data["status"] == "pending"
        assert isinstance(data["created_at"], str)

"""Tests for the pipeline service and the periodic observation schedule."""

import asyncio

import pytest

from unit09.entities import RepoCreate, RepoUpdate
from unit09.errors import ValidationError
from unit09.worker.jobs import JobType
from unit09.worker.pipeline import PipelineService, observe_periodically
from unit09.worker.queue import InMemoryJobQueue


class TestObserveSchedule:
    @pytest.mark.asyncio
    async def test_enqueues_a_round_per_interval(self, ledger):
        await ledger.repos.register(RepoCreate(name="watched"))
        pipeline = PipelineService(InMemoryJobQueue(), ledger=ledger)
        stop = asyncio.Event()

        schedule = asyncio.create_task(observe_periodically(pipeline, 0.01, stop))
        for _ in range(100):
            if len(pipeline.queue) >= 2:
                break
            await asyncio.sleep(0.005)
        stop.set()
        await asyncio.wait_for(schedule, timeout=1)

        jobs = pipeline.list_jobs()
        assert len(jobs) >= 2
        assert {job.type for job in jobs} == {JobType.OBSERVE_REPO}

    @pytest.mark.asyncio
    async def test_stop_before_first_round(self, ledger):
        pipeline = PipelineService(InMemoryJobQueue(), ledger=ledger)
        stop = asyncio.Event()
        stop.set()

        await asyncio.wait_for(observe_periodically(pipeline, 60, stop), timeout=1)

        assert len(pipeline.queue) == 0

    @pytest.mark.asyncio
    async def test_failed_round_keeps_schedule_alive(self, ledger):
        rounds = []

        class FlakyPipeline(PipelineService):
            async def enqueue_observations(self):
                rounds.append(len(rounds))
                if len(rounds) == 1:
                    raise ValidationError("ledger busy")
                return await super().enqueue_observations()

        await ledger.repos.register(RepoCreate(name="watched"))
        pipeline = FlakyPipeline(InMemoryJobQueue(), ledger=ledger)
        stop = asyncio.Event()

        schedule = asyncio.create_task(observe_periodically(pipeline, 0.01, stop))
        for _ in range(100):
            if len(pipeline.queue) >= 1:
                break
            await asyncio.sleep(0.005)
        stop.set()
        await asyncio.wait_for(schedule, timeout=1)

        assert len(rounds) >= 2
        assert len(pipeline.queue) >= 1

    @pytest.mark.asyncio
    async def test_no_ledger_enqueues_nothing(self):
        pipeline = PipelineService(InMemoryJobQueue())
        assert await pipeline.enqueue_observations() == []


class TestEnqueueObservations:
    @pytest.mark.asyncio
    async def test_inactive_repos_are_skipped(self, ledger):
        active = await ledger.repos.register(RepoCreate(name="active"))
        retired = await ledger.repos.register(RepoCreate(name="retired"))
        await ledger.repos.update(retired.repo_key, RepoUpdate(is_active=False))
        pipeline = PipelineService(InMemoryJobQueue(), ledger=ledger)

        jobs = await pipeline.enqueue_observations()

        assert [job.payload.repo_key for job in jobs] == [active.repo_key]

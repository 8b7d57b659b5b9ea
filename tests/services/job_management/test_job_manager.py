"""Tests for the JobManager facade."""

import threading
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from blog_automation.services.infrastructure.job_management.errors import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from blog_automation.services.infrastructure.job_management.job_manager import (
    CLEANUP_JOB_ID,
    JobManager,
)
from blog_automation.services.infrastructure.job_management.models import (
    GeneratePostPayload,
    JobPriority,
    JobStatus,
    utcnow,
)


class TestEnqueue:
    def test_defaults(self, manager, register):
        register("generate-post", lambda payload, ctx: None)

        job = manager.get_job(manager.enqueue("generate-post", {"topic": "x"}))

        assert job.status == JobStatus.WAITING
        assert job.priority == JobPriority.NORMAL
        assert job.max_retries == 3
        assert job.attempts == 0
        assert job.progress == 0
        assert job.scheduled_for == job.created_at

    def test_delay_makes_job_delayed(self, manager):
        job = manager.get_job(manager.enqueue("sitemap-generation", delay=60000))

        assert job.status == JobStatus.DELAYED
        assert job.scheduled_for - job.created_at == timedelta(milliseconds=60000)

    def test_registered_metadata_supplies_defaults(self, manager, register):
        register(
            "publish-post",
            lambda payload, ctx: None,
            priority=JobPriority.HIGH,
            max_retries=5,
            timeout_ms=1000,
            tags=["publish"],
        )

        job = manager.get_job(manager.enqueue("publish-post", tags=["post-1"]))

        assert job.priority == JobPriority.HIGH
        assert job.max_retries == 5
        assert job.timeout == 1000
        assert job.tags == {"publish", "post-1"}

    def test_idempotency_key_returns_existing_job(self, manager, store):
        first = manager.enqueue("seo-analysis", idempotency_key="seo-42")
        second = manager.enqueue("seo-analysis", {"ignored": True}, idempotency_key="seo-42")

        assert first == second
        assert len(store) == 1

    def test_idempotency_key_is_unique_across_threads(self, manager, store):
        barrier = threading.Barrier(8)
        ids = []

        def enqueue():
            barrier.wait()
            ids.append(manager.enqueue("seo-analysis", idempotency_key="seo-7"))

        threads = [threading.Thread(target=enqueue) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(set(ids)) == 1
        assert len(store) == 1

    def test_rejects_invalid_fields(self, manager, store):
        with pytest.raises(ValidationError) as exc_info:
            manager.enqueue("generate-post", priority="urgent", delay=-1, max_retries=-2)

        assert exc_info.value.fields == ["priority", "delay", "maxRetries"]
        assert len(store) == 0

    def test_rejects_missing_type(self, manager):
        with pytest.raises(ValidationError) as exc_info:
            manager.enqueue("")
        assert exc_info.value.fields == ["type"]

    def test_payload_validated_against_model(self, manager, register, store):
        register(
            "generate-post",
            lambda payload, ctx: None,
            payload_model=GeneratePostPayload,
        )

        with pytest.raises(ValidationError) as exc_info:
            manager.enqueue("generate-post", {"target_word_count": 5})

        assert "payload.topic" in exc_info.value.fields
        assert "payload.target_word_count" in exc_info.value.fields
        assert len(store) == 0

    def test_valid_payload_is_parsed(self, manager, register):
        register(
            "generate-post",
            lambda payload, ctx: None,
            payload_model=GeneratePostPayload,
        )

        job = manager.get_job(manager.enqueue("generate-post", {"topic": "Async Python"}))

        assert isinstance(job.payload, GeneratePostPayload)
        assert job.payload.target_word_count == 1200


class TestCancelPauseResume:
    def test_cancel_waiting_job(self, manager):
        job_id = manager.enqueue("generate-post")

        job = manager.cancel(job_id)

        assert job.status == JobStatus.CANCELLED

    def test_cancel_active_job_requests_cancellation(self, manager, store, job_factory):
        job = store.put(job_factory(status=JobStatus.ACTIVE))

        cancelled = manager.cancel(job.id)

        assert cancelled.status == JobStatus.ACTIVE
        assert store.is_cancel_requested(job.id)

    def test_cancel_terminal_job_is_invalid(self, manager, store, job_factory):
        job = store.put(job_factory(status=JobStatus.COMPLETED))

        with pytest.raises(InvalidStateError) as exc_info:
            manager.cancel(job.id)

        assert exc_info.value.message == (
            f"Job {job.id} cannot be cancelled. Current status: completed"
        )

    def test_cancel_missing_job(self, manager):
        with pytest.raises(NotFoundError):
            manager.cancel("missing")

    def test_pause_and_resume(self, manager):
        job_id = manager.enqueue("generate-post")

        assert manager.pause_job(job_id).status == JobStatus.PAUSED
        assert manager.resume_job(job_id).status == JobStatus.WAITING

    def test_resume_restores_delayed_job_that_is_not_due(self, manager):
        job_id = manager.enqueue("generate-post", delay=60000)
        assert manager.get_job(job_id).status == JobStatus.DELAYED

        assert manager.pause_job(job_id).status == JobStatus.PAUSED
        resumed = manager.resume_job(job_id)

        assert resumed.status == JobStatus.DELAYED
        assert resumed.scheduled_for > utcnow()

    def test_resume_due_delayed_job_is_waiting(self, manager, store, job_factory):
        job = store.put(
            job_factory(
                status=JobStatus.PAUSED, scheduled_for=utcnow() - timedelta(seconds=1)
            )
        )

        assert manager.resume_job(job.id).status == JobStatus.WAITING

    def test_pause_active_job_is_invalid(self, manager, store, job_factory):
        job = store.put(job_factory(status=JobStatus.ACTIVE))

        with pytest.raises(InvalidStateError):
            manager.pause_job(job.id)

    def test_resume_requires_paused(self, manager):
        job_id = manager.enqueue("generate-post")

        with pytest.raises(InvalidStateError):
            manager.resume_job(job_id)


class TestQueries:
    def test_list_jobs_filters(self, manager, store, job_factory):
        store.put(job_factory(job_type="seo-analysis", age=timedelta(minutes=2)))
        store.put(job_factory(job_type="seo-analysis", status=JobStatus.FAILED))
        store.put(job_factory(job_type="send-digest"))

        assert len(manager.list_jobs(job_type="seo-analysis")) == 2
        assert len(manager.list_jobs(status=JobStatus.FAILED)) == 1
        assert len(manager.list_jobs()) == 3

    def test_recent_jobs(self, manager, store, job_factory):
        for minutes in range(5):
            store.put(job_factory(age=timedelta(minutes=minutes)))

        recent = manager.recent_jobs(limit=3)

        assert len(recent) == 3
        assert recent[0].created_at > recent[1].created_at > recent[2].created_at


class TestHousekeeping:
    def test_cleanup_removes_only_expired_terminal_jobs(self, manager, store, job_factory):
        now = utcnow()
        expired = job_factory(status=JobStatus.COMPLETED, age=timedelta(hours=3))
        expired.completed_at = now - timedelta(hours=2)
        store.put(expired)
        recent = job_factory(status=JobStatus.FAILED, age=timedelta(hours=3))
        recent.failed_at = now - timedelta(minutes=5)
        store.put(recent)
        old_pending = store.put(job_factory(age=timedelta(hours=5)))

        removed = manager.cleanup_expired(now)

        assert removed == 1
        assert store.get(expired.id) is None
        assert store.get(recent.id) is not None
        assert store.get(old_pending.id) is not None

    def test_schedule_cleanup(self, manager):
        scheduler = MagicMock(spec=AsyncIOScheduler)

        assert manager.schedule_cleanup(scheduler) is True

        scheduler.add_job.assert_called_once()
        _, kwargs = scheduler.add_job.call_args
        assert kwargs["id"] == CLEANUP_JOB_ID
        assert kwargs["seconds"] == 300

    def test_schedule_cleanup_disabled(self, store, registry, queue_config):
        queue_config.cleanup_enabled = False
        manager = JobManager(store=store, registry=registry, queue_config=queue_config)
        scheduler = MagicMock(spec=AsyncIOScheduler)

        assert manager.schedule_cleanup(scheduler) is False
        scheduler.add_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, manager):
        scheduler = MagicMock(spec=AsyncIOScheduler)
        scheduler.running = False

        await manager.start(scheduler)
        assert manager.is_running
        scheduler.start.assert_called_once()

        scheduler.running = True
        await manager.stop()
        assert not manager.is_running
        scheduler.shutdown.assert_called_once_with(wait=False)

    def test_get_stats(self, manager):
        manager.enqueue("generate-post")

        stats = manager.get_stats()

        assert stats["jobs"]["waiting"] == 1
        assert "executor" in stats


def test_injected_empty_store_is_used(store, registry, queue_config):
    assert len(store) == 0

    manager = JobManager(store=store, registry=registry, queue_config=queue_config)

    assert manager.store is store

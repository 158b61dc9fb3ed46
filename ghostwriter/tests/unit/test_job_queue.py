"""
Unit tests for the Celery job queue wrapper
Delayed enqueue and supersede-by-key semantics
"""
import pytest
from unittest.mock import Mock

from ghostwriter.services.job_queue import JobQueue, JobType, sync_dedupe_key


class TestJobQueue:
    """Test cases for JobQueue"""

    @pytest.fixture
    def celery_app(self):
        return Mock()

    @pytest.fixture
    def queue(self, celery_app, fake_redis_decoded):
        return JobQueue(celery_app=celery_app, redis_client=fake_redis_decoded)

    def test_enqueue_without_delay_or_key(self, queue, celery_app):
        task_id = queue.enqueue(JobType.GENERATE_SUGGESTIONS, {"connected_account_id": 7})

        celery_app.send_task.assert_called_once_with(
            JobType.GENERATE_SUGGESTIONS,
            kwargs={"connected_account_id": 7},
            countdown=None,
            task_id=task_id,
        )

    def test_enqueue_with_delay_sets_countdown(self, queue, celery_app):
        queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, delay=120)

        assert celery_app.send_task.call_args.kwargs["countdown"] == 120

    def test_dedupe_key_is_passed_to_task(self, queue, celery_app):
        queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, dedupe_key=sync_dedupe_key(7))

        kwargs = celery_app.send_task.call_args.kwargs["kwargs"]
        assert kwargs == {"connected_account_id": 7, "dedupe_key": "sync-network-7"}

    def test_same_key_supersedes_previous_job(self, queue, celery_app):
        first = queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, delay=60, dedupe_key="sync-network-7")
        second = queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, delay=90, dedupe_key="sync-network-7")

        assert first != second
        celery_app.control.revoke.assert_called_once_with(first)
        assert not queue.claim("sync-network-7", first)
        assert queue.claim("sync-network-7", second)

    def test_different_keys_do_not_interfere(self, queue, celery_app):
        first = queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, dedupe_key="sync-network-7")
        second = queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 8}, dedupe_key="sync-network-8")

        celery_app.control.revoke.assert_not_called()
        assert queue.claim("sync-network-7", first)
        assert queue.claim("sync-network-8", second)

    def test_revoke_failure_is_not_fatal(self, queue, celery_app):
        celery_app.control.revoke.side_effect = RuntimeError("broker unavailable")

        first = queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, dedupe_key="sync-network-7")
        second = queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, dedupe_key="sync-network-7")

        assert celery_app.send_task.call_count == 2
        assert not queue.claim("sync-network-7", first)
        assert queue.claim("sync-network-7", second)

    def test_failed_send_keeps_previous_job_claimable(self, queue, celery_app, fake_redis_decoded):
        first = queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, delay=60, dedupe_key="sync-network-7")
        celery_app.send_task.side_effect = ConnectionError("broker down")

        with pytest.raises(ConnectionError):
            queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, delay=90, dedupe_key="sync-network-7")

        celery_app.control.revoke.assert_not_called()
        assert queue.claim("sync-network-7", first)
        assert fake_redis_decoded.ttl("job_dedupe:sync-network-7") > 0

    def test_failed_first_send_leaves_no_mapping(self, queue, celery_app, fake_redis_decoded):
        celery_app.send_task.side_effect = ConnectionError("broker down")

        with pytest.raises(ConnectionError):
            queue.enqueue(JobType.SYNC_NETWORK, {"connected_account_id": 7}, dedupe_key="sync-network-7")

        assert fake_redis_decoded.get("job_dedupe:sync-network-7") is None

    def test_claim_without_key_or_mapping(self, queue):
        assert queue.claim(None, "task-1")
        assert queue.claim("never-enqueued", "task-1")

from datetime import timedelta

import pytest
from sqlalchemy import update

from productify.db.models.queue_entry import QueueEntry
from productify.schemas.queue import QueueOptions
from productify.services.exceptions import UnknownQueueError
from productify.services.queue_services import Queue, backoff_delay_ms, utcnow


@pytest.fixture
def images_queue(queues):
    return queues.get("images-queue")


def _entry(session_factory, entry_id):
    with session_factory() as db:
        return db.get(QueueEntry, entry_id)


def test_enqueue_reserve_ack(images_queue, session_factory):
    handle = images_queue.enqueue({"job_id": "abc", "position": 0})

    delivery = images_queue.reserve()
    assert delivery.id == handle.id
    assert delivery.payload == {"job_id": "abc", "position": 0}
    assert delivery.attempt == 1
    assert images_queue.reserve() is None

    assert delivery.ack()
    entry = _entry(session_factory, handle.id)
    assert entry.status == "completed"
    assert entry.finished_at is not None
    stats = images_queue.stats()
    assert (stats.waiting, stats.active, stats.completed) == (0, 0, 1)


def test_entries_are_delivered_in_order(images_queue):
    first = images_queue.enqueue({"n": 1})
    second = images_queue.enqueue({"n": 2})

    assert images_queue.reserve().id == first.id
    assert images_queue.reserve().id == second.id


def test_delayed_entry_is_not_delivered_early(images_queue):
    images_queue.enqueue({"n": 1}, QueueOptions(delay_ms=60_000))

    assert images_queue.reserve() is None
    assert images_queue.stats().delayed == 1


def test_nack_schedules_retry_after_backoff(images_queue, session_factory):
    handle = images_queue.enqueue({"n": 1}, QueueOptions(backoff_delay_ms=60_000))
    delivery = images_queue.reserve()

    assert delivery.nack("provider timeout") is False

    entry = _entry(session_factory, handle.id)
    assert entry.status == "waiting"
    assert entry.last_error == "provider timeout"
    stats = images_queue.stats()
    assert (stats.waiting, stats.delayed, stats.active) == (0, 1, 0)
    assert images_queue.reserve() is None


def test_entry_is_dead_after_its_attempts_are_spent(images_queue, session_factory):
    handle = images_queue.enqueue({"n": 1}, QueueOptions(attempts=2))

    first = images_queue.reserve()
    assert first.nack("boom") is False
    second = images_queue.reserve()
    assert second.attempt == 2
    assert second.is_final_attempt
    assert second.nack("boom again") is True

    assert images_queue.reserve() is None
    entry = _entry(session_factory, handle.id)
    assert entry.status == "failed"
    assert entry.last_error == "boom again"
    assert images_queue.stats().failed == 1


def test_non_retryable_nack_dead_letters_immediately(images_queue):
    images_queue.enqueue({"n": 1})

    assert images_queue.reserve().nack("bad payload", retryable=False) is True
    assert images_queue.stats().failed == 1


def test_expired_lease_is_redelivered_and_stale_ack_is_fenced(session_factory):
    defaults = QueueOptions(attempts=3, backoff_delay_ms=0, remove_on_complete_seconds=60, remove_on_fail_seconds=60)
    queue = Queue("images-queue", session_factory, defaults, lease_seconds=-1)
    handle = queue.enqueue({"n": 1})

    stale = queue.reserve()
    fresh = queue.reserve()
    assert fresh.id == stale.id == handle.id
    assert fresh.attempt == 2

    assert stale.ack() is False
    assert _entry(session_factory, handle.id).status == "active"


def test_reap_dead_letters_lease_expired_on_final_attempt(session_factory):
    defaults = QueueOptions(attempts=1, backoff_delay_ms=0, remove_on_complete_seconds=60, remove_on_fail_seconds=60)
    queue = Queue("video-queue", session_factory, defaults, lease_seconds=-1)
    handle = queue.enqueue({"job_id": "abc", "position": 3})
    queue.reserve()

    assert queue.reserve() is None
    reaped = queue.reap_expired()

    assert [d.id for d in reaped] == [handle.id]
    assert reaped[0].payload == {"job_id": "abc", "position": 3}
    entry = _entry(session_factory, handle.id)
    assert entry.status == "failed"
    assert entry.last_error == "lease expired"
    assert queue.reap_expired() == []


def test_paused_queue_accepts_but_does_not_deliver(images_queue):
    images_queue.pause()
    images_queue.enqueue({"n": 1})

    assert images_queue.is_paused()
    assert images_queue.reserve() is None
    assert images_queue.stats().paused

    images_queue.resume()
    assert images_queue.reserve() is not None


def test_enqueue_joins_callers_transaction(images_queue, session_factory):
    with session_factory() as db:
        images_queue.enqueue({"n": 1}, db=db)
        db.rollback()

    assert images_queue.stats().waiting == 0
    assert images_queue.reserve() is None

    with session_factory() as db:
        images_queue.enqueue({"n": 2}, db=db)
        db.commit()
    assert images_queue.reserve().payload == {"n": 2}


def _age_finished(session_factory, entry_id, seconds):
    with session_factory() as db:
        db.execute(
            update(QueueEntry)
            .where(QueueEntry.id == entry_id)
            .values(finished_at=utcnow() - timedelta(seconds=seconds))
        )
        db.commit()


def test_purge_applies_each_entrys_retention(images_queue, session_factory):
    short = images_queue.enqueue({"n": 1}, QueueOptions(remove_on_complete_seconds=60))
    long = images_queue.enqueue({"n": 2}, QueueOptions(remove_on_complete_seconds=3600))
    images_queue.reserve().ack()
    images_queue.reserve().ack()
    _age_finished(session_factory, short.id, 120)
    _age_finished(session_factory, long.id, 120)

    assert images_queue.purge() == 1
    assert _entry(session_factory, short.id) is None
    assert _entry(session_factory, long.id) is not None


def test_clean_drops_finished_entries_older_than_grace(images_queue, session_factory):
    handle = images_queue.enqueue({"n": 1})
    images_queue.reserve().nack("boom", retryable=False)
    _age_finished(session_factory, handle.id, 600)

    assert images_queue.clean(300, status="completed") == 0
    assert images_queue.clean(300, status="failed") == 1

    with pytest.raises(ValueError):
        images_queue.clean(300, status="waiting")


def test_backoff_doubles_per_attempt():
    assert [backoff_delay_ms(2000, n) for n in (1, 2, 3, 4)] == [2000, 4000, 8000, 16000]


def test_registry_knows_every_queue(queues):
    assert set(queues.names()) == {
        "orchestrator-queue",
        "images-queue",
        "text-queue",
        "voiceover-queue",
        "captions-queue",
        "video-queue",
    }
    assert "text-queue" in queues
    with pytest.raises(UnknownQueueError):
        queues.get("audio-queue")

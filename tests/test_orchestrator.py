from datetime import timedelta

import pytest

from productify.db.models.queue_entry import QueueEntry
from productify.repositories.job import JobRepository
from productify.repositories.transaction import TransactionRepository
from productify.repositories.user import UserRepository
from productify.schemas.job import RegenerateImageInput
from productify.schemas.transaction import TransactionType
from productify.services.exceptions import InvalidJobStateError, QueueDeliveryExhaustedError, ValidationError
from productify.services.job_services import JobService
from productify.services.ledger_services import LedgerService
from productify.services.queue_services import utcnow
from productify.workers.runtime import WorkerRuntime

from conftest import RecordingNotifier

FULL_VIDEO = [
    ("enhanced-images", 10, {"count": 3}),
    ("viral-copy", 5, {}),
    ("voice-over", 12, {"voice": "warm"}),
    ("captions", 3, {}),
    ("promotional-video", 20, {"duration": 15}),
]
VOICE_OVER_JOB = [
    ("enhanced-images", 10, {"count": 2}),
    ("viral-copy", 5, {}),
    ("voice-over", 12, {}),
]


def load_job(session_factory, job_id):
    with session_factory() as db:
        return JobRepository(db).get(job_id)


def balance(session_factory, user_id=1):
    with session_factory() as db:
        return UserRepository(db).get_balance(user_id)


def job_entries(session_factory, job_id):
    with session_factory() as db:
        return TransactionRepository(db).list_for_job(job_id)


def queue_entries(session_factory, queue_name):
    with session_factory() as db:
        return db.query(QueueEntry).filter(QueueEntry.queue_name == queue_name).order_by(QueueEntry.id).all()


def call_job_service(session_factory, queues, method, *args):
    with session_factory() as db:
        service = JobService(
            JobRepository(db),
            UserRepository(db),
            LedgerService(UserRepository(db), TransactionRepository(db)),
            queues,
        )
        return getattr(service, method)(*args, db)


def call_ledger(session_factory, method, *args):
    with session_factory() as db:
        ledger = LedgerService(UserRepository(db), TransactionRepository(db))
        return getattr(ledger, method)(*args)


def test_full_video_job_runs_every_stage_in_dependency_order(make_user, submit_job, runtime, generators, notifier, session_factory):
    make_user(credits=100)
    created = submit_job(1, FULL_VIDEO)
    assert created.remaining_credits == 50
    assert created.job.pipeline_name == "promotional-video-full"

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "completed"
    assert job.progress == 100
    assert job.completed_at is not None
    assert [item.status for item in job.items] == ["completed"] * 5

    calls = generators.calls
    assert calls.index("viral-copy") < calls.index("voice-over") < calls.index("captions") < calls.index("promotional-video")
    assert calls.index("enhanced-images") < calls.index("promotional-video")

    video = job.items[4].result["video"]
    assert video["scenes"] == 3
    assert video["has_voiceover"] and video["has_captions"]
    assert job.items[2].result["text"] == "viral-copy for Ceramic Mug"

    assert notifier.completed == [(created.job.id, 5)]
    assert notifier.failed == []
    assert balance(session_factory) == 50


def test_dependent_item_waits_until_its_dependency_completes(make_user, submit_job, runtime, session_factory):
    make_user(credits=100)
    created = submit_job(1, VOICE_OVER_JOB)

    dispatched = runtime.orchestrator.start_job(created.job.id, created.job.pipeline_name)

    assert sorted(dispatched) == [0, 1]
    job = load_job(session_factory, created.job.id)
    assert [item.status for item in job.items] == ["processing", "processing", "pending"]
    assert job.status == "processing"
    assert job.progress == 0
    assert queue_entries(session_factory, "voiceover-queue") == []


def test_terminal_stage_failure_refunds_the_job_once(make_user, submit_job, runtime, generators, notifier, session_factory):
    make_user(credits=100)
    generators.terminal_failures.add("viral-copy")
    created = submit_job(1, VOICE_OVER_JOB)
    assert balance(session_factory) == 73

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "failed"
    assert [item.status for item in job.items] == ["completed", "failed", "pending"]
    assert "rejected by provider" in job.items[1].result["error"]
    assert job.credits_refunded == 27
    assert job.failed_at is not None
    assert "voice-over" not in generators.calls

    entries = job_entries(session_factory, created.job.id)
    assert [e.type for e in entries] == [TransactionType.JOB_DEBIT.value, TransactionType.JOB_REFUND.value]
    assert entries[1].amount == 27
    assert balance(session_factory) == 100
    assert notifier.failed == [(created.job.id, 27)]

    # A late duplicate failure must not refund again
    runtime.orchestrator.fail_item(created.job.id, 1, "duplicate delivery")
    assert len(job_entries(session_factory, created.job.id)) == 2
    assert balance(session_factory) == 100
    assert len(notifier.failed) == 1


def test_transient_errors_are_retried_by_the_queue(make_user, submit_job, runtime, generators, session_factory):
    make_user(credits=100)
    generators.transient_failures["enhanced-images"] = 2
    created = submit_job(1, [("enhanced-images", 10, {"count": 2})])

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "completed"
    assert generators.calls.count("enhanced-images") == 3
    assert balance(session_factory) == 90


def test_exhausted_retries_dead_letter_and_fail_the_job(make_user, submit_job, runtime, generators, notifier, session_factory):
    make_user(credits=100)
    generators.transient_failures["enhanced-images"] = 10
    created = submit_job(1, [("enhanced-images", 10, {"count": 2}), ("product-description", 4, {})])

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "failed"
    assert job.items[0].status == "failed"
    assert "Gave up after 3 attempts" in job.items[0].result["error"]
    assert job.items[1].status == "completed"
    assert generators.calls.count("enhanced-images") == 3
    assert balance(session_factory) == 100
    assert notifier.failed == [(created.job.id, 14)]
    assert [e.status for e in queue_entries(session_factory, "images-queue")] == ["failed"]


def test_retry_resets_failed_items_without_charging_again(make_user, submit_job, runtime, generators, notifier, session_factory, queues):
    make_user(credits=100)
    generators.terminal_failures.add("viral-copy")
    created = submit_job(1, VOICE_OVER_JOB)
    runtime.drain()
    assert load_job(session_factory, created.job.id).status == "failed"

    generators.terminal_failures.clear()
    retried = call_job_service(session_factory, queues, "retry_job", created.job.id, 1)

    assert retried.status == "pending"
    assert retried.progress == 0
    assert [item.status for item in retried.items] == ["completed", "pending", "pending"]
    assert retried.items[1].result is None

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "completed"
    assert job.progress == 100
    assert job.items[0].result["images"][0]["url"].endswith("/0.png")
    assert generators.calls.count("enhanced-images") == 1
    assert [e.type for e in job_entries(session_factory, created.job.id)] == ["job_debit", "job_refund"]
    assert balance(session_factory) == 100
    assert notifier.completed == [(created.job.id, 3)]


def test_retry_rejects_jobs_that_have_not_failed(make_user, submit_job, runtime, session_factory, queues):
    make_user(credits=100)
    created = submit_job(1, [("viral-copy", 5, {})])

    with pytest.raises(InvalidJobStateError):
        call_job_service(session_factory, queues, "retry_job", created.job.id, 1)

    runtime.drain()
    with pytest.raises(InvalidJobStateError):
        call_job_service(session_factory, queues, "retry_job", created.job.id, 1)


def test_regenerate_replaces_only_the_addressed_image(make_user, submit_job, runtime, generators, session_factory, queues):
    make_user(credits=100)
    created = submit_job(1, [("enhanced-images", 10, {"count": 3}), ("viral-copy", 5, {})])
    runtime.drain()
    before = load_job(session_factory, created.job.id)
    assert before.status == "completed"
    queued_before = len(queue_entries(session_factory, "images-queue"))

    result = call_job_service(session_factory, queues, "regenerate_image", created.job.id, 1, RegenerateImageInput(item_index=0, image_index=2))

    assert result.queue_name == "images-queue"
    entries = queue_entries(session_factory, "images-queue")
    assert len(entries) == queued_before + 1
    assert entries[-1].payload["config"]["regenerateIndex"] == 2
    assert entries[-1].payload["regenerate_index"] == 2
    unchanged = load_job(session_factory, created.job.id)
    assert (unchanged.status, unchanged.progress) == ("completed", 100)

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    images = job.items[0].result["images"]
    assert [image["url"].rsplit("/", 1)[-1] for image in images] == ["0.png", "1.png", "regen-2.png"]
    assert (job.status, job.progress) == ("completed", 100)
    assert balance(session_factory) == 85


@pytest.mark.parametrize(
    "item_index,image_index",
    [(5, 0), (1, 0), (0, 3)],
)
def test_regenerate_rejects_bad_indexes_and_queues_nothing(make_user, submit_job, runtime, session_factory, queues, item_index, image_index):
    make_user(credits=100)
    created = submit_job(1, [("enhanced-images", 10, {"count": 3}), ("viral-copy", 5, {})])
    runtime.drain()
    queued_before = len(queue_entries(session_factory, "images-queue"))

    with pytest.raises(ValidationError):
        call_job_service(
            session_factory,
            queues,
            "regenerate_image",
            created.job.id,
            1,
            RegenerateImageInput(item_index=item_index, image_index=image_index),
        )

    assert len(queue_entries(session_factory, "images-queue")) == queued_before


def test_stale_jobs_are_failed_and_refunded(make_user, submit_job, runtime, notifier, session_factory):
    make_user(credits=100)
    created = submit_job(1, VOICE_OVER_JOB)
    runtime.orchestrator.start_job(created.job.id)

    assert runtime.orchestrator.sweep_stale_jobs() == []
    swept = runtime.orchestrator.sweep_stale_jobs(now=utcnow() + timedelta(hours=2))

    assert swept == [created.job.id]
    job = load_job(session_factory, created.job.id)
    assert job.status == "failed"
    assert all(item.result["error"] == "Job timed out" for item in job.items)
    assert balance(session_factory) == 100
    assert notifier.failed == [(created.job.id, 27)]


def test_a_failing_notifier_does_not_affect_the_job(make_user, submit_job, session_factory, test_settings, generators, queues):
    make_user(credits=100)
    runtime = WorkerRuntime(session_factory, test_settings, generators, RecordingNotifier(fail=True), queues=queues)
    created = submit_job(1, [("viral-copy", 5, {})])

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "completed"
    assert balance(session_factory) == 95


def test_zero_credit_job_skips_the_debit(make_user, submit_job, runtime, session_factory):
    make_user(credits=0)
    created = submit_job(1, [("product-description", 0, {})])

    runtime.drain()

    assert load_job(session_factory, created.job.id).status == "completed"
    assert job_entries(session_factory, created.job.id) == []
    assert balance(session_factory) == 0


def test_late_stage_result_does_not_complete_a_job_that_already_failed(make_user, submit_job, runtime, generators, notifier, session_factory):
    make_user(credits=100)
    created = submit_job(1, [("viral-copy", 10, {})])
    # The job times out while the provider is still working on the copy
    generators.hooks["viral-copy"] = lambda: runtime.orchestrator.fail_job(created.job.id, "Job timed out")

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "failed"
    assert job.items[0].status == "failed"
    assert job.items[0].result == {"error": "Job timed out"}
    assert job.credits_refunded == 10
    assert [(e.type, e.amount) for e in job_entries(session_factory, created.job.id)] == [("job_debit", 10), ("job_refund", 10)]
    assert balance(session_factory) == 100
    assert notifier.completed == []
    assert notifier.failed == [(created.job.id, 10)]


def test_dead_letter_for_a_completed_item_does_not_fail_the_job(make_user, submit_job, runtime, notifier, session_factory):
    make_user(credits=100)
    created = submit_job(1, [("enhanced-images", 10, {"count": 2})])
    runtime.drain()
    assert load_job(session_factory, created.job.id).status == "completed"

    runtime.orchestrator.handle_dead_letter(
        {"job_id": created.job.id, "position": 0, "type": "enhanced-images"},
        QueueDeliveryExhaustedError("images-queue", 1, 3, "lease expired"),
    )

    job = load_job(session_factory, created.job.id)
    assert job.status == "completed"
    assert job.items[0].status == "completed"
    assert len(job.items[0].result["images"]) == 2
    assert job.credits_refunded == 0
    assert [e.type for e in job_entries(session_factory, created.job.id)] == ["job_debit"]
    assert balance(session_factory) == 90
    assert notifier.failed == []


def test_result_from_before_a_retry_does_not_touch_the_reset_item(make_user, submit_job, runtime, generators, session_factory, queues):
    make_user(credits=100)
    generators.terminal_failures.add("viral-copy")
    created = submit_job(1, VOICE_OVER_JOB)
    runtime.drain()
    call_job_service(session_factory, queues, "retry_job", created.job.id, 1)

    runtime.orchestrator.complete_item(created.job.id, 1, {"text": "stale copy"})

    job = load_job(session_factory, created.job.id)
    assert job.status == "pending"
    assert job.items[1].status == "pending"
    assert job.items[1].result is None


def test_ledger_reconciles_across_a_failed_and_retried_job(make_user, submit_job, runtime, generators, notifier, session_factory, queues):
    # Start from zero so every credit on the user row has a ledger entry
    make_user(credits=0)
    call_ledger(session_factory, "bonus", 1, 100, "Welcome bonus")
    generators.terminal_failures.add("viral-copy")

    created = submit_job(1, VOICE_OVER_JOB)
    assert balance(session_factory) == 73
    runtime.drain()
    assert load_job(session_factory, created.job.id).status == "failed"

    call_job_service(session_factory, queues, "retry_job", created.job.id, 1)
    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "failed"
    assert job.credits_spent == 27
    assert job.credits_refunded == 27

    entries = job_entries(session_factory, created.job.id)
    assert [e.type for e in entries] == ["job_debit", "job_refund"]
    assert balance(session_factory) == 100
    assert notifier.failed == [(created.job.id, 27), (created.job.id, 0)]

    report = call_ledger(session_factory, "reconcile", 1)
    assert report.cached_balance == 100
    assert report.ledger_balance == 100
    assert report.consistent

import pytest

from productify.generators.contracts import GenerationClient, load_generation_client
from productify.repositories.job import JobRepository


def load_job(session_factory, job_id):
    with session_factory() as db:
        return JobRepository(db).get(job_id)


def test_captions_without_voice_over_fail_the_item(make_user, submit_job, runtime, generators, notifier, session_factory):
    make_user(credits=100)
    created = submit_job(1, [("captions", 3, {})])

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "failed"
    assert job.items[0].result["error"] == "no voice-over audio to transcribe"
    assert "captions" not in generators.calls
    assert notifier.failed == [(created.job.id, 3)]


def test_duplicate_delivery_of_a_finished_item_is_skipped(make_user, submit_job, runtime, generators, session_factory):
    make_user(credits=100)
    created = submit_job(1, [("viral-copy", 5, {})])
    runtime.drain()
    assert generators.calls == ["viral-copy"]

    runtime.stage_worker.handle({"job_id": created.job.id, "position": 0, "type": "viral-copy", "config": {}})

    assert generators.calls == ["viral-copy"]
    assert load_job(session_factory, created.job.id).items[0].result == {"text": "viral-copy for Ceramic Mug"}


def test_video_falls_back_to_the_original_image(make_user, submit_job, runtime, generators, session_factory):
    make_user(credits=100)
    created = submit_job(1, [("promotional-video", 20, {})])

    runtime.drain()

    job = load_job(session_factory, created.job.id)
    assert job.status == "completed"
    assert job.items[0].result["video"]["scenes"] == 1
    assert job.items[0].result["video"]["has_voiceover"] is False


def test_message_for_unknown_job_is_ignored(runtime, generators):
    runtime.stage_worker.handle({"job_id": "0" * 32, "position": 0, "type": "viral-copy", "config": {}})
    assert generators.calls == []


def test_load_generation_client_builds_classes():
    client = load_generation_client("conftest:FakeGenerators")
    assert isinstance(client, GenerationClient)

    with pytest.raises(ValueError):
        load_generation_client("conftest")
    with pytest.raises(TypeError):
        load_generation_client("conftest:RecordingNotifier")

import pytest
from fastapi.testclient import TestClient

from main import create_app
from productify.api.dependencies.database import get_db
from productify.core.security import create_user_token

JOB_BODY = {
    "product_info": {"name": "Ceramic Mug", "description": "Hand-glazed 350ml mug"},
    "original_image": {"url": "https://cdn.test/original.jpg", "filename": "original.jpg", "mime_type": "image/jpeg", "size": 1024},
    "items": [
        {"type": "enhanced-images", "credits": 10, "config": {"count": 3}},
        {"type": "viral-copy", "credits": 5},
    ],
}


@pytest.fixture
def client(session_factory, queues):
    app = create_app(session_factory=session_factory, queue_registry=queues)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client


def auth(user_id=1):
    return {"Authorization": f"Bearer {create_user_token(user_id)}"}


def test_create_job_debits_and_queues(client, make_user):
    make_user(credits=100)

    resp = client.post("/jobs", json=JOB_BODY, headers=auth())

    assert resp.status_code == 201
    body = resp.json()
    assert body["remaining_credits"] == 85
    job = body["job"]
    assert job["status"] == "pending"
    assert job["progress"] == 0
    assert job["pipeline_name"] == "viral-copy-only"
    assert [item["type"] for item in job["items"]] == ["enhanced-images", "viral-copy"]
    assert job["total_credits"] == 15

    stats = client.get("/queues/orchestrator-queue/stats", headers=auth()).json()
    assert stats["waiting"] == 1

    history = client.get(f"/jobs/{job['id']}/transactions", headers=auth()).json()
    assert [entry["type"] for entry in history] == ["job_debit"]
    assert history[0]["metadata"] == {"type": "job_debit", "job_id": job["id"]}


def test_create_job_with_insufficient_credits_creates_nothing(client, make_user):
    make_user(credits=10)

    resp = client.post("/jobs", json=JOB_BODY, headers=auth())

    assert resp.status_code == 402
    assert resp.json()["error_code"] == "INSUFFICIENT_CREDITS"
    assert client.get("/jobs", headers=auth()).json()["total"] == 0
    assert client.get("/credits/balance", headers=auth()).json()["balance"] == 10
    assert client.get("/queues/orchestrator-queue/stats", headers=auth()).json()["waiting"] == 0


def test_create_job_requires_at_least_one_item(client, make_user):
    make_user(credits=100)

    resp = client.post("/jobs", json={**JOB_BODY, "items": []}, headers=auth())

    assert resp.status_code == 400
    assert resp.json()["error_code"] == "VALIDATION_ERROR"


def test_create_job_rejects_unknown_item_type(client, make_user):
    make_user(credits=100)
    body = {**JOB_BODY, "items": [{"type": "hologram", "credits": 5}]}

    assert client.post("/jobs", json=body, headers=auth()).status_code == 400


def test_job_reads_are_scoped_to_the_owner(client, make_user):
    make_user(user_id=1, credits=100)
    make_user(user_id=2, credits=100, name="Other")
    job_id = client.post("/jobs", json=JOB_BODY, headers=auth(1)).json()["job"]["id"]

    assert client.get(f"/jobs/{job_id}", headers=auth(1)).status_code == 200
    assert client.get(f"/jobs/{job_id}", headers=auth(2)).status_code == 403
    assert client.get("/jobs/0123456789abcdef0123456789abcdef", headers=auth(1)).status_code == 404
    assert client.get("/jobs", headers=auth(2)).json()["total"] == 0


def test_list_jobs_filters_by_status(client, make_user, runtime):
    make_user(credits=100)
    client.post("/jobs", json=JOB_BODY, headers=auth())
    runtime.drain()
    client.post("/jobs", json=JOB_BODY, headers=auth())

    everything = client.get("/jobs", headers=auth()).json()
    completed = client.get("/jobs", params={"status": "completed"}, headers=auth()).json()
    first_page = client.get("/jobs", params={"limit": 1}, headers=auth()).json()

    assert everything["total"] == 2
    assert completed["total"] == 1
    assert completed["jobs"][0]["progress"] == 100
    assert first_page["has_more"] is True
    assert len(first_page["jobs"]) == 1


def test_retry_of_a_job_that_has_not_failed_is_a_conflict(client, make_user):
    make_user(credits=100)
    job_id = client.post("/jobs", json=JOB_BODY, headers=auth()).json()["job"]["id"]

    resp = client.post(f"/jobs/{job_id}/retry", headers=auth())

    assert resp.status_code == 409
    assert resp.json()["error_code"] == "INVALID_JOB_STATE"


def test_retry_of_a_failed_job_requeues_it(client, make_user, runtime, generators):
    make_user(credits=100)
    generators.terminal_failures.add("viral-copy")
    job_id = client.post("/jobs", json=JOB_BODY, headers=auth()).json()["job"]["id"]
    runtime.drain()
    assert client.get(f"/jobs/{job_id}", headers=auth()).json()["status"] == "failed"

    resp = client.post(f"/jobs/{job_id}/retry", headers=auth())

    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"
    assert client.get("/credits/balance", headers=auth()).json()["balance"] == 100


def test_regenerate_image_is_accepted(client, make_user, runtime):
    make_user(credits=100)
    job_id = client.post("/jobs", json=JOB_BODY, headers=auth()).json()["job"]["id"]
    runtime.drain()

    resp = client.post(f"/jobs/{job_id}/regenerate-image", json={"item_index": 0, "image_index": 1}, headers=auth())

    assert resp.status_code == 202
    body = resp.json()
    assert body["queue_name"] == "images-queue"
    assert (body["item_index"], body["image_index"]) == (0, 1)

    bad = client.post(f"/jobs/{job_id}/regenerate-image", json={"item_index": 1, "image_index": 0}, headers=auth())
    assert bad.status_code == 400


def test_credit_balance_and_history(client, make_user):
    make_user(credits=100)
    client.post("/jobs", json=JOB_BODY, headers=auth())

    assert client.get("/credits/balance", headers=auth()).json() == {"user_id": 1, "balance": 85}
    history = client.get("/credits/history", params={"type": "job_debit"}, headers=auth()).json()
    assert history["total"] == 1
    assert history["transactions"][0]["balance_before"] == 100
    assert history["transactions"][0]["balance_after"] == 85


def test_queue_endpoints(client, make_user):
    make_user(credits=100)

    pipelines = client.get("/queues/pipelines", headers=auth()).json()
    assert "promotional-video-full" in {p["id"] for p in pipelines}
    assert client.get("/queues/audio-queue/stats", headers=auth()).status_code == 404


def test_requests_without_a_valid_token_are_rejected(client, make_user):
    make_user(credits=100)

    assert client.get("/jobs").status_code == 401
    assert client.get("/credits/balance", headers={"Authorization": "Bearer not-a-token"}).status_code == 401
    assert client.get("/queues/pipelines").status_code == 401
    assert client.get("/jobs", headers=auth(99)).status_code == 404

import os
import sys

import pytest

# Ensure project root is on sys.path for 'productify' imports
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Keep the module-level engine away from any real database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from productify.core.config import Settings
from productify.db import base as models_import  # noqa: F401 - ensure models are imported
from productify.db.base_class import Base
from productify.db.models.user import User
from productify.db.session import build_engine, build_session_factory
from productify.repositories.job import JobRepository
from productify.repositories.transaction import TransactionRepository
from productify.repositories.user import UserRepository
from productify.schemas.job import CreateJobInput
from productify.services.exceptions import StageFailureError
from productify.services.job_services import JobService
from productify.services.ledger_services import LedgerService
from productify.services.queue_services import QueueRegistry
from productify.workers.runtime import WorkerRuntime


class FakeGenerators:
    """Deterministic stand-in for the generation collaborators."""

    def __init__(self):
        self.calls = []
        self.terminal_failures = set()
        self.transient_failures = {}
        # stage -> callable run when the stage starts, before it returns
        self.hooks = {}

    def _enter(self, stage):
        self.calls.append(stage)
        if stage in self.hooks:
            self.hooks[stage]()
        if stage in self.terminal_failures:
            raise StageFailureError(stage, "rejected by provider")
        if self.transient_failures.get(stage, 0) > 0:
            self.transient_failures[stage] -= 1
            raise ConnectionError("provider timeout")

    def generate_enhanced_images(self, product_info, original_image, config):
        self._enter("enhanced-images")
        if "regenerateIndex" in config:
            return [{"url": f"https://cdn.test/{product_info['name']}/regen-{config['regenerateIndex']}.png"}]
        count = int(config.get("count", 1))
        return [{"url": f"https://cdn.test/{product_info['name']}/{i}.png"} for i in range(count)]

    def generate_copy(self, product_info, config):
        self._enter(config["kind"])
        return f"{config['kind']} for {product_info['name']}"

    def generate_voiceover(self, text, voice_config):
        self._enter("voice-over")
        return {"url": "https://cdn.test/voice.mp3", "chars": len(text)}

    def generate_captions(self, audio):
        self._enter("captions")
        return [{"start": 0.0, "end": 1.5, "text": "Meet your new favourite mug"}]

    def render_video(self, images, text=None, voiceover=None, captions=None, config=None):
        self._enter("promotional-video")
        return {
            "url": "https://cdn.test/video.mp4",
            "scenes": len(images),
            "has_voiceover": voiceover is not None,
            "has_captions": bool(captions),
        }


class RecordingNotifier:
    def __init__(self, fail=False):
        self.completed = []
        self.failed = []
        self.fail = fail

    def notify_job_completed(self, user_name, user_email, product_name, job_id, items_completed):
        if self.fail:
            raise RuntimeError("smtp down")
        self.completed.append((job_id, items_completed))

    def notify_job_failed(self, user_name, user_email, product_name, job_id, credits_refunded):
        if self.fail:
            raise RuntimeError("smtp down")
        self.failed.append((job_id, credits_refunded))


@pytest.fixture
def engine(tmp_path):
    # File-based SQLite so separate sessions and threads share the same database
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        QUEUE_BACKOFF_DELAY_MS=0,
        QUEUE_POLL_INTERVAL_SECONDS=0.01,
        STALE_JOB_TIMEOUT_MINUTES=60,
    )


@pytest.fixture
def queues(session_factory, test_settings):
    return QueueRegistry.from_settings(session_factory, test_settings)


@pytest.fixture
def generators():
    return FakeGenerators()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def runtime(session_factory, test_settings, generators, notifier, queues):
    return WorkerRuntime(session_factory, test_settings, generators, notifier, queues=queues)


@pytest.fixture
def make_user(session_factory):
    def _make_user(user_id=1, credits=100, name="Owner"):
        with session_factory() as db:
            db.add(User(id=user_id, email=f"user{user_id}@example.com", name=name, credits=credits, is_active=True))
            db.commit()
        return user_id
    return _make_user


@pytest.fixture
def ledger_session(session_factory):
    """A LedgerService bound to one session; the session is closed after the test."""
    db = session_factory()
    ledger = LedgerService(UserRepository(db), TransactionRepository(db))
    yield ledger
    db.close()


@pytest.fixture
def submit_job(session_factory, queues):
    """Create a job through JobService the way the API does."""
    def _submit(user_id, items, product_name="Ceramic Mug", original_image=None):
        payload = CreateJobInput(
            product_info={"name": product_name, "description": "Hand-glazed 350ml mug"},
            original_image=original_image or {"url": "https://cdn.test/original.jpg", "filename": "original.jpg", "mime_type": "image/jpeg", "size": 1024},
            items=[{"type": t, "credits": c, "config": cfg} for t, c, cfg in items],
        )
        with session_factory() as db:
            service = JobService(JobRepository(db), UserRepository(db), LedgerService(UserRepository(db), TransactionRepository(db)), queues)
            return service.create_job(user_id, payload, db)
    return _submit

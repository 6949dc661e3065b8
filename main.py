# main.py
from typing import Callable, Optional

from fastapi import FastAPI

from productify.api.endpoints import credits, jobs, queues
from productify.api.errors import register_exception_handlers
from productify.core.config import settings
from productify.core.observability import RequestLoggingMiddleware
from productify.db.session import SessionLocal
# Import all models to ensure relationships are properly resolved
from productify.db import base  # noqa: F401
from productify.services.queue_services import QueueRegistry


def create_app(session_factory: Callable = SessionLocal, queue_registry: Optional[QueueRegistry] = None) -> FastAPI:
	app = FastAPI(title="Productify")
	app.state.queues = queue_registry or QueueRegistry.from_settings(session_factory, settings)

	app.add_middleware(RequestLoggingMiddleware, session_factory=session_factory)
	register_exception_handlers(app)

	app.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
	app.include_router(credits.router, prefix="/credits", tags=["credits"])
	app.include_router(queues.router, prefix="/queues", tags=["queues"])
	return app


app = create_app()


if __name__ == "__main__":
	import uvicorn

	uvicorn.run(app, log_level=settings.LOG_LEVEL.lower())

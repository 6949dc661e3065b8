from __future__ import annotations

import logging
import time
import uuid
from random import random
from typing import Callable, Optional, Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.background import BackgroundTask

from productify.core.config import settings
from productify.repositories.request_log import RequestLogRepository

logger = logging.getLogger("productify.telemetry")


def _default_session_factory():
	from productify.db.session import SessionLocal
	return SessionLocal


def generate_correlation_id(existing: Optional[str]) -> str:
	if existing and existing.strip():
		return existing.strip()
	return str(uuid.uuid4())


def _sampled_out() -> bool:
	return settings.LOG_SAMPLE_RATE < 1.0 and random() > float(settings.LOG_SAMPLE_RATE)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
	"""Middleware to log inbound HTTP requests with correlation IDs."""

	def __init__(self, app, session_factory: Optional[Callable] = None):
		super().__init__(app)
		self.session_factory = session_factory

	async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
		correlation_id = generate_correlation_id(request.headers.get("X-Correlation-ID"))
		setattr(request.state, "correlation_id", correlation_id)

		if not settings.ENABLE_REQUEST_LOGGING:
			response = await call_next(request)
			response.headers["X-Correlation-ID"] = correlation_id
			return response

		sampled_out = _sampled_out()
		start_ns = time.monotonic_ns()
		response = await call_next(request)
		duration_ms = int((time.monotonic_ns() - start_ns) / 1_000_000)

		response.headers["X-Correlation-ID"] = correlation_id
		if not sampled_out:
			payload = _build_inbound_payload(request, correlation_id, response.status_code, duration_ms)
			response.background = BackgroundTask(_insert_inbound, payload, self.session_factory or _default_session_factory())
		return response


def _build_inbound_payload(request: Request, correlation_id: str, status_code: int, duration_ms: int) -> dict:
	# Route template and name are unavailable for 404s
	route = request.scope.get("route")
	path_template = getattr(route, "path", None) if route is not None else None
	endpoint = request.scope.get("endpoint")
	route_name = getattr(endpoint, "__name__", None) if endpoint is not None else None

	xff = request.headers.get("x-forwarded-for")
	client_ip = (xff.split(",")[0].strip() if xff else (request.client.host if request.client else None))

	auth_header = request.headers.get("authorization") or ""
	auth_type = "bearer" if auth_header.lower().startswith("bearer ") else "none"

	return {
		"correlation_id": correlation_id,
		"connection_type": "http",
		"method": request.method,
		"raw_path": request.url.path,
		"path_template": path_template or request.url.path,
		"route_name": route_name,
		"status_code": status_code,
		"duration_ms": duration_ms,
		"client_ip": client_ip,
		"user_agent": (request.headers.get("user-agent") or "")[:256],
		"auth_type": auth_type,
		"user_id": getattr(request.state, "user_id", None),
	}


def _insert_inbound(payload: dict, session_factory: Callable) -> None:
	# Telemetry must never break the request path
	try:
		with session_factory() as db:
			RequestLogRepository(db).insert_inbound(payload)
	except Exception as e:
		logger.warning("Failed to persist request log", extra={"correlation_id": payload.get("correlation_id"), "error": str(e)})


def log_outbound_call(
	provider: str,
	target: str,
	operation: str,
	correlation_id: Optional[str],
	call: Callable[[], Any],
	session_factory: Optional[Callable] = None,
) -> Any:
	"""Execute an outbound collaborator call and record its duration and outcome.

	Args:
		provider: Collaborator name (e.g., generator, notifier)
		target: Target entity (e.g., job id, item type)
		operation: Operation name
		correlation_id: Correlation ID for linkage
		call: Callable that performs the operation
		session_factory: Session factory for the telemetry insert

	Returns:
		Result of `call()`
	"""
	if not settings.ENABLE_OUTBOUND_LOGGING:
		return call()

	start_ns = time.monotonic_ns()
	error_code: Optional[str] = None
	try:
		return call()
	except Exception as e:
		error_code = getattr(e, "error_code", None) or type(e).__name__
		raise
	finally:
		duration_ms = int((time.monotonic_ns() - start_ns) / 1_000_000)
		payload = {
			"correlation_id": correlation_id or str(uuid.uuid4()),
			"connection_type": "sdk",
			"provider": provider,
			"target": target,
			"operation": operation,
			"duration_ms": duration_ms,
			"error_code": error_code,
		}
		try:
			with (session_factory or _default_session_factory())() as db:
				RequestLogRepository(db).insert_outbound(payload)
		except Exception as e:
			logger.warning("Failed to persist outbound call log", extra={"correlation_id": correlation_id, "error": str(e)})

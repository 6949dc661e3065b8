import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from productify.services.exceptions import ErrorSeverity, ServiceError, ValidationError, create_error_response

logger = logging.getLogger("productify.api")


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
	if exc.correlation_id is None:
		exc.correlation_id = getattr(request.state, "correlation_id", None)
	level = logging.ERROR if exc.severity in (ErrorSeverity.HIGH, ErrorSeverity.CRITICAL) else logging.INFO
	logger.log(level, str(exc), extra={"correlation_id": exc.correlation_id, "error_code": exc.error_code, "path": request.url.path})
	return JSONResponse(status_code=exc.http_status.value, content=create_error_response(exc))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
	"""Malformed request bodies and parameters are reported like any other ValidationError."""
	errors = exc.errors()
	first = errors[0] if errors else {}
	field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")) or "request"
	error = ValidationError(
		field,
		first.get("msg", "invalid value"),
		correlation_id=getattr(request.state, "correlation_id", None),
		validation_errors=[
			{"field": ".".join(str(part) for part in e.get("loc", ())), "message": e.get("msg", "")}
			for e in errors
		],
	)
	content = create_error_response(error)
	content["errors"] = error.details["validation_errors"]
	return JSONResponse(status_code=error.http_status.value, content=content)


def register_exception_handlers(app: FastAPI) -> None:
	app.add_exception_handler(ServiceError, service_error_handler)
	app.add_exception_handler(RequestValidationError, request_validation_handler)

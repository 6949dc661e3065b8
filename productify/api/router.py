from __future__ import annotations

from http import HTTPStatus
from typing import Any, Dict, Mapping, Optional, Sequence

from fastapi import APIRouter, Depends


# Statuses every router can return through the ServiceError handlers
DEFAULT_ERROR_STATUSES = (400, 401, 403, 404, 500)


def _responses(extra: Optional[Mapping[int, str]]) -> Dict[int, Dict[str, Any]]:
    responses = {code: {"description": HTTPStatus(code).phrase} for code in DEFAULT_ERROR_STATUSES}
    for code, description in (extra or {}).items():
        responses[code] = {"description": description}
    return responses


def create_router(
    *,
    name: Optional[str] = None,
    dependencies: Optional[Sequence[Depends]] = None,
    extra_responses: Optional[Mapping[int, str]] = None,
) -> APIRouter:
    """Create an APIRouter documenting the shared error responses.

    Args:
        name: Optional logical name for the router.
        dependencies: Optional dependencies applied to all routes in the router.
        extra_responses: Status code to description, for errors specific to this router.
    """
    router = APIRouter(
        dependencies=list(dependencies) if dependencies else None,
        responses=_responses(extra_responses),
    )
    if name:
        setattr(router, "name", name)
    return router

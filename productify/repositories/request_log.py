from typing import Optional, Dict, Any, Iterable, Tuple
from sqlalchemy.orm import Session

from productify.db.models.request_log import RequestLog

# (column, max length); None keeps the value as is
INBOUND_FIELDS: Tuple[Tuple[str, Optional[int]], ...] = (
	("connection_type", 16),
	("method", 16),
	("path_template", 512),
	("raw_path", 512),
	("route_name", 128),
	("status_code", None),
	("client_ip", 64),
	("user_agent", 256),
	("auth_type", 16),
	("user_id", None),
)
OUTBOUND_FIELDS: Tuple[Tuple[str, Optional[int]], ...] = (
	("provider", 64),
	("target", 256),
	("operation", 64),
	("error_code", 64),
)


class RequestLogRepository:
	"""Telemetry inserts; each insert commits on its own session."""

	def __init__(self, db: Session):
		self.db = db

	def insert_inbound(self, payload: Dict[str, Any]) -> RequestLog:
		return self._insert("inbound", payload, INBOUND_FIELDS)

	def insert_outbound(self, payload: Dict[str, Any]) -> RequestLog:
		payload = {"connection_type": "sdk", **{k: v for k, v in payload.items() if v is not None}}
		return self._insert("outbound", payload, OUTBOUND_FIELDS + (("connection_type", 16),))

	def _insert(self, direction: str, payload: Dict[str, Any], fields: Iterable[Tuple[str, Optional[int]]]) -> RequestLog:
		values = {name: _clip(payload.get(name), limit) for name, limit in fields}
		log = RequestLog(
			direction=direction,
			correlation_id=_clip(payload.get("correlation_id"), 64) or "unknown",
			duration_ms=int(payload.get("duration_ms") or 0),
			**values,
		)
		self.db.add(log)
		self.db.commit()
		return log


def _clip(value: Any, limit: Optional[int]) -> Any:
	if value is None or limit is None:
		return value
	return str(value)[:limit]

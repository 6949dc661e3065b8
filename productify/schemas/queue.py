from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, Field


class QueueOptions(BaseModel):
	"""Per-enqueue overrides; unset fields fall back to the queue defaults."""
	attempts: Optional[int] = Field(default=None, ge=1)
	backoff_delay_ms: Optional[int] = Field(default=None, ge=0)
	delay_ms: int = Field(default=0, ge=0)
	remove_on_complete_seconds: Optional[int] = Field(default=None, ge=0)
	remove_on_fail_seconds: Optional[int] = Field(default=None, ge=0)


class QueueHandle(BaseModel):
	id: int
	queue_name: str


class QueueStats(BaseModel):
	queue_name: str
	paused: bool = False
	waiting: int = 0
	active: int = 0
	delayed: int = 0
	completed: int = 0
	failed: int = 0

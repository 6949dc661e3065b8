from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, validator
from .mixin import TimestampModel


class ItemType(str, Enum):
	ENHANCED_IMAGES = "enhanced-images"
	VIRAL_COPY = "viral-copy"
	PRODUCT_DESCRIPTION = "product-description"
	VOICE_OVER = "voice-over"
	PROMOTIONAL_VIDEO = "promotional-video"
	CAPTIONS = "captions"


class ItemStatus(str, Enum):
	PENDING = "pending"
	PROCESSING = "processing"
	COMPLETED = "completed"
	FAILED = "failed"


class JobStatus(str, Enum):
	PENDING = "pending"
	PROCESSING = "processing"
	COMPLETED = "completed"
	FAILED = "failed"


TERMINAL_ITEM_STATUSES = frozenset({ItemStatus.COMPLETED, ItemStatus.FAILED})


class ProductInfo(BaseModel):
	name: str = Field(..., min_length=1, max_length=200)
	description: Optional[str] = None
	dimensions: Optional[Dict[str, float]] = None

	@validator('name')
	def validate_name(cls, v: str) -> str:
		if not v.strip():
			raise ValueError("Product name cannot be empty")
		return v.strip()


class OriginalImage(BaseModel):
	url: str = Field(..., min_length=1)
	filename: str
	mime_type: str = "image/jpeg"
	size: int = Field(default=0, ge=0)


class JobItemCreate(BaseModel):
	type: ItemType
	credits: int = Field(..., ge=0)
	config: Dict[str, Any] = Field(default_factory=dict)


class CreateJobInput(BaseModel):
	"""Input for creating a generation job."""
	product_info: ProductInfo
	original_image: OriginalImage
	items: List[JobItemCreate] = Field(..., min_length=1)

	@validator('items')
	def validate_items(cls, v: List[JobItemCreate]) -> List[JobItemCreate]:
		if not v:
			raise ValueError("Select at least one item to generate")
		return v

	@property
	def total_credits(self) -> int:
		return sum(item.credits for item in self.items)


class RegenerateImageInput(BaseModel):
	item_index: int = Field(..., ge=0)
	image_index: int = Field(..., ge=0)


class JobListInput(BaseModel):
	skip: int = Field(default=0, ge=0)
	limit: int = Field(default=10, ge=1, le=100)
	status: Optional[JobStatus] = None
	since: Optional[datetime] = None


class JobItemRead(BaseModel):
	position: int
	type: ItemType
	credits: int
	config: Dict[str, Any]
	status: ItemStatus
	result: Optional[Dict[str, Any]] = None
	started_at: Optional[datetime] = None
	completed_at: Optional[datetime] = None

	class Config:
		from_attributes = True


class JobRead(TimestampModel):
	id: str
	user_id: int
	status: JobStatus
	progress: int = Field(ge=0, le=100)
	pipeline_name: Optional[str] = None
	product_info: Dict[str, Any]
	original_image: Dict[str, Any]
	items: List[JobItemRead]
	total_credits: int
	credits_spent: int
	credits_refunded: int
	started_at: Optional[datetime] = None
	completed_at: Optional[datetime] = None
	failed_at: Optional[datetime] = None
	refunded_at: Optional[datetime] = None

	class Config:
		from_attributes = True

	@validator('progress')
	def validate_progress(cls, v: int) -> int:
		if v < 0:
			return 0
		if v > 100:
			return 100
		return v


class JobPage(BaseModel):
	jobs: List[JobRead]
	total: int
	has_more: bool


class CreateJobResult(BaseModel):
	job: JobRead
	remaining_credits: int


class RegenerateImageResult(BaseModel):
	job_id: str
	item_index: int
	image_index: int
	queue_name: str
	queue_entry_id: int

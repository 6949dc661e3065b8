"""Interfaces of the generation collaborators the stage workers call.

Artifacts are opaque JSON-serializable dicts (typically a URL plus metadata).
Raise `StageFailureError` for errors that retrying cannot fix; anything else
is treated as transient and the queue retries the stage.
"""

from __future__ import annotations

import importlib
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from productify.services.exceptions import StageFailureError

Artifact = Dict[str, Any]
Caption = Dict[str, Any]  # {"start": float, "end": float, "text": str}


@runtime_checkable
class GenerationClient(Protocol):
	def generate_enhanced_images(self, product_info: Dict[str, Any], original_image: Dict[str, Any], config: Dict[str, Any]) -> List[Artifact]:
		...

	def generate_copy(self, product_info: Dict[str, Any], config: Dict[str, Any]) -> str:
		"""Viral copy or product description; `config["kind"]` is the item type."""
		...

	def generate_voiceover(self, text: str, voice_config: Dict[str, Any]) -> Artifact:
		...

	def generate_captions(self, audio: Artifact) -> List[Caption]:
		...

	def render_video(
		self,
		images: List[Artifact],
		text: Optional[str] = None,
		voiceover: Optional[Artifact] = None,
		captions: Optional[List[Caption]] = None,
		config: Optional[Dict[str, Any]] = None,
	) -> Artifact:
		...


@runtime_checkable
class Notifier(Protocol):
	def notify_job_completed(self, user_name: str, user_email: str, product_name: str, job_id: str, items_completed: int) -> None:
		...

	def notify_job_failed(self, user_name: str, user_email: str, product_name: str, job_id: str, credits_refunded: int) -> None:
		...


def load_generation_client(path: str) -> GenerationClient:
	"""Import `package.module:attribute`; a callable attribute is called to build the client."""
	module_name, _, attribute = path.partition(":")
	if not module_name or not attribute:
		raise ValueError(f"Expected 'module:attribute', got '{path}'")
	target = getattr(importlib.import_module(module_name), attribute)
	build = isinstance(target, type) or (callable(target) and not isinstance(target, GenerationClient))
	client = target() if build else target
	if not isinstance(client, GenerationClient):
		raise TypeError(f"{path} does not provide a GenerationClient")
	return client


__all__ = [
	"Artifact",
	"Caption",
	"GenerationClient",
	"Notifier",
	"StageFailureError",
	"load_generation_client",
]

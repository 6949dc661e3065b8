"""Stage workers: run one generation collaborator per queued item."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from productify.core.observability import log_outbound_call
from productify.generators.contracts import GenerationClient
from productify.schemas.job import ItemStatus, ItemType
from productify.services.base import BaseService
from productify.services.exceptions import StageFailureError
from productify.services.orchestrator_services import OrchestratorService, StageContext


class StageWorker(BaseService):
	"""Handles messages from every stage queue.

	Generation runs outside any database transaction. A `StageFailureError`
	fails the item; any other exception propagates so the queue retries it.
	"""

	def __init__(
		self,
		orchestrator: OrchestratorService,
		generators: GenerationClient,
		session_factory: Optional[Callable[[], Session]] = None,
		correlation_id: Optional[str] = None,
	):
		super().__init__(correlation_id)
		self.orchestrator = orchestrator
		self.generators = generators
		self.session_factory = session_factory

	def handle(self, payload: Dict[str, Any]) -> None:
		job_id = payload["job_id"]
		position = int(payload["position"])
		regenerate_index = payload.get("regenerate_index")

		context = self.orchestrator.load_stage_context(job_id, position)
		if context is None:
			self.logger.warning("Stage message for unknown job item", extra={"correlation_id": self.correlation_id, "job_id": job_id, "position": position})
			return
		if regenerate_index is None and context.item_status != ItemStatus.PROCESSING:
			# Duplicate delivery of an item that already finished or was reset
			self.log_operation("stage_skipped", job_id=job_id, position=position, item_status=context.item_status.value)
			return

		config = dict(payload.get("config") or context.config)
		try:
			result = self._generate(context, config)
		except StageFailureError as e:
			if regenerate_index is not None:
				self.logger.warning(
					"Image regeneration failed",
					extra={"correlation_id": self.correlation_id, "job_id": job_id, "position": position, "error": e.reason},
				)
				return
			self.orchestrator.fail_item(job_id, position, e.reason)
			return

		if regenerate_index is not None:
			self.orchestrator.replace_image(job_id, position, int(regenerate_index), result["images"][0])
		else:
			self.orchestrator.complete_item(job_id, position, result)

	def _generate(self, context: StageContext, config: Dict[str, Any]) -> Dict[str, Any]:
		stage = context.item_type
		target = f"{context.job_id}:{context.position}"

		def call(operation: str, fn: Callable[[], Any]) -> Any:
			return log_outbound_call("generator", target, operation, self.correlation_id, fn, session_factory=self.session_factory)

		if stage == ItemType.ENHANCED_IMAGES:
			images = call("generate_enhanced_images", lambda: self.generators.generate_enhanced_images(context.product_info, context.original_image, config))
			if not images:
				raise StageFailureError(stage.value, "no images were generated")
			return {"images": list(images)}

		if stage in (ItemType.VIRAL_COPY, ItemType.PRODUCT_DESCRIPTION):
			text = call("generate_copy", lambda: self.generators.generate_copy(context.product_info, {**config, "kind": stage.value}))
			if not text:
				raise StageFailureError(stage.value, "empty copy returned")
			return {"text": text}

		if stage == ItemType.VOICE_OVER:
			text = _text_for_voiceover(context)
			audio = call("generate_voiceover", lambda: self.generators.generate_voiceover(text, config))
			return {"audio": audio, "text": text}

		if stage == ItemType.CAPTIONS:
			audio = (context.dependency_results.get(ItemType.VOICE_OVER) or {}).get("audio")
			if not audio:
				raise StageFailureError(stage.value, "no voice-over audio to transcribe")
			captions = call("generate_captions", lambda: self.generators.generate_captions(audio))
			return {"captions": list(captions or [])}

		if stage == ItemType.PROMOTIONAL_VIDEO:
			results = context.dependency_results
			images = [image for image in (results.get(ItemType.ENHANCED_IMAGES) or {}).get("images") or [] if image]
			if not images:
				images = [context.original_image]
			video = call("render_video", lambda: self.generators.render_video(
				images,
				text=(results.get(ItemType.VIRAL_COPY) or {}).get("text"),
				voiceover=(results.get(ItemType.VOICE_OVER) or {}).get("audio"),
				captions=(results.get(ItemType.CAPTIONS) or {}).get("captions"),
				config=config,
			))
			return {"video": video}

		raise StageFailureError(stage.value, "unsupported item type")


def _text_for_voiceover(context: StageContext) -> str:
	copy = (context.dependency_results.get(ItemType.VIRAL_COPY) or {}).get("text")
	if copy:
		return copy
	product = context.product_info
	return product.get("description") or product.get("name") or ""

"""Pipeline resolution and definitions.

A job's item-type set maps onto exactly one named pipeline via a fixed
priority list. The pipeline supplies step order and stage dependencies; the
execution plan for a concrete job keeps only the steps the job actually has.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Tuple

from productify.schemas.job import ItemType


ORCHESTRATOR_QUEUE = "orchestrator-queue"

STAGE_QUEUES: Dict[ItemType, str] = {
	ItemType.ENHANCED_IMAGES: "images-queue",
	ItemType.VIRAL_COPY: "text-queue",
	ItemType.PRODUCT_DESCRIPTION: "text-queue",
	ItemType.VOICE_OVER: "voiceover-queue",
	ItemType.CAPTIONS: "captions-queue",
	ItemType.PROMOTIONAL_VIDEO: "video-queue",
}

ALL_QUEUES: Tuple[str, ...] = (ORCHESTRATOR_QUEUE,) + tuple(dict.fromkeys(STAGE_QUEUES.values()))

# Dependencies a stage has when no pipeline names it
DEFAULT_DEPENDENCIES: Dict[ItemType, FrozenSet[ItemType]] = {
	ItemType.ENHANCED_IMAGES: frozenset(),
	ItemType.VIRAL_COPY: frozenset(),
	ItemType.PRODUCT_DESCRIPTION: frozenset(),
	ItemType.VOICE_OVER: frozenset({ItemType.VIRAL_COPY}),
	ItemType.CAPTIONS: frozenset({ItemType.VOICE_OVER}),
	ItemType.PROMOTIONAL_VIDEO: frozenset({ItemType.ENHANCED_IMAGES}),
}

DEFAULT_PIPELINE = "enhanced-images-only"

# First rule whose set is contained in the requested types wins
PIPELINE_RULES: Tuple[Tuple[FrozenSet[ItemType], str], ...] = (
	(frozenset({ItemType.PROMOTIONAL_VIDEO, ItemType.ENHANCED_IMAGES, ItemType.VIRAL_COPY, ItemType.VOICE_OVER, ItemType.CAPTIONS}), "promotional-video-full"),
	(frozenset({ItemType.PROMOTIONAL_VIDEO, ItemType.ENHANCED_IMAGES, ItemType.VIRAL_COPY, ItemType.VOICE_OVER}), "promotional-video-with-voiceover"),
	(frozenset({ItemType.PROMOTIONAL_VIDEO, ItemType.ENHANCED_IMAGES, ItemType.VIRAL_COPY}), "promotional-video-with-text"),
	(frozenset({ItemType.PROMOTIONAL_VIDEO, ItemType.ENHANCED_IMAGES}), "promotional-video-basic"),
	(frozenset({ItemType.VIRAL_COPY, ItemType.PRODUCT_DESCRIPTION}), "text-only-multiple"),
	(frozenset({ItemType.VOICE_OVER, ItemType.VIRAL_COPY}), "voice-over-only"),
	(frozenset({ItemType.VIRAL_COPY}), "viral-copy-only"),
	(frozenset({ItemType.PRODUCT_DESCRIPTION}), "product-description-only"),
	(frozenset({ItemType.ENHANCED_IMAGES}), "enhanced-images-only"),
)


@dataclass(frozen=True)
class PipelineStep:
	type: ItemType
	depends_on: FrozenSet[ItemType] = frozenset()


@dataclass(frozen=True)
class Pipeline:
	id: str
	name: str
	description: str
	steps: Tuple[PipelineStep, ...] = field(default_factory=tuple)

	@property
	def item_types(self) -> FrozenSet[ItemType]:
		return frozenset(step.type for step in self.steps)


def _step(item_type: ItemType, *depends_on: ItemType) -> PipelineStep:
	return PipelineStep(item_type, frozenset(depends_on))


PIPELINES: Dict[str, Pipeline] = {
	pipeline.id: pipeline
	for pipeline in (
		Pipeline(
			"enhanced-images-only",
			"Enhanced Images Only",
			"Generate enhanced product images",
			(_step(ItemType.ENHANCED_IMAGES),),
		),
		Pipeline(
			"viral-copy-only",
			"Viral Copy Only",
			"Generate viral marketing copy",
			(_step(ItemType.VIRAL_COPY),),
		),
		Pipeline(
			"product-description-only",
			"Product Description Only",
			"Generate a product description",
			(_step(ItemType.PRODUCT_DESCRIPTION),),
		),
		Pipeline(
			"text-only-multiple",
			"Text Only (Multiple)",
			"Generate viral copy and a product description, plus voice-over when requested",
			(
				_step(ItemType.VIRAL_COPY),
				_step(ItemType.PRODUCT_DESCRIPTION),
				_step(ItemType.VOICE_OVER, ItemType.VIRAL_COPY),
			),
		),
		Pipeline(
			"voice-over-only",
			"Voice-Over Only",
			"Generate voice-over from text",
			(
				_step(ItemType.VIRAL_COPY),
				_step(ItemType.VOICE_OVER, ItemType.VIRAL_COPY),
			),
		),
		Pipeline(
			"promotional-video-basic",
			"Promotional Video (Basic)",
			"Video with enhanced images only",
			(
				_step(ItemType.ENHANCED_IMAGES),
				_step(ItemType.PROMOTIONAL_VIDEO, ItemType.ENHANCED_IMAGES),
			),
		),
		Pipeline(
			"promotional-video-with-text",
			"Promotional Video with Text",
			"Video with enhanced images and viral copy",
			(
				_step(ItemType.ENHANCED_IMAGES),
				_step(ItemType.VIRAL_COPY),
				_step(ItemType.PROMOTIONAL_VIDEO, ItemType.ENHANCED_IMAGES, ItemType.VIRAL_COPY),
			),
		),
		Pipeline(
			"promotional-video-with-voiceover",
			"Promotional Video with Voice-Over",
			"Video with enhanced images, text, and voice-over",
			(
				_step(ItemType.ENHANCED_IMAGES),
				_step(ItemType.VIRAL_COPY),
				_step(ItemType.VOICE_OVER, ItemType.VIRAL_COPY),
				_step(ItemType.PROMOTIONAL_VIDEO, ItemType.ENHANCED_IMAGES, ItemType.VIRAL_COPY, ItemType.VOICE_OVER),
			),
		),
		Pipeline(
			"promotional-video-full",
			"Promotional Video (Full)",
			"Complete video with images, text, voice-over, and captions",
			(
				_step(ItemType.ENHANCED_IMAGES),
				_step(ItemType.VIRAL_COPY),
				_step(ItemType.VOICE_OVER, ItemType.VIRAL_COPY),
				_step(ItemType.CAPTIONS, ItemType.VOICE_OVER),
				_step(ItemType.PROMOTIONAL_VIDEO, ItemType.ENHANCED_IMAGES, ItemType.VIRAL_COPY, ItemType.VOICE_OVER, ItemType.CAPTIONS),
			),
		),
	)
}


def resolve_pipeline(item_types: Iterable[ItemType | str]) -> str:
	"""Map a set of requested item types onto one pipeline name.

	Pure and total: duplicates and order are irrelevant, unknown combinations fall
	back to the default pipeline. A lone voice-over request resolves to the
	default because the voice-over rule also needs viral copy.
	"""
	requested = frozenset(ItemType(t) for t in item_types)
	for required, name in PIPELINE_RULES:
		if required <= requested:
			return name
	return DEFAULT_PIPELINE


def list_pipelines() -> List[Dict[str, str]]:
	return [
		{"id": pipeline.id, "name": pipeline.name, "description": pipeline.description}
		for pipeline in PIPELINES.values()
	]


def validate_pipeline(pipeline: Pipeline) -> Tuple[bool, List[str]]:
	"""Check that every step's dependencies appear earlier in the step list."""
	errors: List[str] = []
	seen: set = set()
	for step in pipeline.steps:
		for dep in sorted(step.depends_on, key=lambda t: t.value):
			if dep not in seen:
				errors.append(f"Step {step.type.value} depends on {dep.value} which hasn't been completed yet")
		seen.add(step.type)
	return not errors, errors


def build_execution_plan(pipeline_name: str, item_types: Iterable[ItemType | str]) -> List[PipelineStep]:
	"""Steps to run for a job with the given item types.

	The pipeline's steps come first, restricted to types the job has; types the
	pipeline does not name follow with their default dependencies. A dependency
	only applies when the job has an item of that type.
	"""
	present = frozenset(ItemType(t) for t in item_types)
	pipeline = PIPELINES.get(pipeline_name) or PIPELINES[DEFAULT_PIPELINE]

	plan: List[PipelineStep] = []
	planned: set = set()
	for step in pipeline.steps:
		if step.type in present and step.type not in planned:
			plan.append(PipelineStep(step.type, step.depends_on & present))
			planned.add(step.type)

	for item_type in ItemType:
		if item_type in present and item_type not in planned:
			plan.append(PipelineStep(item_type, DEFAULT_DEPENDENCIES[item_type] & present))
			planned.add(item_type)
	return plan


def dependencies_by_type(pipeline_name: str, item_types: Iterable[ItemType | str]) -> Dict[ItemType, FrozenSet[ItemType]]:
	return {step.type: step.depends_on for step in build_execution_plan(pipeline_name, item_types)}

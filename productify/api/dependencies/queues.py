from fastapi import Request

from productify.services.queue_services import QueueRegistry


def get_queue_registry(request: Request) -> QueueRegistry:
	"""The registry built at application startup."""
	return request.app.state.queues

from fastapi import Depends

from productify.api.router import create_router
from productify.api.dependencies.auth import get_current_user
from productify.api.dependencies.queues import get_queue_registry
from productify.schemas.queue import QueueStats
from productify.services.pipelines import list_pipelines
from productify.services.queue_services import QueueRegistry


router = create_router(name="queues", dependencies=[Depends(get_current_user)])


@router.get("/pipelines")
def get_pipelines():
	return list_pipelines()


@router.get("/{queue_name}/stats", response_model=QueueStats)
def get_queue_stats(
	queue_name: str,
	queues: QueueRegistry = Depends(get_queue_registry),
):
	return queues.get(queue_name).stats()

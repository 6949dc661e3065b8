# worker.py
import logging
import signal
import sys

from productify.core.config import settings
from productify.db.session import SessionLocal
from productify.db import base  # noqa: F401  # registers all models
from productify.generators.contracts import load_generation_client
from productify.workers.runtime import WorkerRuntime


def main() -> int:
	logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
	if not settings.GENERATORS_FACTORY:
		logging.getLogger("worker").error("GENERATORS_FACTORY is not set; expected 'module:attribute'")
		return 2

	runtime = WorkerRuntime(SessionLocal, settings, load_generation_client(settings.GENERATORS_FACTORY))

	def _shutdown(signum, frame):
		runtime.stop_event.set()

	signal.signal(signal.SIGINT, _shutdown)
	signal.signal(signal.SIGTERM, _shutdown)

	runtime.start()
	runtime.stop_event.wait()
	runtime.stop()
	return 0


if __name__ == "__main__":
	sys.exit(main())

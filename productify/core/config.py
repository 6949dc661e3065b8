import os
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
	# Accept a direct URL (supports either DATABASE_URL or database_url env vars)
	database_url: str | None = None

	# Individual parts; only used when no explicit URL is configured
	DB_DRIVER: str | None = None
	DB_HOST: str = "localhost"
	DB_USER: str = ""
	DB_PASSWORD: str = ""
	DB_NAME: str = "productify"
	DB_PORT: int = 5432
	SQLITE_PATH: str = "./productify.db"

	SECRET_KEY: str = "secret"
	ALGORITHM: str = "HS256"
	ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

	# Observability / Telemetry flags
	LOG_LEVEL: str = "INFO"
	ENABLE_REQUEST_LOGGING: bool = True
	ENABLE_OUTBOUND_LOGGING: bool = True
	LOG_SAMPLE_RATE: float = 1.0

	# Queue defaults, overridable per enqueue
	QUEUE_DEFAULT_ATTEMPTS: int = 3
	QUEUE_BACKOFF_DELAY_MS: int = 2000
	QUEUE_REMOVE_ON_COMPLETE_SECONDS: int = 24 * 3600
	QUEUE_REMOVE_ON_FAIL_SECONDS: int = 7 * 24 * 3600
	QUEUE_LEASE_SECONDS: int = 15 * 60
	QUEUE_POLL_INTERVAL_SECONDS: float = 1.0

	# Worker process
	WORKER_CONCURRENCY_ORCHESTRATOR: int = 1
	WORKER_CONCURRENCY_IMAGES: int = 2
	WORKER_CONCURRENCY_TEXT: int = 4
	WORKER_CONCURRENCY_VOICEOVER: int = 2
	WORKER_CONCURRENCY_CAPTIONS: int = 2
	WORKER_CONCURRENCY_VIDEO: int = 1
	MAINTENANCE_INTERVAL_SECONDS: int = 15 * 60
	STALE_JOB_TIMEOUT_MINUTES: int = 60
	GENERATORS_FACTORY: str | None = None

	# Prefer explicit database_url if provided; otherwise assemble from parts
	@property
	def DATABASE_URL(self) -> str:
		# 1) Value from settings (supports .env and OS env via BaseSettings)
		if self.database_url and self.database_url.strip():
			return self.database_url.strip()
		# 2) Raw OS env (e.g., uppercase on Windows), as a fallback
		explicit_url = os.getenv("DATABASE_URL")
		if explicit_url and explicit_url.strip():
			return explicit_url.strip()
		# 3) Assemble from parts, or fall back to a local SQLite file
		if self.DB_DRIVER:
			return f"{self.DB_DRIVER}://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
		return f"sqlite:///{self.SQLITE_PATH}"

	def stage_concurrency(self, queue_name: str) -> int:
		"""Worker slots for a queue; queue names map onto the WORKER_CONCURRENCY_* keys."""
		key = "WORKER_CONCURRENCY_" + queue_name.replace("-queue", "").upper()
		return max(1, int(getattr(self, key, 1)))

	# Pydantic v2 settings config
	model_config = SettingsConfigDict(
		env_file=".env",
		extra="ignore",  # tolerate unrelated env vars like database_url
		case_sensitive=False,  # accept lowercase keys on Windows and in .env
	)

settings = Settings()

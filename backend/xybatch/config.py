"""Application configuration using Pydantic Settings."""
from pathlib import Path
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Application
    APP_NAME: str = "XY Batch Sweep Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./data/xybatch.db"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Task queue — defaults keep a single provider call in flight and
    # space batches to stay under the providers' implicit rate limits.
    QUEUE_CONCURRENCY: int = 1
    QUEUE_BATCH_DELAY_SECONDS: float = 2.0

    # Client-side polling
    POLL_INTERVAL_SECONDS: float = 3.0
    POLL_MIN_INTERVAL_SECONDS: float = 2.0
    POLL_DEBOUNCE_SECONDS: float = 0.5
    RECENT_GENERATIONS_LIMIT: int = 50

    # Provider credentials
    ARK_API_KEY: str = ""          # doubao-seedream
    DASHSCOPE_API_KEY: str = ""    # qwen-image
    PPINFRA_API_KEY: str = ""      # nano-banana
    INFINI_AI_API_KEY: str = ""    # comfy-stack

    # Nano Banana submits a task and polls its status endpoint
    NANO_BANANA_POLL_INTERVAL_SECONDS: float = 10.0
    NANO_BANANA_MAX_POLLS: int = 60  # ~10 minutes

    # ComfyStack polls its task-info endpoint the same way
    COMFY_POLL_INTERVAL_SECONDS: float = 10.0
    COMFY_MAX_POLLS: int = 60

    # Excel export downloads each result image before embedding it
    EXPORT_IMAGE_TIMEOUT_SECONDS: float = 30.0

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def database_path(self) -> Path | None:
        """Filesystem path of a SQLite database, or None for other backends."""
        if not self.DATABASE_URL.startswith("sqlite:///"):
            return None
        raw = self.DATABASE_URL.replace("sqlite:///", "")
        if not raw or raw == ":memory:":
            return None
        return Path(raw)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()

# hirehub/core/config.py
import logging
from functools import lru_cache
from typing import Annotated, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    SECRET_KEY: str = "change-me"  # override in .env / secrets
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Persisted stores: "memory" for dev/tests, "mongo" for deployments
    STORE_BACKEND: str = "memory"
    MONGODB_URI: Optional[str] = "mongodb://localhost:27017/hirehub"
    MONGODB_DB: Optional[str] = "hirehub"

    # Redis (evaluation queue)
    REDIS_URL: str = "redis://localhost:6379/0"
    # "inline" runs evaluations as in-process background tasks,
    # "stream" hands them to the Redis Streams worker
    EVALUATION_DISPATCH: str = "inline"
    WORKER_MAX_RETRIES: int = 3
    WORKER_READ_BLOCK_MS: int = 5000
    WORKER_CLAIM_IDLE_MS: int = 30_000

    # S3 / R2 resume storage; local directory fallback when unset
    S3_BUCKET: Optional[str] = None
    S3_ENDPOINT: Optional[str] = None
    S3_REGION: Optional[str] = None
    S3_ACCESS_KEY: Optional[str] = None
    S3_SECRET_KEY: Optional[str] = None
    LOCAL_UPLOAD_DIR: str = "uploads"

    # Generative scorer
    # Adapter selection: 'mock', 'http' or 'gemini'
    SCORER_ADAPTER: str = "mock"
    # ordered by priority; env value is a comma separated list
    SCORER_MODELS: Annotated[List[str], NoDecode] = [
        "gemini-2.5-flash-lite",
        "gemini-2.0-flash-lite",
        "gemini-2.5-flash",
        "gemini-2.0-flash",
        "gemini-2.5-pro",
    ]
    SCORER_MAX_ATTEMPTS: int = 3
    SCORER_RETRY_DELAY_SEC: float = 1.0
    SCORER_TIMEOUT_SEC: float = 60.0
    SCORER_HTTP_URL: Optional[str] = None
    SCORER_API_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None

    # Resume evaluation
    RESUME_ALLOWED_TYPES: Annotated[List[str], NoDecode] = [
        ".pdf", ".doc", ".docx", ".txt", ".jpg", ".jpeg", ".png",
    ]
    RESUME_MAX_BYTES: int = 10 * 1024 * 1024
    REVIEW_MIN_LENGTH: int = 100

    # Realtime: backlog at which droppable events (typing) are discarded
    WS_SEND_QUEUE_LIMIT: int = 100

    # Rate limits (0 disables)
    RATE_LIMIT_EVALUATIONS: int = 10
    RATE_LIMIT_EVALUATIONS_WINDOW_SEC: int = 60 * 60
    RATE_LIMIT_MESSAGES: int = 0
    RATE_LIMIT_MESSAGES_WINDOW_SEC: int = 60

    # Pydantic v2 settings: read from .env file
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("SCORER_MODELS", "RESUME_ALLOWED_TYPES", mode="before")
    @classmethod
    def _split_csv(cls, v):
        if isinstance(v, str):
            return [part.strip() for part in v.split(",") if part.strip()]
        return v

    @field_validator("RESUME_ALLOWED_TYPES")
    @classmethod
    def _normalize_extensions(cls, v: List[str]) -> List[str]:
        out = []
        for ext in v:
            ext = ext.strip().lower()
            out.append(ext if ext.startswith(".") else f".{ext}")
        return out

    @field_validator("SCORER_MODELS")
    @classmethod
    def _at_least_one_model(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("SCORER_MODELS must list at least one model")
        return v


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# single shared settings instance
settings = get_settings()


def configure_logging(level: Optional[str] = None) -> None:
    """Apply the process-wide logging format; safe to call more than once."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

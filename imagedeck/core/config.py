from pathlib import Path
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PROJECT_NAME: str = "Image Deck Studio"
    API_V1_PREFIX: str = "/api/v1"

    # ===========================================
    # Environment Mode
    # ===========================================
    ENV: Literal["development", "production"] = "development"

    # ===========================================
    # Local Storage
    # ===========================================
    # Root directory for decks, global entities and settings.json
    STORAGE_PATH: str = "~/.ai-image-decks"
    MAX_UPLOAD_SIZE_MB: int = 10
    # Remove orphaned slide directories and stale temp files on startup
    RECONCILE_ON_STARTUP: bool = False

    # ===========================================
    # Generation Orchestration
    # ===========================================
    MAX_CONCURRENT_GENERATIONS: int = 5
    GENERATION_MAX_RETRIES: int = 3
    GENERATION_RETRY_INITIAL_DELAY: float = 1.0  # seconds, doubled per attempt
    # Bulk jobs are dropped this long after creation, whatever their status
    JOB_TTL_SECONDS: int = 3600

    # ===========================================
    # Gemini Image Generation
    # ===========================================
    GEMINI_API_KEY: Optional[str] = None
    GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_TIMEOUT: int = 120  # seconds

    # ===========================================
    # OpenAI Image Generation
    # ===========================================
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_BASE: str = "https://api.openai.com/v1"
    OPENAI_IMAGE_MODEL: str = "gpt-image-1"
    # Chat model that drafts image descriptions from speaker notes
    OPENAI_CHAT_MODEL: str = "gpt-4o-mini"
    OPENAI_TIMEOUT: int = 180  # seconds

    # Comma separated list, empty means localhost dev origins
    CORS_ORIGINS: str = ""

    @field_validator("MAX_CONCURRENT_GENERATIONS")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Concurrency cap must allow at least one in-flight call."""
        if v < 1:
            raise ValueError("MAX_CONCURRENT_GENERATIONS must be at least 1")
        return v

    @property
    def storage_dir(self) -> Path:
        """Storage root with `~` expanded."""
        return Path(self.STORAGE_PATH).expanduser()

    class Config:
        env_file = ".env"


settings = Settings()

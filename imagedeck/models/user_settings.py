"""
Process-wide user settings, persisted as settings.json (mode 0600).
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_SERVICE = "gemini-pro"
DEFAULT_VARIANT_COUNT = 2


class GoogleCredentials(BaseModel):
    """OAuth credentials used by the Google Slides exporter."""

    client_id: str
    client_secret: str
    refresh_token: str
    email: str
    connected_at: datetime


class GoogleSlidesSettings(BaseModel):
    credentials: Optional[GoogleCredentials] = None


class UserSettings(BaseModel):
    default_service: str = DEFAULT_SERVICE
    default_variant_count: int = Field(DEFAULT_VARIANT_COUNT, ge=1, le=10)
    google_slides: GoogleSlidesSettings = Field(default_factory=GoogleSlidesSettings)

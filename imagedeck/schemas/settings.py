"""
Settings API schemas. Stored credentials are never returned to the client.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from imagedeck.models.slide import ImageService
from imagedeck.models.user_settings import UserSettings


class GoogleSlidesStatus(BaseModel):
    connected: bool = False
    email: Optional[str] = None
    connected_at: Optional[datetime] = None


class SettingsOut(BaseModel):
    default_service: str
    default_variant_count: int
    google_slides: GoogleSlidesStatus
    # Which providers have an API key configured on the server
    gemini_configured: bool = False
    openai_configured: bool = False

    @classmethod
    def from_settings(
        cls,
        user_settings: UserSettings,
        gemini_configured: bool = False,
        openai_configured: bool = False,
    ) -> "SettingsOut":
        credentials = user_settings.google_slides.credentials
        return cls(
            default_service=user_settings.default_service,
            default_variant_count=user_settings.default_variant_count,
            google_slides=GoogleSlidesStatus(
                connected=credentials is not None,
                email=credentials.email if credentials else None,
                connected_at=credentials.connected_at if credentials else None,
            ),
            gemini_configured=gemini_configured,
            openai_configured=openai_configured,
        )


class SettingsUpdate(BaseModel):
    default_service: Optional[ImageService] = None
    default_variant_count: Optional[int] = Field(None, ge=1, le=10)


class ApiKeyTest(BaseModel):
    service: ImageService
    # Omitted means check the key the server is configured with
    api_key: Optional[str] = Field(None, min_length=10, max_length=500)


class ApiKeyTestOut(BaseModel):
    valid: bool
    message: str

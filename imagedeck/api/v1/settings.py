"""
User settings endpoints. Google credentials are stored but never returned.
"""
import logging
from typing import Dict

from fastapi import APIRouter, Depends

from imagedeck.core.deps import get_providers, get_store
from imagedeck.core.exceptions import NotFoundError
from imagedeck.models.user_settings import UserSettings
from imagedeck.schemas.settings import ApiKeyTest, ApiKeyTestOut, SettingsOut, SettingsUpdate
from imagedeck.services.image_client import ImageProvider
from imagedeck.services.storage import DocumentStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])


def _settings_out(user_settings: UserSettings, providers: Dict[str, ImageProvider]) -> SettingsOut:
    def configured(prefix: str) -> bool:
        return any(p.is_configured() for name, p in providers.items() if name.startswith(prefix))

    return SettingsOut.from_settings(
        user_settings,
        gemini_configured=configured("gemini"),
        openai_configured=configured("openai"),
    )


@router.get("", response_model=SettingsOut)
async def get_settings(
    store: DocumentStore = Depends(get_store),
    providers: Dict[str, ImageProvider] = Depends(get_providers),
):
    return _settings_out(store.get_settings(), providers)


@router.put("", response_model=SettingsOut)
async def update_settings(
    data: SettingsUpdate,
    store: DocumentStore = Depends(get_store),
    providers: Dict[str, ImageProvider] = Depends(get_providers),
):
    """
    Update the default image service and/or variant count.
    """
    updates = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
    return _settings_out(store.update_settings(updates), providers)


@router.post("/google/disconnect", response_model=SettingsOut)
async def disconnect_google(
    store: DocumentStore = Depends(get_store),
    providers: Dict[str, ImageProvider] = Depends(get_providers),
):
    """
    Forget stored Google Slides credentials.
    """
    user_settings = store.get_settings()
    user_settings.google_slides.credentials = None
    store.save_settings(user_settings)
    logger.info("Google Slides credentials removed")
    return _settings_out(user_settings, providers)


@router.post("/test-api-key", response_model=ApiKeyTestOut)
async def check_api_key(
    data: ApiKeyTest,
    providers: Dict[str, ImageProvider] = Depends(get_providers),
):
    """
    Check an API key against the provider without generating an image.

    An invalid key is reported in the body, not as an error status.
    """
    provider = providers.get(data.service)
    if provider is None:
        raise NotFoundError(f"Image service '{data.service}' not available")

    valid, message = await provider.verify_api_key(data.api_key)
    logger.info(f"API key check for {data.service}: {'valid' if valid else 'invalid'}")
    return ApiKeyTestOut(valid=valid, message=message)

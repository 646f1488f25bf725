"""
Health check endpoints for system status, storage and image providers.
"""
import os
from typing import Dict

from fastapi import APIRouter, Depends

from imagedeck.core.config import settings
from imagedeck.core.deps import get_providers, get_store
from imagedeck.services.image_client import ImageProvider
from imagedeck.services.storage import DocumentStore

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health_check():
    """
    Basic health check endpoint.

    Returns:
        Simple status message indicating the API is running
    """
    return {
        "status": "ok",
        "service": settings.PROJECT_NAME,
    }


@router.get("/storage")
async def storage_health_check(store: DocumentStore = Depends(get_store)):
    """
    Check that the storage root exists and is writable.
    """
    base_dir = store.base_dir
    writable = base_dir.is_dir() and os.access(base_dir, os.W_OK)
    return {
        "status": "healthy" if writable else "unhealthy",
        "storage_path": str(base_dir),
        "writable": writable,
    }


@router.get("/providers")
async def providers_health_check(providers: Dict[str, ImageProvider] = Depends(get_providers)):
    """
    Report which image services have credentials configured.

    No request is sent to the providers.
    """
    services = {name: {"configured": p.is_configured()} for name, p in providers.items()}
    any_configured = any(s["configured"] for s in services.values())
    return {
        "status": "healthy" if any_configured else "degraded",
        "services": services,
    }

"""
Common dependencies for FastAPI endpoints.
"""
from typing import Dict, Optional

from imagedeck.services.description_generator import DescriptionGenerator, get_description_generator
from imagedeck.services.generation import GenerationService
from imagedeck.services.image_client import ImageProvider, get_image_providers
from imagedeck.services.image_processor import ImageProcessor
from imagedeck.services.job_store import InMemoryJobStore, JobStore
from imagedeck.services.storage import DocumentStore, get_document_store

_job_store: Optional[JobStore] = None
_generation_service: Optional[GenerationService] = None


def get_store() -> DocumentStore:
    """Document store for the configured storage root."""
    return get_document_store()


def get_job_store() -> JobStore:
    """Process-wide job store (singleton)."""
    global _job_store
    if _job_store is None:
        _job_store = InMemoryJobStore()
    return _job_store


def get_providers() -> Dict[str, ImageProvider]:
    return get_image_providers()


def get_describer() -> DescriptionGenerator:
    return get_description_generator()


def get_generation_service() -> GenerationService:
    """
    Process-wide generation service (singleton).

    A single instance owns the references to running bulk jobs.
    """
    global _generation_service
    if _generation_service is None:
        _generation_service = GenerationService(
            store=get_store(),
            job_store=get_job_store(),
            providers=get_providers(),
            processor=ImageProcessor(),
        )
    return _generation_service

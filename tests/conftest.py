"""
Pytest configuration and fixtures for the test suite.
"""
import io
import os
import tempfile
from typing import Dict, Generator, List, Optional, Sequence

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Set test environment before importing app
os.environ["ENV"] = "development"
os.environ["STORAGE_PATH"] = tempfile.mkdtemp(prefix="imagedeck-test-")
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""

from imagedeck.main import app
from imagedeck.core.deps import get_generation_service, get_job_store, get_providers, get_store
from imagedeck.services.generation import GenerationService
from imagedeck.services.image_client import ImageProvider, ReferenceImage
from imagedeck.services.image_processor import ImageProcessor
from imagedeck.services.job_store import InMemoryJobStore
from imagedeck.services.storage import DocumentStore


def make_image_bytes(width: int = 1920, height: int = 1080, fmt: str = "PNG", color=(40, 90, 160)) -> bytes:
    """Solid-color image of the given size."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeImageProvider(ImageProvider):
    """
    In-memory provider.

    `errors` are raised by successive calls before calls start succeeding.
    """

    def __init__(self, service: str, configured: bool = True, image: Optional[bytes] = None):
        self.service = service
        self.configured = configured
        self.image = image or make_image_bytes()
        self.errors: List[Exception] = []
        self.always_fail: Optional[Exception] = None
        self.generate_calls: List[Dict] = []
        self.edit_calls: List[Dict] = []
        self.checked_keys: List[Optional[str]] = []

    def is_configured(self) -> bool:
        return self.configured

    def _next(self) -> bytes:
        if self.always_fail is not None:
            raise self.always_fail
        if self.errors:
            raise self.errors.pop(0)
        return self.image

    async def generate(self, prompt: str, reference_images: Optional[Sequence[ReferenceImage]] = None) -> bytes:
        self.generate_calls.append({"prompt": prompt, "reference_images": list(reference_images or [])})
        return self._next()

    async def edit(self, source_image: bytes, prompt: str) -> bytes:
        self.edit_calls.append({"source_image": source_image, "prompt": prompt})
        return self._next()

    async def verify_api_key(self, api_key: Optional[str] = None):
        self.checked_keys.append(api_key)
        if api_key == "bad-key-0000":
            return False, "Invalid API key"
        return await super().verify_api_key(api_key)


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def image_factory():
    """Callable building solid-color test images."""
    return make_image_bytes


@pytest.fixture
def store(tmp_path) -> DocumentStore:
    """Document store rooted in a fresh temp directory."""
    return DocumentStore(tmp_path / "decks")


@pytest.fixture
def job_store() -> InMemoryJobStore:
    return InMemoryJobStore(ttl_seconds=3600)


@pytest.fixture
def providers() -> Dict[str, FakeImageProvider]:
    return {
        "gemini-flash": FakeImageProvider("gemini-flash"),
        "gemini-pro": FakeImageProvider("gemini-pro"),
        "openai-gpt-image": FakeImageProvider("openai-gpt-image"),
    }


@pytest.fixture
def generation_service(store, job_store, providers) -> GenerationService:
    """Generation service with fake providers and no retry delay."""
    return GenerationService(
        store=store,
        job_store=job_store,
        providers=providers,
        processor=ImageProcessor(),
        concurrency=5,
        max_retries=3,
        retry_initial_delay=0.0,
        sleep=no_sleep,
    )


@pytest.fixture
def deck(store):
    """A deck with a visual style."""
    return store.create_deck("Quarterly Review", "Watercolor illustration")


@pytest.fixture
def client(store, job_store, providers, generation_service) -> Generator[TestClient, None, None]:
    """Create a test client with storage and provider overrides."""
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_job_store] = lambda: job_store
    app.dependency_overrides[get_providers] = lambda: providers
    app.dependency_overrides[get_generation_service] = lambda: generation_service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

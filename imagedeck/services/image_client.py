"""
Image Client - thin clients for the image generation providers.

Services:
- gemini-flash: Gemini gemini-2.5-flash-image
- gemini-pro: Gemini gemini-3-pro-image-preview
- openai-gpt-image: OpenAI gpt-image-1

HTTP failures are mapped to the provider error taxonomy so the orchestrator
can decide what to retry:
- 401/403 -> InvalidCredentialsError
- 400 mentioning safety/policy -> ContentPolicyError
- 404 -> NotFoundError
- 429, 5xx, timeouts, connection errors -> TransientProviderError
- other 4xx -> TerminalProviderError
"""
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from imagedeck.core.config import settings
from imagedeck.core.exceptions import (
    ContentPolicyError,
    InvalidCredentialsError,
    NotFoundError,
    TerminalProviderError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

GEMINI_FLASH_MODEL = "gemini-2.5-flash-image"
GEMINI_PRO_MODEL = "gemini-3-pro-image-preview"

# gpt-image-1 has no 16:9 size; the widest landscape size is cropped later
OPENAI_LANDSCAPE_SIZE = "1536x1024"

POLICY_MARKERS = ("safety", "policy", "blocked", "moderation", "prohibited")

KEY_CHECK_TIMEOUT = 10.0  # seconds


@dataclass
class ReferenceImage:
    """An image sent alongside the prompt (entity likeness or theme)."""
    data: bytes
    mime_type: str = "image/jpeg"
    label: Optional[str] = None


def guess_mime_type(filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return {
        "png": "image/png",
        "webp": "image/webp",
        "gif": "image/gif",
    }.get(ext, "image/jpeg")


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:300]
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or error)
    if error:
        return str(error)
    return response.text[:300]


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Raise the matching provider error for a non-2xx response."""
    if response.is_success:
        return

    code = response.status_code
    message = _error_message(response)

    if code in (401, 403):
        raise InvalidCredentialsError(f"{provider}: API key invalid ({message})")
    if code == 400 and any(marker in message.lower() for marker in POLICY_MARKERS):
        raise ContentPolicyError(f"Content policy violation: {message}")
    if code == 404:
        raise NotFoundError(f"{provider}: model or endpoint not found ({message})")
    if code == 429 or code >= 500:
        raise TransientProviderError(f"{provider} returned {code}: {message}")
    raise TerminalProviderError(f"{provider} rejected the request ({code}): {message}")


async def check_models_endpoint(
    url: str,
    headers: Dict[str, str],
    provider: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[bool, str]:
    """
    Check an API key by listing the provider's models.

    Returns:
        (valid, message); never raises for HTTP or network failures
    """
    try:
        async with httpx.AsyncClient(timeout=KEY_CHECK_TIMEOUT, transport=transport) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as e:
        logger.warning(f"{provider} key check could not reach {url}: {e}")
        return False, f"Could not reach {provider}: {e}"

    if response.status_code == 200:
        return True, f"{provider} API key is valid"

    message = _error_message(response)
    # Gemini reports a bad key as 400 INVALID_ARGUMENT
    if response.status_code in (401, 403) or "api key" in message.lower():
        return False, "Invalid API key"
    return False, f"API key test failed: HTTP {response.status_code}: {message}"


class ImageProvider(ABC):
    """Image generation capability."""

    service: str

    @abstractmethod
    def is_configured(self) -> bool:
        """True if the provider has the credentials it needs."""
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        reference_images: Optional[Sequence[ReferenceImage]] = None,
    ) -> bytes:
        """Generate one image. Returns raw image bytes (any format)."""
        pass

    @abstractmethod
    async def edit(self, source_image: bytes, prompt: str) -> bytes:
        """Produce a variant of `source_image` following `prompt`."""
        pass

    async def verify_api_key(self, api_key: Optional[str] = None) -> Tuple[bool, str]:
        """
        Check an API key without generating anything.

        Args:
            api_key: Key to check (default: the configured key)

        Returns:
            (valid, message)
        """
        if self.is_configured():
            return True, f"{self.service} is configured"
        return False, "No API key configured"


class GeminiImageProvider(ImageProvider):
    """Gemini generateContent client with IMAGE response modality."""

    def __init__(
        self,
        service: str,
        model: str,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.service = service
        self.model = model
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.api_base = (api_base or settings.GEMINI_API_BASE).rstrip("/")
        self.timeout = timeout or settings.GEMINI_TIMEOUT
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        prompt: str,
        reference_images: Optional[Sequence[ReferenceImage]] = None,
    ) -> bytes:
        parts: List[Dict[str, Any]] = []
        for ref in reference_images or []:
            if ref.label:
                parts.append({"text": f"Reference image: {ref.label}"})
            parts.append({
                "inline_data": {
                    "mime_type": ref.mime_type,
                    "data": base64.b64encode(ref.data).decode("ascii"),
                }
            })
        parts.append({"text": prompt})
        return await self._generate_content(parts)

    async def edit(self, source_image: bytes, prompt: str) -> bytes:
        parts = [
            {
                "inline_data": {
                    "mime_type": "image/jpeg",
                    "data": base64.b64encode(source_image).decode("ascii"),
                }
            },
            {"text": prompt},
        ]
        return await self._generate_content(parts)

    async def verify_api_key(self, api_key: Optional[str] = None) -> Tuple[bool, str]:
        key = api_key or self.api_key
        if not key:
            return False, "No API key configured"
        return await check_models_endpoint(
            f"{self.api_base}/models",
            {"x-goog-api-key": key},
            "Gemini",
            transport=self._transport,
        )

    async def _generate_content(self, parts: List[Dict[str, Any]]) -> bytes:
        if not self.is_configured():
            raise InvalidCredentialsError("Gemini API key invalid (not configured)")

        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "responseModalities": ["IMAGE"],
                "imageConfig": {"aspectRatio": "16:9"},
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                logger.info(f"Requesting image from {self.model}")
                response = await client.post(
                    f"{self.api_base}/models/{self.model}:generateContent",
                    json=payload,
                    headers={"x-goog-api-key": self.api_key},
                )
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"Gemini request timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"Failed to reach Gemini at {self.api_base}: {e}") from e

        raise_for_provider_status(response, "Gemini")
        return self._extract_image(response.json())

    @staticmethod
    def _extract_image(data: Dict[str, Any]) -> bytes:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise ContentPolicyError(f"Content policy violation: prompt blocked ({block_reason})")

        candidates = data.get("candidates") or []
        if not candidates:
            raise TerminalProviderError("Gemini returned no candidates")

        candidate = candidates[0]
        for part in (candidate.get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return base64.b64decode(inline["data"])

        finish_reason = candidate.get("finishReason", "")
        if finish_reason in ("SAFETY", "PROHIBITED_CONTENT", "IMAGE_SAFETY"):
            raise ContentPolicyError(f"Content policy violation: generation stopped ({finish_reason})")
        raise TerminalProviderError("No image data found in Gemini response")


class OpenAIImageProvider(ImageProvider):
    """OpenAI Images API client (generations and edits)."""

    service = "openai-gpt-image"

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.api_base = (api_base or settings.OPENAI_API_BASE).rstrip("/")
        self.model = model or settings.OPENAI_IMAGE_MODEL
        self.timeout = timeout or settings.OPENAI_TIMEOUT
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        prompt: str,
        reference_images: Optional[Sequence[ReferenceImage]] = None,
    ) -> bytes:
        if reference_images:
            files = [
                ("image[]", (f"reference-{i}.{ref.mime_type.split('/')[-1]}", ref.data, ref.mime_type))
                for i, ref in enumerate(reference_images)
            ]
            return await self._post("images/edits", data=self._form(prompt), files=files)
        return await self._post(
            "images/generations",
            json={"model": self.model, "prompt": prompt, "n": 1, "size": OPENAI_LANDSCAPE_SIZE},
        )

    async def edit(self, source_image: bytes, prompt: str) -> bytes:
        files = [("image[]", ("source.jpg", source_image, "image/jpeg"))]
        return await self._post("images/edits", data=self._form(prompt), files=files)

    async def verify_api_key(self, api_key: Optional[str] = None) -> Tuple[bool, str]:
        key = api_key or self.api_key
        if not key:
            return False, "No API key configured"
        return await check_models_endpoint(
            f"{self.api_base}/models",
            {"Authorization": f"Bearer {key}"},
            "OpenAI",
            transport=self._transport,
        )

    def _form(self, prompt: str) -> Dict[str, str]:
        return {"model": self.model, "prompt": prompt, "n": "1", "size": OPENAI_LANDSCAPE_SIZE}

    async def _post(self, endpoint: str, **kwargs: Any) -> bytes:
        if not self.is_configured():
            raise InvalidCredentialsError("OpenAI API key invalid (not configured)")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                logger.info(f"Requesting image from OpenAI {endpoint} ({self.model})")
                response = await client.post(
                    f"{self.api_base}/{endpoint}",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    **kwargs,
                )
        except httpx.TimeoutException as e:
            raise TransientProviderError(f"OpenAI request timed out after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise TransientProviderError(f"Failed to reach OpenAI at {self.api_base}: {e}") from e

        raise_for_provider_status(response, "OpenAI")

        data = response.json().get("data") or []
        if not data or not data[0].get("b64_json"):
            raise TerminalProviderError("No image data found in OpenAI response")
        return base64.b64decode(data[0]["b64_json"])


# Provider registry, keyed by service name
_providers: Optional[Dict[str, ImageProvider]] = None


def get_image_providers() -> Dict[str, ImageProvider]:
    """Get the provider registry (singleton), built from settings."""
    global _providers
    if _providers is None:
        _providers = {
            "gemini-flash": GeminiImageProvider("gemini-flash", GEMINI_FLASH_MODEL),
            "gemini-pro": GeminiImageProvider("gemini-pro", GEMINI_PRO_MODEL),
            "openai-gpt-image": OpenAIImageProvider(),
        }
    return _providers

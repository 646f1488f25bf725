"""
Tests for the image provider clients using httpx mock transports.
"""
import base64
import json

import httpx
import pytest

from imagedeck.core.exceptions import (
    ContentPolicyError,
    InvalidCredentialsError,
    NotFoundError,
    TerminalProviderError,
    TransientProviderError,
)
from imagedeck.services.image_client import (
    GeminiImageProvider,
    OpenAIImageProvider,
    ReferenceImage,
    guess_mime_type,
    raise_for_provider_status,
)

IMAGE = b"\x89PNG fake image"
ENCODED = base64.b64encode(IMAGE).decode("ascii")


def _gemini(handler, api_key="test-key") -> GeminiImageProvider:
    return GeminiImageProvider(
        "gemini-pro",
        "test-model",
        api_key=api_key,
        api_base="https://gemini.test/v1beta",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def _openai(handler, api_key="test-key") -> OpenAIImageProvider:
    return OpenAIImageProvider(
        api_key=api_key,
        api_base="https://openai.test/v1",
        model="gpt-image-1",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestRaiseForProviderStatus:
    """Tests for HTTP status to error mapping."""

    @pytest.mark.parametrize("code,body,error", [
        (401, {"error": {"message": "bad key"}}, InvalidCredentialsError),
        (403, {"error": "forbidden"}, InvalidCredentialsError),
        (400, {"error": {"message": "Request blocked by safety filters"}}, ContentPolicyError),
        (400, {"error": {"message": "Invalid size"}}, TerminalProviderError),
        (404, {"error": {"message": "no such model"}}, NotFoundError),
        (429, {"error": {"message": "slow down"}}, TransientProviderError),
        (503, {"error": {"message": "overloaded"}}, TransientProviderError),
    ])
    def test_mapping(self, code, body, error):
        response = httpx.Response(code, json=body)
        with pytest.raises(error):
            raise_for_provider_status(response, "Test")

    def test_success_passes(self):
        raise_for_provider_status(httpx.Response(200, json={}), "Test")

    def test_non_json_body(self):
        with pytest.raises(TransientProviderError) as exc_info:
            raise_for_provider_status(httpx.Response(502, text="Bad Gateway"), "Test")
        assert "Bad Gateway" in str(exc_info.value)


class TestGeminiImageProvider:
    """Tests for the Gemini client."""

    @pytest.mark.asyncio
    async def test_generate_with_references(self):
        """Test labelled references precede the prompt and the image is decoded."""
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["key"] = request.headers["x-goog-api-key"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": ENCODED}}]}}]
            })

        provider = _gemini(handler)
        result = await provider.generate("A cat", [ReferenceImage(b"ref", "image/png", "Bob")])

        assert result == IMAGE
        assert captured["url"] == "https://gemini.test/v1beta/models/test-model:generateContent"
        assert captured["key"] == "test-key"
        parts = captured["body"]["contents"][0]["parts"]
        assert parts[0] == {"text": "Reference image: Bob"}
        assert parts[1]["inline_data"]["mime_type"] == "image/png"
        assert parts[-1] == {"text": "A cat"}
        assert captured["body"]["generationConfig"]["responseModalities"] == ["IMAGE"]

    @pytest.mark.asyncio
    async def test_blocked_prompt(self):
        def handler(request):
            return httpx.Response(200, json={"promptFeedback": {"blockReason": "SAFETY"}})

        with pytest.raises(ContentPolicyError):
            await _gemini(handler).generate("Something")

    @pytest.mark.asyncio
    async def test_safety_finish_reason(self):
        def handler(request):
            return httpx.Response(200, json={"candidates": [{"finishReason": "IMAGE_SAFETY", "content": {"parts": []}}]})

        with pytest.raises(ContentPolicyError):
            await _gemini(handler).generate("Something")

    @pytest.mark.asyncio
    async def test_text_only_response(self):
        def handler(request):
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "No."}]}}]})

        with pytest.raises(TerminalProviderError):
            await _gemini(handler).generate("Something")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransientProviderError):
            await _gemini(handler).generate("Something")

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientProviderError):
            await _gemini(handler).edit(b"source", "Brighter")

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        def handler(request):
            raise AssertionError("no request expected")

        provider = _gemini(handler, api_key="")
        assert not provider.is_configured()
        with pytest.raises(InvalidCredentialsError):
            await provider.generate("Something")


class TestOpenAIImageProvider:
    """Tests for the OpenAI client."""

    @pytest.mark.asyncio
    async def test_generate_without_references(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["auth"] = request.headers["authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": [{"b64_json": ENCODED}]})

        result = await _openai(handler).generate("A cat")

        assert result == IMAGE
        assert captured["path"] == "/v1/images/generations"
        assert captured["auth"] == "Bearer test-key"
        assert captured["body"]["size"] == "1536x1024"

    @pytest.mark.asyncio
    async def test_references_use_edits_endpoint(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            assert b"image[]" in request.content
            return httpx.Response(200, json={"data": [{"b64_json": ENCODED}]})

        await _openai(handler).generate("A cat", [ReferenceImage(b"ref", "image/png", "Bob")])
        await _openai(handler).edit(b"source", "Brighter")

        assert paths == ["/v1/images/edits", "/v1/images/edits"]

    @pytest.mark.asyncio
    async def test_missing_image_data(self):
        def handler(request):
            return httpx.Response(200, json={"data": []})

        with pytest.raises(TerminalProviderError):
            await _openai(handler).generate("A cat")

    @pytest.mark.asyncio
    async def test_policy_rejection(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "Your request was rejected by the moderation system"}})

        with pytest.raises(ContentPolicyError):
            await _openai(handler).generate("A cat")


class TestVerifyApiKey:
    """Tests for key checks against the model listing endpoints."""

    @pytest.mark.asyncio
    async def test_gemini_valid(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path, request.headers["x-goog-api-key"]))
            return httpx.Response(200, json={"models": []})

        valid, message = await _gemini(handler, api_key="configured").verify_api_key("candidate-key")

        assert valid is True
        assert "valid" in message
        assert seen == [("GET", "/v1beta/models", "candidate-key")]

    @pytest.mark.asyncio
    async def test_gemini_bad_key_is_400(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "API key not valid. Please pass a valid API key."}})

        assert await _gemini(handler).verify_api_key() == (False, "Invalid API key")

    @pytest.mark.asyncio
    async def test_openai_uses_configured_key(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, request.headers["authorization"]))
            return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

        valid, message = await _openai(handler, api_key="sk-configured").verify_api_key()

        assert (valid, message) == (False, "Invalid API key")
        assert seen == [("/v1/models", "Bearer sk-configured")]

    @pytest.mark.asyncio
    async def test_server_error_reported(self):
        def handler(request):
            return httpx.Response(503, json={"error": {"message": "overloaded"}})

        valid, message = await _openai(handler).verify_api_key()
        assert valid is False
        assert "503" in message and "overloaded" in message

    @pytest.mark.asyncio
    async def test_unreachable_does_not_raise(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        valid, message = await _gemini(handler).verify_api_key()
        assert valid is False
        assert message.startswith("Could not reach Gemini")

    @pytest.mark.asyncio
    async def test_no_key(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert await _openai(handler, api_key="").verify_api_key() == (False, "No API key configured")


class TestGuessMimeType:
    """Tests for guess_mime_type."""

    def test_known(self):
        assert guess_mime_type("bob.PNG") == "image/png"
        assert guess_mime_type("theme-1.webp") == "image/webp"

    def test_default_jpeg(self):
        assert guess_mime_type("bob.jpg") == "image/jpeg"
        assert guess_mime_type("noext") == "image/jpeg"

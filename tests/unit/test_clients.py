"""Tests for the HTTP collaborators, using ``httpx.MockTransport``.

Tests cover:
- Chat completion requests and error mapping in LLMClient.
- Replicate prediction creation, polling and download in ImageClient.
- Pillow format conversion of downloaded images.
"""

from __future__ import annotations

import io
import json

import httpx
import pytest
from conftest import make_image_bytes
from PIL import Image

from synthwiki.core.errors import ImageGenerationError, LLMError
from synthwiki.core.image_client import ImageClient, convert_image
from synthwiki.core.llm_client import LLMClient


def _chat_response(content: str) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3},
    }


# ---------------------------------------------------------------------------
# LLMClient.
# ---------------------------------------------------------------------------


class TestLLMClient:
    """Test LLMClient.complete."""

    @pytest.mark.asyncio
    async def test_request_and_response(self, test_config):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_chat_response("VALID"))

        client = LLMClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        text = await client.complete("system text", "user text", model="small", max_tokens=10)
        await client.aclose()

        assert text == "VALID"
        assert client.request_count == 1
        request = seen[0]
        assert str(request.url) == "https://api.groq.com/openai/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer test-key"
        payload = json.loads(request.content)
        assert payload["model"] == "small"
        assert payload["max_tokens"] == 10
        assert payload["messages"] == [
            {"role": "system", "content": "system text"},
            {"role": "user", "content": "user text"},
        ]

    @pytest.mark.asyncio
    async def test_default_model(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content)["model"] == test_config.llm_model
            return httpx.Response(200, json=_chat_response("ok"))

        client = LLMClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        assert await client.complete("s", "u") == "ok"

    @pytest.mark.asyncio
    async def test_http_error(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, text="rate limited")

        client = LLMClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(LLMError, match="429"):
            await client.complete("s", "u")

    @pytest.mark.asyncio
    async def test_transport_error(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client = LLMClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(LLMError):
            await client.complete("s", "u")

    @pytest.mark.asyncio
    async def test_no_choices(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": []})

        client = LLMClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(LLMError, match="no choices"):
            await client.complete("s", "u")

    @pytest.mark.asyncio
    async def test_empty_content(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"choices": [{"message": {"content": None}}]})

        client = LLMClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        assert await client.complete("s", "u") == ""


# ---------------------------------------------------------------------------
# ImageClient.
# ---------------------------------------------------------------------------

PREDICTIONS_URL = "https://api.replicate.com/v1/models/black-forest-labs/flux-schnell/predictions"
STATUS_URL = "https://api.replicate.com/v1/predictions/abc123"
OUTPUT_URL = "https://replicate.delivery/output/abc123.webp"


class TestImageClient:
    """Test ImageClient.generate."""

    @pytest.mark.asyncio
    async def test_immediate_result(self, test_config):
        image = make_image_bytes()
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if str(request.url) == PREDICTIONS_URL:
                return httpx.Response(201, json={"status": "succeeded", "output": [OUTPUT_URL]})
            if str(request.url) == OUTPUT_URL:
                return httpx.Response(200, content=image)
            return httpx.Response(404)

        client = ImageClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        data = await client.generate("A tower at dusk", aspect_ratio="16:9")

        assert data == image
        create = seen[0]
        assert create.headers["Prefer"] == "wait"
        assert create.headers["Authorization"] == "Bearer test-token"
        payload = json.loads(create.content)["input"]
        assert payload["prompt"] == "A tower at dusk"
        assert payload["aspect_ratio"] == "16:9"
        assert payload["output_format"] == "webp"
        assert payload["num_outputs"] == 1

    @pytest.mark.asyncio
    async def test_polls_until_finished(self, test_config):
        statuses = iter(["processing", "succeeded"])
        polls = []

        def handler(request: httpx.Request) -> httpx.Response:
            url = str(request.url)
            if url == PREDICTIONS_URL:
                return httpx.Response(201, json={"status": "starting", "urls": {"get": STATUS_URL}})
            if url == STATUS_URL:
                polls.append(url)
                status = next(statuses)
                body = {"status": status, "urls": {"get": STATUS_URL}}
                if status == "succeeded":
                    body["output"] = OUTPUT_URL
                return httpx.Response(200, json=body)
            return httpx.Response(200, content=b"image-bytes")

        client = ImageClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        assert await client.generate("prompt") == b"image-bytes"
        assert len(polls) == 2

    @pytest.mark.asyncio
    async def test_failed_prediction(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={"status": "failed", "error": "NSFW content detected"})

        client = ImageClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(ImageGenerationError, match="failed"):
            await client.generate("prompt")

    @pytest.mark.asyncio
    async def test_missing_output(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={"status": "succeeded", "output": []})

        client = ImageClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(ImageGenerationError, match="no output"):
            await client.generate("prompt")

    @pytest.mark.asyncio
    async def test_api_error(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"detail": "Unauthenticated"})

        client = ImageClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(ImageGenerationError, match="401"):
            await client.generate("prompt")

    @pytest.mark.asyncio
    async def test_download_error(self, test_config):
        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == PREDICTIONS_URL:
                return httpx.Response(201, json={"status": "succeeded", "output": [OUTPUT_URL]})
            return httpx.Response(500)

        client = ImageClient(test_config, httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        with pytest.raises(ImageGenerationError, match="download"):
            await client.generate("prompt")


class TestConvertImage:
    """Test convert_image."""

    def test_same_format_is_untouched(self):
        data = make_image_bytes("WEBP")
        assert convert_image(data, "webp") is data

    def test_webp_to_png(self):
        converted = convert_image(make_image_bytes("WEBP"), "png")
        with Image.open(io.BytesIO(converted)) as image:
            assert image.format == "PNG"
            assert image.size == (8, 6)

    def test_rgba_to_jpeg(self):
        buffer = io.BytesIO()
        Image.new("RGBA", (4, 4), (255, 0, 0, 128)).save(buffer, format="PNG")
        converted = convert_image(buffer.getvalue(), "jpg")
        with Image.open(io.BytesIO(converted)) as image:
            assert image.format == "JPEG"

    def test_invalid_bytes(self):
        with pytest.raises(ImageGenerationError):
            convert_image(b"not an image", "png")

    def test_unsupported_extension(self):
        with pytest.raises(ImageGenerationError):
            convert_image(make_image_bytes(), "gif")

"""Async client for the Replicate predictions API.

:meth:`ImageClient.generate` turns a prompt into raw image bytes:

1. ``POST /models/{owner}/{name}/predictions`` with ``Prefer: wait`` so
   that fast models answer in the same request.
2. If the prediction is still running, poll its ``urls.get`` link every
   ``image_poll_interval`` seconds until it succeeds, fails or is canceled.
3. Download the first output URL.

:func:`convert_image` re-encodes the downloaded bytes with Pillow when the
caller asked for a different format than the provider returned.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time

import httpx
from PIL import Image, UnidentifiedImageError

from synthwiki.core.config import SynthwikiConfig
from synthwiki.core.errors import ImageGenerationError

logger = logging.getLogger(__name__)

SUPPORTED_ASPECT_RATIOS = (
    "1:1",
    "16:9",
    "21:9",
    "3:2",
    "2:3",
    "4:5",
    "5:4",
    "3:4",
    "4:3",
    "9:16",
    "9:21",
)

# Extension -> (Pillow format, MIME type)
IMAGE_FORMATS: dict[str, tuple[str, str]] = {
    "webp": ("WEBP", "image/webp"),
    "png": ("PNG", "image/png"),
    "jpg": ("JPEG", "image/jpeg"),
    "jpeg": ("JPEG", "image/jpeg"),
}

_TERMINAL_STATES = {"succeeded", "failed", "canceled"}


def convert_image(data: bytes, extension: str, quality: int = 80) -> bytes:
    """Re-encode *data* in the format named by *extension*.

    The bytes are returned untouched when they are already in that format.

    Raises:
        ImageGenerationError: If the bytes are not a readable image or the
            extension is unsupported.
    """
    if extension not in IMAGE_FORMATS:
        raise ImageGenerationError(f"Unsupported image format: {extension}")
    target_format = IMAGE_FORMATS[extension][0]

    try:
        with Image.open(io.BytesIO(data)) as image:
            if image.format == target_format:
                return data
            if target_format == "JPEG" and image.mode not in ("RGB", "L"):
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, format=target_format, quality=quality)
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageGenerationError(f"Downloaded data is not a valid image: {exc}") from exc

    return buffer.getvalue()


class ImageClient:
    """Generates illustrations through Replicate."""

    def __init__(self, config: SynthwikiConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.http_timeout)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @property
    def output_format(self) -> str:
        """Format the provider is asked to return."""
        return self._config.image_output_format

    async def generate(self, prompt: str, aspect_ratio: str = "4:3") -> bytes:
        """Generate one image and return its bytes.

        Args:
            prompt: Image prompt.
            aspect_ratio: One of :data:`SUPPORTED_ASPECT_RATIOS`.

        Returns:
            Raw image bytes in :attr:`output_format`.

        Raises:
            ImageGenerationError: If the prediction fails, yields no output
                or the download fails.
        """
        started = time.monotonic()
        prediction = await self._create_prediction(prompt, aspect_ratio)
        prediction = await self._wait_for(prediction)

        status = prediction.get("status")
        if status != "succeeded":
            raise ImageGenerationError(
                f"Image prediction ended with status {status!r}: {prediction.get('error')}"
            )

        output = prediction.get("output")
        url = output[0] if isinstance(output, list) and output else output
        if not isinstance(url, str) or not url:
            raise ImageGenerationError("Image prediction returned no output URL")

        api_done = time.monotonic()
        data = await self._download(url)
        logger.info(
            "Generated image in %.2fs (api %.2fs, download %.2fs, %.1fKB)",
            time.monotonic() - started,
            api_done - started,
            time.monotonic() - api_done,
            len(data) / 1024,
        )
        return data

    # -- Internals -----------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._config.image_api_token}",
            "Content-Type": "application/json",
        }

    async def _create_prediction(self, prompt: str, aspect_ratio: str) -> dict:
        url = (
            f"{self._config.image_api_base.rstrip('/')}/models/"
            f"{self._config.image_model}/predictions"
        )
        payload = {
            "input": {
                "prompt": prompt,
                "go_fast": True,
                "megapixels": self._config.image_megapixels,
                "num_outputs": 1,
                "aspect_ratio": aspect_ratio,
                "output_format": self._config.image_output_format,
                "output_quality": self._config.image_output_quality,
                "num_inference_steps": 4,
            }
        }
        headers = {**self._headers(), "Prefer": "wait"}
        return await self._request_json("POST", url, json=payload, headers=headers)

    async def _wait_for(self, prediction: dict) -> dict:
        while prediction.get("status") not in _TERMINAL_STATES:
            poll_url = (prediction.get("urls") or {}).get("get")
            if not poll_url:
                raise ImageGenerationError("Pending prediction has no status URL")
            await asyncio.sleep(self._config.image_poll_interval)
            prediction = await self._request_json("GET", poll_url, headers=self._headers())
        return prediction

    async def _request_json(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise ImageGenerationError(
                f"Image API returned HTTP {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ImageGenerationError(f"Image API request failed: {exc}") from exc
        except ValueError as exc:
            raise ImageGenerationError(f"Image API response was not JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ImageGenerationError("Image API response was not a JSON object")
        return data

    async def _download(self, url: str) -> bytes:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ImageGenerationError(
                f"Failed to download image: HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ImageGenerationError(f"Failed to download image: {exc}") from exc
        return response.content

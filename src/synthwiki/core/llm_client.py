"""Async client for an OpenAI-compatible chat completions API.

The client is deliberately thin: one request per call, no retries and no
response caching.  A failed call raises :class:`~synthwiki.core.errors.LLMError`
and the caller decides what that means for the page being built.

Usage
-----
::

    client = LLMClient(config)
    text = await client.complete(
        system="You are an encyclopedia editor.",
        user='Write an opening paragraph about "Roman Empire".',
        max_tokens=600,
    )
    await client.aclose()
"""

from __future__ import annotations

import logging
import time

import httpx

from synthwiki.core.config import SynthwikiConfig
from synthwiki.core.errors import LLMError

logger = logging.getLogger(__name__)


class LLMClient:
    """Chat-completions client sharing one ``httpx.AsyncClient``.

    Attributes:
        request_count (int): Number of requests issued, for logging.
    """

    def __init__(self, config: SynthwikiConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(timeout=config.http_timeout)
        self.request_count = 0

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def complete(
        self,
        system: str,
        user: str,
        *,
        model: str | None = None,
        temperature: float = 0.6,
        max_tokens: int = 1024,
        top_p: float = 0.9,
    ) -> str:
        """Send one chat completion request and return the message text.

        Args:
            system: System prompt.
            user: User message.
            model: Model name; defaults to ``config.llm_model``.
            temperature: Sampling temperature.
            max_tokens: Completion token limit.
            top_p: Nucleus sampling parameter.

        Returns:
            The content of the first choice (may be empty).

        Raises:
            LLMError: On transport errors, non-2xx responses or a response
                without choices.
        """
        model_name = model or self._config.llm_model
        payload = {
            "model": model_name,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": top_p,
            "stream": False,
        }
        headers = {"Authorization": f"Bearer {self._config.llm_api_key}"}
        url = f"{self._config.llm_api_base.rstrip('/')}/chat/completions"

        self.request_count += 1
        started = time.monotonic()
        try:
            response = await self._client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise LLMError(
                f"LLM request failed with HTTP {exc.response.status_code}: "
                f"{exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise LLMError(f"LLM request failed: {exc}") from exc
        except ValueError as exc:
            raise LLMError(f"LLM response was not JSON: {exc}") from exc

        choices = data.get("choices") if isinstance(data, dict) else None
        if not choices:
            raise LLMError("LLM response contained no choices")

        content = (choices[0].get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}
        logger.debug(
            "LLM ('%s') answered in %.2fs (prompt=%s tk, completion=%s tk)",
            model_name,
            time.monotonic() - started,
            usage.get("prompt_tokens", "N/A"),
            usage.get("completion_tokens", "N/A"),
        )
        return content

"""
SafeCap - Pass-through client for an OpenAI-compatible completions API.

Backs the ``/v1/completions`` and ``/v1/chat/completions`` endpoints. The
upstream JSON body is returned as is; non-2xx answers and transport errors
raise :class:`~safecap.exceptions.CompletionError`.
"""

import json
import logging
import time
from typing import Any, Optional

import httpx

from .backend import sanitize_for_log, strip_secrets_from_error
from .exceptions import CompletionError

logger = logging.getLogger("safecap.completions")

DEFAULT_BASE_URL = "https://api.openai.com"
DEFAULT_COMPLETION_MODEL = "gpt-3.5-turbo-instruct"
DEFAULT_CHAT_MODEL = "gpt-3.5-turbo"
DEFAULT_MAX_TOKENS = 1000
TEMPERATURE = 0.7


class CompletionsClient:
    """Forwards completion requests with the server's own credentials."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        self._client = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_completion(
        self,
        prompt: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/completions",
            {
                "prompt": prompt,
                "model": model or DEFAULT_COMPLETION_MODEL,
                "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
                "temperature": TEMPERATURE,
            },
        )

    async def create_chat_completion(
        self,
        messages: list[dict[str, Any]],
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> dict[str, Any]:
        return await self._post(
            "/v1/chat/completions",
            {
                "messages": messages,
                "model": model or DEFAULT_CHAT_MODEL,
                "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
                "temperature": TEMPERATURE,
            },
        )

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        logger.info("POST %s%s model=%s", self.base_url, path, body.get("model"))
        logger.debug("Request body: %s", json.dumps(sanitize_for_log(body), default=str))

        t0 = time.time()
        try:
            response = await self._client.post(path, json=body, headers=self._headers)
        except httpx.HTTPError as e:
            message = strip_secrets_from_error(str(e)) or type(e).__name__
            logger.error("Completion request to %s failed: %s", path, message)
            raise CompletionError(f"Upstream request failed: {message}") from e

        duration_ms = int((time.time() - t0) * 1000)
        logger.info("%s responded %s in %dms", path, response.status_code, duration_ms)

        try:
            payload = response.json()
        except ValueError:
            payload = {"raw": response.text[:5000]}

        if not response.is_success:
            raise CompletionError(
                f"OpenAI API error: {response.status_code} {response.reason_phrase} "
                f"{json.dumps(payload, default=str)}",
                status_code=response.status_code,
                response=sanitize_for_log(payload),
            )
        return payload

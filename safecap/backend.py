"""
SafeCap - HTTP client for the remote agent-generation service.

Every call is a single round trip:

    POST {base_url}/agents/{agent_id}/generate?taskId=<uuid>
    {"messages": [...]}

Two response shapes are in circulation and both are accepted:

    {"success": true, "data": {"choices": [{"message": {...}}]}}
    {"success": true, "data": {"messages": [..., {"role": "assistant", ...}]}}

They are normalized into a single :class:`~safecap.models.Message` right
here, so nothing downstream has to care which one arrived. HTTP-layer
failures are returned as a failed :class:`~safecap.models.AgentResponse`
instead of being raised; the caller decides whether to retry or abort.
"""

import json
import logging
import re
import time
from typing import Any, Optional

import httpx

from .conversation import ConversationAssembler
from .exceptions import BackendCallError
from .models import AgentResponse, Message, Role

logger = logging.getLogger("safecap.backend")

DEFAULT_BASE_URL = "https://api.mastra.ai/v1"
DEFAULT_TIMEOUT = 60.0

_SECRET_KEY = re.compile(
    r"(secret|password|token|key|auth|credential|bearer|cookie|signature)",
    re.IGNORECASE,
)
_INLINE_SECRET = re.compile(
    r"(api[_-]?key|token|secret|password|bearer)(\s*[=:]\s*|\s+)\S+",
    re.IGNORECASE,
)
_LONG_TOKEN = re.compile(r"[A-Za-z0-9+/_-]{40,}={0,2}")

MAX_LOG_DEPTH = 10
MAX_LOG_ITEMS = 100
MAX_LOG_STRING = 10_000


def sanitize_for_log(data: Any, depth: int = 0) -> Any:
    """Copy of *data* that is safe to log.

    Values under secret-looking keys become "[REDACTED]"; long strings,
    long lists and deep nesting are cut short.
    """
    if depth > MAX_LOG_DEPTH:
        return "[TRUNCATED]"
    if isinstance(data, dict):
        return {
            k: "[REDACTED]" if _SECRET_KEY.search(str(k)) else sanitize_for_log(v, depth + 1)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [sanitize_for_log(item, depth + 1) for item in data[:MAX_LOG_ITEMS]]
    if isinstance(data, str) and len(data) > MAX_LOG_STRING:
        return data[:MAX_LOG_STRING] + "...[TRUNCATED]"
    return data


def strip_secrets_from_error(error_str: str) -> str:
    """Mask inline credentials and token-like runs in an error message."""
    return _LONG_TOKEN.sub("[REDACTED]", _INLINE_SECRET.sub(r"\1=[REDACTED]", error_str))


def parse_generate_response(payload: Any) -> Message:
    """Extract the assistant message from any supported response shape.

    Raises:
        BackendCallError: when the payload is not successful or matches no
            known shape.
    """
    if not isinstance(payload, dict):
        raise BackendCallError("Could not parse agent response: body is not an object")

    if not payload.get("success"):
        raise BackendCallError(
            "Request to agent backend was not successful",
            response=sanitize_for_log(payload),
        )

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        choices = payload.get("choices")

    if isinstance(choices, list) and choices:
        first = choices[0] if isinstance(choices[0], dict) else {}
        raw = first.get("message")
        if not isinstance(raw, dict):
            raise BackendCallError("No assistant message found in response")
        return _message_from_raw(raw)

    messages = data.get("messages")
    if isinstance(messages, list):
        for raw in reversed(messages):
            if isinstance(raw, dict) and raw.get("role") == Role.ASSISTANT.value:
                return _message_from_raw(raw)
        raise BackendCallError("No assistant message found in response")

    raise BackendCallError("Could not parse agent response: unexpected structure")


def _message_from_raw(raw: dict[str, Any]) -> Message:
    try:
        message = Message.from_dict(raw)
    except (ValueError, TypeError, AttributeError) as e:
        raise BackendCallError(f"Malformed assistant message: {e}") from e
    return ConversationAssembler.normalize_tool_call_ids(message)


class AgentBackendClient:
    """
    Asynchronous client for the agent-generation endpoint.

    One instance owns one pooled ``httpx.AsyncClient``; share it across
    requests and close it on shutdown.

    Example:
        ```python
        async with AgentBackendClient(api_key="...") as backend:
            response = await backend.generate(
                "example-agent",
                [Message.user("What's 2+2")],
                task_id=str(uuid.uuid4()),
            )
        ```
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
        )

    async def __aenter__(self) -> "AgentBackendClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def generate_path(agent_id: str) -> str:
        return f"/agents/{agent_id}/generate"

    async def generate(
        self,
        agent_id: str,
        conversation: list[Message],
        task_id: str,
    ) -> AgentResponse:
        """Send a conversation to an agent and return its reply.

        Args:
            agent_id: Identity of the remote agent.
            conversation: Ordered messages for this turn.
            task_id: Correlates all round trips of one turn.

        Returns:
            AgentResponse carrying the assistant message, or a failure with
            ``error`` and ``details`` set.
        """
        path = self.generate_path(agent_id)
        body = {"messages": [m.to_dict() for m in conversation]}

        logger.info(
            "POST %s%s taskId=%s messages=%d",
            self.base_url,
            path,
            task_id,
            len(conversation),
        )
        logger.debug("Request body: %s", json.dumps(sanitize_for_log(body), default=str))

        t0 = time.time()
        try:
            response = await self._client.post(
                path,
                json=body,
                params={"taskId": task_id},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            duration_ms = int((time.time() - t0) * 1000)
            logger.error("Agent %s timed out after %dms", agent_id, duration_ms)
            return AgentResponse.failure(
                f"HTTP error! status: N/A - timed out after {self.timeout}s",
                details={"type": type(e).__name__, "duration_ms": duration_ms},
            )
        except httpx.HTTPError as e:
            message = strip_secrets_from_error(str(e)) or type(e).__name__
            logger.error("Error sending conversation to agent %s: %s", agent_id, message)
            return AgentResponse.failure(
                f"HTTP error! status: N/A - {message}",
                details={"type": type(e).__name__},
            )

        duration_ms = int((time.time() - t0) * 1000)
        logger.info(
            "Agent %s responded %s in %dms",
            agent_id,
            response.status_code,
            duration_ms,
        )

        try:
            payload = response.json() if response.content else None
        except ValueError:
            payload = {"raw": response.text[:5000]}

        logger.debug("Response body: %s", json.dumps(sanitize_for_log(payload), default=str))

        if not response.is_success:
            message = "Unknown error"
            if isinstance(payload, dict):
                message = payload.get("message") or payload.get("error") or message
            else:
                message = response.reason_phrase or message
            logger.error(
                "Agent %s returned HTTP %s: %s",
                agent_id,
                response.status_code,
                strip_secrets_from_error(str(message)),
            )
            return AgentResponse.failure(
                f"HTTP error! status: {response.status_code} - {message}",
                details=sanitize_for_log(payload),
            )

        try:
            message_obj = parse_generate_response(payload)
        except BackendCallError as e:
            logger.error("Agent %s: %s", agent_id, e.message)
            return AgentResponse.failure(
                f"HTTP error! status: {response.status_code} - {e.message}",
                details=e.response if e.response is not None else sanitize_for_log(payload),
            )

        return AgentResponse.ok(message_obj)

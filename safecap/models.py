"""
SafeCap - Data models for agent conversations and orchestration events.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Role(str, Enum):
    """Author of a message in a conversation."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class PipelineEventType(str, Enum):
    """Named events written to the orchestration SSE stream."""

    START = "start"
    ANALYSIS = "analysis"
    RESULT = "result"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ToolCall:
    """A function invocation requested by the model.

    ``arguments`` is kept as the JSON-encoded string the backend sent, so
    the call can be echoed back unchanged.
    """

    id: str
    name: str
    arguments: str = "{}"
    type: str = "function"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.name,
                "arguments": self.arguments,
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        function = data.get("function") or {}
        arguments = function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        return cls(
            id=str(data.get("id", "")),
            name=function.get("name", ""),
            arguments=arguments,
            type=data.get("type", "function"),
        )


@dataclass
class Message:
    """One element of a conversation.

    ``tool_calls`` is only meaningful on assistant messages, ``tool_call_id``
    and ``name`` only on tool messages.
    """

    role: Role
    content: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @property
    def has_tool_calls(self) -> bool:
        return self.role == Role.ASSISTANT and len(self.tool_calls) > 0

    @property
    def text(self) -> str:
        return self.content or ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "role": self.role.value,
            "content": self.content,
        }
        if self.tool_calls:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            result["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        content = data.get("content")
        if content is None and data.get("parts"):
            # Older agent payloads carry text in parts instead of content.
            content = "".join(
                p.get("text", "") for p in data["parts"] if isinstance(p, dict)
            )
        elif isinstance(content, list):
            content = "".join(
                p.get("text", "") for p in content if isinstance(p, dict)
            )
        return cls(
            role=Role(data.get("role", "assistant")),
            content=content,
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls, content: Optional[str] = None, tool_calls: Optional[list[ToolCall]] = None
    ) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))


@dataclass
class AgentResponse:
    """Outcome of a backend call or of a full tool-call turn."""

    success: bool
    data: Optional[Message] = None
    error: Optional[str] = None
    details: Any = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data.to_dict()
        if self.error is not None:
            result["error"] = self.error
        if self.details is not None:
            result["details"] = self.details
        return result

    @classmethod
    def ok(cls, message: Message) -> "AgentResponse":
        return cls(success=True, data=message)

    @classmethod
    def failure(cls, error: str, details: Any = None) -> "AgentResponse":
        return cls(success=False, error=error, details=details)


@dataclass
class OrchestrationSession:
    """Per-request orchestration state. Never outlives its SSE stream."""

    task: str
    api_key: str
    session_id: str = ""


@dataclass
class PipelineEvent:
    """A self-describing event emitted by the orchestration pipeline."""

    type: PipelineEventType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in (PipelineEventType.COMPLETE, PipelineEventType.ERROR)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data}

    def to_sse(self) -> dict[str, str]:
        """Frame dict understood by ``sse_starlette``."""
        return {
            "event": self.type.value,
            "data": json.dumps(self.data, default=str),
        }

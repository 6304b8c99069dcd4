"""
SafeCap - Conversation assembly for tool-call round trips.

After tools run, the backend must see the assistant message that asked for
them, unchanged, followed by one tool message per call in the order the
calls were issued. Anything else is a conversation the backend may reject.
"""

import json
import logging
import uuid
from dataclasses import replace
from typing import Any, Optional

from .exceptions import InvalidConversationError
from .models import Message, Role, ToolCall

logger = logging.getLogger("safecap.conversation")


def parse_arguments(raw: Any) -> dict:
    """Parse tool-call arguments, falling back to ``{}`` on anything odd."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("Malformed tool arguments, using {}: %.200r", raw)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Tool arguments are not an object, using {}: %.200r", raw)
        return {}
    return parsed


class ConversationAssembler:
    """Builds and validates the message sequence sent to the agent backend."""

    @staticmethod
    def initial_conversation(user_text: str) -> list[Message]:
        return [Message.user(user_text)]

    @staticmethod
    def normalize_tool_call_ids(message: Message) -> Message:
        """Give every tool call a non-empty id that is unique within *message*.

        Calls that arrive without an id, or repeat an id already used by an
        earlier call, get a generated ``call_<hex>`` id. The message is
        returned unchanged when nothing needed fixing.
        """
        seen: set[str] = set()
        calls = []
        for tc in message.tool_calls:
            call_id = tc.id
            if not call_id or call_id in seen:
                call_id = f"call_{uuid.uuid4().hex}"
                logger.warning(
                    "Tool call %s has %s id %r, using %s",
                    tc.name,
                    "a duplicate" if tc.id else "no",
                    tc.id,
                    call_id,
                )
                tc = replace(tc, id=call_id)
            seen.add(call_id)
            calls.append(tc)

        if all(a is b for a, b in zip(calls, message.tool_calls)):
            return message
        return replace(message, tool_calls=calls)

    @staticmethod
    def build_tool_result(
        tool_call: ToolCall,
        result: Any = None,
        error: Optional[str] = None,
    ) -> Message:
        """Wrap a tool outcome in the tool-role message the backend expects."""
        if error is not None:
            envelope: dict[str, Any] = {"status": "error", "error": error}
        else:
            envelope = {"status": "success", "data": result}
        return Message(
            role=Role.TOOL,
            content=json.dumps(envelope, default=str),
            tool_call_id=tool_call.id,
            name=tool_call.name,
        )

    @staticmethod
    def validate_tool_results(
        assistant_message: Message,
        tool_results: list[Message],
    ) -> None:
        """Check that *tool_results* answer exactly the calls in *assistant_message*.

        Raises:
            InvalidConversationError: on any mismatch.
        """
        if assistant_message.role != Role.ASSISTANT or not assistant_message.tool_calls:
            raise InvalidConversationError(
                "Tool results must follow an assistant message with tool_calls"
            )

        call_ids = [tc.id for tc in assistant_message.tool_calls]
        known = set(call_ids)
        seen: set[str] = set()

        for result in tool_results:
            if result.role != Role.TOOL:
                raise InvalidConversationError(
                    f"Expected a tool message, got role '{result.role.value}'"
                )
            if result.tool_call_id not in known:
                raise InvalidConversationError(
                    f"Tool result references unknown tool_call_id '{result.tool_call_id}'"
                )
            if result.tool_call_id in seen:
                raise InvalidConversationError(
                    f"Duplicate tool result for tool_call_id '{result.tool_call_id}'"
                )
            seen.add(result.tool_call_id)

        if len(tool_results) != len(call_ids):
            raise InvalidConversationError(
                f"Expected {len(call_ids)} tool results, got {len(tool_results)}"
            )

        if [r.tool_call_id for r in tool_results] != call_ids:
            raise InvalidConversationError(
                "Tool results are not in the order the calls were issued"
            )

    @classmethod
    def append_tool_results(
        cls,
        conversation: list[Message],
        assistant_message: Message,
        tool_results: list[Message],
    ) -> list[Message]:
        """Return a new conversation with the assistant message and its results appended."""
        cls.validate_tool_results(assistant_message, tool_results)
        return [*conversation, assistant_message, *tool_results]

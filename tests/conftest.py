"""
Shared fixtures for the SafeCap tests.
"""

import asyncio

import pytest

from safecap.models import AgentResponse, Message, ToolCall


class ScriptedBackend:
    """Stands in for AgentBackendClient.

    Returns the scripted responses in order and keeps repeating the last one.
    Every call is recorded with a snapshot of the conversation it received.
    """

    def __init__(self, responses, delay: float = 0.0):
        self._responses = list(responses)
        self.delay = delay
        self.calls = []

    async def generate(self, agent_id, conversation, task_id):
        self.calls.append(
            {
                "agent_id": agent_id,
                "messages": [m.to_dict() for m in conversation],
                "task_id": task_id,
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if len(self._responses) > 1:
            return self._responses.pop(0)
        return self._responses[0]


def text_reply(text: str) -> AgentResponse:
    return AgentResponse.ok(Message.assistant(text))


def tool_reply(*calls, content=None) -> AgentResponse:
    return AgentResponse.ok(
        Message.assistant(
            content,
            [ToolCall(id=cid, name=name, arguments=args) for cid, name, args in calls],
        )
    )


@pytest.fixture
def make_backend():
    return ScriptedBackend


@pytest.fixture
def reply():
    """Builders for scripted backend responses."""

    class Replies:
        text = staticmethod(text_reply)
        tools = staticmethod(tool_reply)

    return Replies


@pytest.fixture(autouse=True)
def reset_sse_app_status():
    """sse-starlette keeps a module-level exit event bound to the first event loop."""
    from sse_starlette import sse

    status = getattr(sse, "AppStatus", None)
    if status is not None and hasattr(status, "should_exit_event"):
        status.should_exit_event = None
    yield

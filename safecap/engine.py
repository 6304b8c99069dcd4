"""
SafeCap - Tool-call resolution loop.

One turn: send the conversation, run whatever tools the model asks for,
feed the results back, and repeat until the model answers without tool
calls. The loop is bounded by ``max_rounds`` round trips.
"""

import json
import logging
import time
import uuid
from enum import Enum
from typing import Awaitable, Callable, Optional

from .backend import AgentBackendClient, sanitize_for_log, strip_secrets_from_error
from .conversation import ConversationAssembler, parse_arguments
from .exceptions import MaxRoundsExceeded, OrchestrationCancelled, ToolExecutionError
from .models import AgentResponse, Message, ToolCall
from .tools import ToolRegistry

logger = logging.getLogger("safecap.engine")

DEFAULT_MAX_ROUNDS = 10

StopCheck = Callable[[], Awaitable[bool]]


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    DONE = "done"


class AgentEngine:
    """Drives a conversation with a remote agent through its tool calls.

    Collaborators are injected so tests can pass fakes:

        engine = AgentEngine(backend, registry, max_rounds=5)
        response = await engine.send_message("example-agent", "What's 2+2")
    """

    def __init__(
        self,
        backend: AgentBackendClient,
        registry: ToolRegistry,
        max_rounds: int = DEFAULT_MAX_ROUNDS,
    ) -> None:
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        self.backend = backend
        self.registry = registry
        self.max_rounds = max_rounds

    async def send_message(
        self,
        agent_id: str,
        user_text: str,
        task_id: Optional[str] = None,
        should_stop: Optional[StopCheck] = None,
    ) -> AgentResponse:
        """Start a turn from a single user message."""
        conversation = ConversationAssembler.initial_conversation(user_text)
        return await self.send_conversation(agent_id, conversation, task_id, should_stop)

    async def send_conversation(
        self,
        agent_id: str,
        conversation: list[Message],
        task_id: Optional[str] = None,
        should_stop: Optional[StopCheck] = None,
    ) -> AgentResponse:
        """Run the resolution loop on an existing conversation.

        Args:
            agent_id: Remote agent to talk to.
            conversation: Messages so far; not mutated.
            task_id: Correlation id shared by every round trip of the turn.
            should_stop: Async predicate checked before each round trip.

        Returns:
            The final AgentResponse. Backend failures are returned, not raised.

        Raises:
            MaxRoundsExceeded: the model still wanted tools after ``max_rounds``.
            OrchestrationCancelled: ``should_stop`` returned true.
            InvalidConversationError: the rebuilt conversation was malformed.
        """
        task_id = task_id or str(uuid.uuid4())
        conversation = list(conversation)
        state = LoopState.AWAITING_MODEL
        rounds = 0
        response = AgentResponse.failure("No round trip was made")

        while state == LoopState.AWAITING_MODEL:
            if rounds >= self.max_rounds:
                logger.error("Turn %s exceeded %d round trips", task_id, self.max_rounds)
                raise MaxRoundsExceeded(self.max_rounds)
            if should_stop is not None and await should_stop():
                logger.info("Turn %s cancelled before round %d", task_id, rounds + 1)
                raise OrchestrationCancelled("Client disconnected")

            rounds += 1
            logger.info(
                "Turn %s round %d/%d: sending %d messages to %s",
                task_id,
                rounds,
                self.max_rounds,
                len(conversation),
                agent_id,
            )
            response = await self.backend.generate(agent_id, conversation, task_id)

            if not response.success:
                logger.warning("Turn %s failed: %s", task_id, response.error)
                state = LoopState.DONE
            elif response.data is None:
                response = AgentResponse.failure("No message received from assistant")
                state = LoopState.DONE
            elif not response.data.has_tool_calls:
                logger.info("Turn %s finished after %d round trip(s)", task_id, rounds)
                state = LoopState.DONE
            else:
                message = ConversationAssembler.normalize_tool_call_ids(response.data)
                logger.info(
                    "Turn %s: model requested %d tool call(s): %s",
                    task_id,
                    len(message.tool_calls),
                    ", ".join(tc.name for tc in message.tool_calls),
                )
                tool_results = await self.resolve_tool_calls(message.tool_calls)
                conversation = ConversationAssembler.append_tool_results(
                    conversation, message, tool_results
                )

        return response

    async def resolve_tool_calls(self, tool_calls: list[ToolCall]) -> list[Message]:
        """Execute each call in order; failures become error results."""
        results = []
        for tc in tool_calls:
            arguments = parse_arguments(tc.arguments)
            logger.info(
                "Executing tool %s (%s) args=%s",
                tc.name,
                tc.id,
                json.dumps(sanitize_for_log(arguments), default=str),
            )
            t0 = time.time()
            try:
                result = await self.registry.execute(tc.name, arguments)
            except ToolExecutionError as e:
                logger.warning(
                    "Tool %s failed: %s", tc.name, strip_secrets_from_error(e.message)
                )
                results.append(ConversationAssembler.build_tool_result(tc, error=e.message))
                continue
            duration_ms = (time.time() - t0) * 1000
            logger.info("Tool %s completed in %.0fms", tc.name, duration_ms)
            results.append(ConversationAssembler.build_tool_result(tc, result=result))
        return results

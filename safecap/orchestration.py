"""
SafeCap - Two-stage agent orchestration streamed as Server-Sent Events.

Stages:

    VALIDATING -> ANALYZING -> PAUSING -> FORMATTING -> COMPLETE

    Any of the first four stages can move to ERROR instead. A client
    disconnect moves the pipeline to CANCELLED without emitting anything.

The analysis agent gathers data (using tools where it wants to), the
formatting agent turns that analysis into a conversational answer. Each
stage emits one event before the next begins so clients can render
progress as it happens. Every run ends with ``complete`` or ``error``
unless the client went away first.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from .engine import AgentEngine
from .exceptions import OrchestrationCancelled, SafeCapError, ValidationError
from .models import AgentResponse, OrchestrationSession, PipelineEvent, PipelineEventType

logger = logging.getLogger("safecap.orchestration")

DEV_BYPASS_KEY = "dev-key"

ANALYSIS_PROMPT = """Analyze the following user task and recommend a course of action: "{task}"

You should use available tools to gather current information. If the task involves location-based information, weather, or current conditions, please use the appropriate tools to get real-time data.

Provide a structured response with:
- analysis: What is the user asking for?
- actions: What actions should be taken?
- reasoning: Brief explanation of your recommendations
- data: Any relevant current data you gathered using tools"""

FORMAT_PROMPT = """Take the following analysis and format it into a user-friendly response:

{analysis}

Make it conversational and helpful."""

DisconnectCheck = Callable[[], Awaitable[bool]]


class PipelineStage(str, Enum):
    VALIDATING = "validating"
    ANALYZING = "analyzing"
    PAUSING = "pausing"
    FORMATTING = "formatting"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class PipelineSettings:
    """Knobs for one orchestration pipeline."""

    api_key: Optional[str] = None
    environment: str = "production"
    analysis_agent_id: str = "example-agent"
    format_agent_id: str = "example-agent"
    inter_stage_delay: float = 1.0
    timeout: float = 300.0
    bypass_key: str = DEV_BYPASS_KEY

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def build_analysis_prompt(task: str) -> str:
    return ANALYSIS_PROMPT.format(task=task)


def build_format_prompt(analysis: AgentResponse) -> str:
    return FORMAT_PROMPT.format(analysis=json.dumps(analysis.to_dict(), indent=2, default=str))


def _event(event_type: PipelineEventType, message: str, **extra: Any) -> PipelineEvent:
    return PipelineEvent(type=event_type, data={"message": message, **extra})


class OrchestrationPipeline:
    """Runs analysis then formatting for one request.

    Create one pipeline per request; ``stage`` reflects where that request
    currently is.
    """

    def __init__(self, engine: AgentEngine, settings: PipelineSettings) -> None:
        self.engine = engine
        self.settings = settings
        self.stage = PipelineStage.VALIDATING

    def validate(self, session: OrchestrationSession) -> None:
        """Check the caller's API key.

        Raises:
            ValidationError: task missing or key rejected.
        """
        if not session.task:
            raise ValidationError("Task is required")

        key = session.api_key
        if self.settings.api_key and key == self.settings.api_key:
            return
        if self.settings.is_development:
            return
        if not self.settings.is_production and key and key == self.settings.bypass_key:
            return
        raise ValidationError("Invalid API key", status_code=401)

    async def run(
        self,
        session: OrchestrationSession,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncIterator[PipelineEvent]:
        """Yield the lifecycle events for *session*."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.timeout

        async def within_deadline(awaitable: Awaitable[Any]) -> Any:
            remaining = max(deadline - loop.time(), 0)
            return await asyncio.wait_for(awaitable, timeout=remaining)

        async def check_connection() -> None:
            if is_disconnected is not None and await is_disconnected():
                raise OrchestrationCancelled("Client disconnected")

        self.stage = PipelineStage.VALIDATING
        logger.info("Orchestration %s: validating request", session.session_id)
        try:
            self.validate(session)
        except ValidationError as e:
            logger.warning("Orchestration %s rejected: %s", session.session_id, e.message)
            self.stage = PipelineStage.ERROR
            yield _event(PipelineEventType.ERROR, e.message)
            return

        yield _event(PipelineEventType.START, "Starting agent orchestration")

        try:
            self.stage = PipelineStage.ANALYZING
            await check_connection()
            analysis = await within_deadline(
                self.engine.send_message(
                    self.settings.analysis_agent_id,
                    build_analysis_prompt(session.task),
                    should_stop=is_disconnected,
                )
            )
            if not analysis.success:
                self.stage = PipelineStage.ERROR
                yield _event(
                    PipelineEventType.ERROR,
                    f"Orchestration failed: {analysis.error}",
                    stage=PipelineStage.ANALYZING.value,
                )
                return
            yield _event(
                PipelineEventType.ANALYSIS,
                "Analysis completed",
                data=analysis.to_dict(),
            )

            self.stage = PipelineStage.PAUSING
            await check_connection()
            await within_deadline(asyncio.sleep(self.settings.inter_stage_delay))

            self.stage = PipelineStage.FORMATTING
            await check_connection()
            formatted = await within_deadline(
                self.engine.send_message(
                    self.settings.format_agent_id,
                    build_format_prompt(analysis),
                    should_stop=is_disconnected,
                )
            )
            if not formatted.success:
                self.stage = PipelineStage.ERROR
                yield _event(
                    PipelineEventType.ERROR,
                    f"Orchestration failed: {formatted.error}",
                    stage=PipelineStage.FORMATTING.value,
                )
                return
            yield _event(
                PipelineEventType.RESULT,
                "Orchestration completed",
                data=formatted.to_dict(),
            )

            self.stage = PipelineStage.COMPLETE
            logger.info("Orchestration %s complete", session.session_id)
            yield _event(PipelineEventType.COMPLETE, "Processing complete")

        except OrchestrationCancelled:
            logger.info(
                "Orchestration %s cancelled during %s",
                session.session_id,
                self.stage.value,
            )
            self.stage = PipelineStage.CANCELLED
        except asyncio.TimeoutError:
            failed_stage = self.stage
            self.stage = PipelineStage.ERROR
            logger.error(
                "Orchestration %s timed out during %s",
                session.session_id,
                failed_stage.value,
            )
            yield _event(
                PipelineEventType.ERROR,
                f"Orchestration failed: timed out after {self.settings.timeout}s",
                stage=failed_stage.value,
            )
        except SafeCapError as e:
            failed_stage = self.stage
            self.stage = PipelineStage.ERROR
            logger.error(
                "Orchestration %s failed during %s: %s",
                session.session_id,
                failed_stage.value,
                e.message,
            )
            yield _event(
                PipelineEventType.ERROR,
                f"Orchestration failed: {e.message}",
                stage=failed_stage.value,
            )
        except Exception as e:
            failed_stage = self.stage
            self.stage = PipelineStage.ERROR
            logger.exception("Orchestration %s crashed", session.session_id)
            yield _event(
                PipelineEventType.ERROR,
                f"Orchestration failed: {e}",
                stage=failed_stage.value,
            )

"""
Tests for the two-stage orchestration pipeline.

Covers:
  - Event ordering on success
  - API key validation and the development bypass
  - Failures in either stage, timeouts, tool-loop overruns
  - Client disconnects
"""

import json
import warnings
from pathlib import Path

import pytest

import safecap
from safecap.engine import AgentEngine
from safecap.exceptions import ValidationError
from safecap.models import AgentResponse, OrchestrationSession, PipelineEventType
from safecap.orchestration import (
    OrchestrationPipeline,
    PipelineSettings,
    PipelineStage,
    build_analysis_prompt,
    build_format_prompt,
)
from safecap.tools import ToolRegistry


def fast_settings(**overrides) -> PipelineSettings:
    values = {
        "api_key": "secret",
        "environment": "production",
        "analysis_agent_id": "analyst",
        "format_agent_id": "formatter",
        "inter_stage_delay": 0.0,
        "timeout": 5.0,
    }
    values.update(overrides)
    return PipelineSettings(**values)


def make_pipeline(backend, settings=None, registry=None, max_rounds=10):
    engine = AgentEngine(backend, registry or ToolRegistry(), max_rounds=max_rounds)
    return OrchestrationPipeline(engine, settings or fast_settings())


async def collect(pipeline, session, is_disconnected=None):
    return [event async for event in pipeline.run(session, is_disconnected)]


def types(events):
    return [e.type for e in events]


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_event_order(self, make_backend, reply):
        backend = make_backend([reply.text("analysis text"), reply.text("friendly text")])
        pipeline = make_pipeline(backend)

        events = await collect(pipeline, OrchestrationSession(task="Plan my day", api_key="secret"))

        assert types(events) == [
            PipelineEventType.START,
            PipelineEventType.ANALYSIS,
            PipelineEventType.RESULT,
            PipelineEventType.COMPLETE,
        ]
        assert events[0].data == {"message": "Starting agent orchestration"}
        assert events[1].data["message"] == "Analysis completed"
        assert events[1].data["data"]["data"]["content"] == "analysis text"
        assert events[2].data["message"] == "Orchestration completed"
        assert events[2].data["data"]["data"]["content"] == "friendly text"
        assert events[3].data == {"message": "Processing complete"}
        assert pipeline.stage == PipelineStage.COMPLETE

    @pytest.mark.asyncio
    async def test_stages_use_their_own_agents(self, make_backend, reply):
        backend = make_backend([reply.text("a"), reply.text("b")])
        pipeline = make_pipeline(backend)

        await collect(pipeline, OrchestrationSession(task="t", api_key="secret"))

        assert [c["agent_id"] for c in backend.calls] == ["analyst", "formatter"]
        assert backend.calls[0]["task_id"] != backend.calls[1]["task_id"]

    @pytest.mark.asyncio
    async def test_prompts(self, make_backend, reply):
        backend = make_backend([reply.text("the analysis"), reply.text("b")])
        pipeline = make_pipeline(backend)

        await collect(pipeline, OrchestrationSession(task="Plan my day", api_key="secret"))

        analysis_prompt = backend.calls[0]["messages"][0]["content"]
        assert '"Plan my day"' in analysis_prompt
        format_prompt = backend.calls[1]["messages"][0]["content"]
        assert format_prompt.startswith("Take the following analysis")
        assert "the analysis" in format_prompt

    @pytest.mark.asyncio
    async def test_analysis_may_use_tools(self, make_backend, reply):
        registry = ToolRegistry()
        registry.register_handler("get_weather", lambda location: {"temperature": 72})
        backend = make_backend(
            [
                reply.tools(("c1", "get_weather", '{"location": "Paris"}')),
                reply.text("It is warm"),
                reply.text("Enjoy the sun"),
            ]
        )
        pipeline = make_pipeline(backend, registry=registry)

        events = await collect(pipeline, OrchestrationSession(task="weather", api_key="secret"))

        assert types(events)[-1] == PipelineEventType.COMPLETE
        assert len(backend.calls) == 3
        assert events[2].data["data"]["data"]["content"] == "Enjoy the sun"


class TestValidation:
    @pytest.mark.asyncio
    async def test_invalid_key_makes_no_backend_calls(self, make_backend, reply):
        backend = make_backend([reply.text("never")])
        pipeline = make_pipeline(backend)

        events = await collect(pipeline, OrchestrationSession(task="t", api_key="wrong"))

        assert len(events) == 1
        assert events[0].type == PipelineEventType.ERROR
        assert events[0].data == {"message": "Invalid API key"}
        assert backend.calls == []
        assert pipeline.stage == PipelineStage.ERROR

    @pytest.mark.asyncio
    async def test_missing_task(self, make_backend, reply):
        pipeline = make_pipeline(make_backend([reply.text("x")]))
        events = await collect(pipeline, OrchestrationSession(task="", api_key="secret"))
        assert events[0].data == {"message": "Task is required"}

    @pytest.mark.asyncio
    async def test_bypass_key_outside_production(self, make_backend, reply):
        backend = make_backend([reply.text("a"), reply.text("b")])
        pipeline = make_pipeline(backend, fast_settings(environment="staging"))

        events = await collect(pipeline, OrchestrationSession(task="t", api_key="dev-key"))

        assert types(events)[0] == PipelineEventType.START

    @pytest.mark.asyncio
    async def test_bypass_key_rejected_in_production(self, make_backend, reply):
        pipeline = make_pipeline(make_backend([reply.text("a")]))
        events = await collect(pipeline, OrchestrationSession(task="t", api_key="dev-key"))
        assert events[0].data == {"message": "Invalid API key"}

    @pytest.mark.asyncio
    async def test_development_accepts_any_key(self, make_backend, reply):
        backend = make_backend([reply.text("a"), reply.text("b")])
        pipeline = make_pipeline(backend, fast_settings(environment="development"))

        events = await collect(pipeline, OrchestrationSession(task="t", api_key="anything"))

        assert types(events)[-1] == PipelineEventType.COMPLETE

    def test_no_configured_key_rejects_in_production(self, make_backend):
        pipeline = make_pipeline(make_backend([]), fast_settings(api_key=None))

        with pytest.raises(ValidationError) as exc_info:
            pipeline.validate(OrchestrationSession(task="t", api_key=""))
        assert exc_info.value.status_code == 401


class TestFailures:
    @pytest.mark.asyncio
    async def test_analysis_failure_stops_pipeline(self, make_backend):
        backend = make_backend([AgentResponse.failure("HTTP error! status: 500 - boom")])
        pipeline = make_pipeline(backend)

        events = await collect(pipeline, OrchestrationSession(task="t", api_key="secret"))

        assert types(events) == [PipelineEventType.START, PipelineEventType.ERROR]
        assert events[1].data == {
            "message": "Orchestration failed: HTTP error! status: 500 - boom",
            "stage": "analyzing",
        }
        assert len(backend.calls) == 1

    @pytest.mark.asyncio
    async def test_format_failure(self, make_backend, reply):
        backend = make_backend(
            [reply.text("analysis"), AgentResponse.failure("HTTP error! status: 503 - down")]
        )
        pipeline = make_pipeline(backend)

        events = await collect(pipeline, OrchestrationSession(task="t", api_key="secret"))

        assert types(events) == [
            PipelineEventType.START,
            PipelineEventType.ANALYSIS,
            PipelineEventType.ERROR,
        ]
        assert events[-1].data["stage"] == "formatting"

    @pytest.mark.asyncio
    async def test_tool_loop_overrun_is_error_event(self, make_backend, reply):
        backend = make_backend([reply.tools(("c1", "anything", "{}"))])
        pipeline = make_pipeline(backend, max_rounds=2)

        events = await collect(pipeline, OrchestrationSession(task="t", api_key="secret"))

        assert types(events) == [PipelineEventType.START, PipelineEventType.ERROR]
        assert "after 2 round trips" in events[-1].data["message"]
        assert events[-1].data["message"].startswith("Orchestration failed: ")

    @pytest.mark.asyncio
    async def test_timeout_is_error_event(self, make_backend, reply):
        backend = make_backend([reply.text("slow")], delay=0.5)
        pipeline = make_pipeline(backend, fast_settings(timeout=0.05))

        events = await collect(pipeline, OrchestrationSession(task="t", api_key="secret"))

        assert types(events) == [PipelineEventType.START, PipelineEventType.ERROR]
        assert events[-1].data == {
            "message": "Orchestration failed: timed out after 0.05s",
            "stage": "analyzing",
        }

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_error_event(self):
        class ExplodingBackend:
            async def generate(self, agent_id, conversation, task_id):
                raise RuntimeError("kaboom")

        pipeline = make_pipeline(ExplodingBackend())

        events = await collect(pipeline, OrchestrationSession(task="t", api_key="secret"))

        assert events[-1].type == PipelineEventType.ERROR
        assert events[-1].data["message"] == "Orchestration failed: kaboom"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_disconnect_before_analysis(self, make_backend, reply):
        backend = make_backend([reply.text("never")])
        pipeline = make_pipeline(backend)

        async def gone():
            return True

        events = await collect(pipeline, OrchestrationSession(task="t", api_key="secret"), gone)

        assert types(events) == [PipelineEventType.START]
        assert backend.calls == []
        assert pipeline.stage == PipelineStage.CANCELLED

    @pytest.mark.asyncio
    async def test_disconnect_after_analysis_skips_formatting(self, make_backend, reply):
        backend = make_backend([reply.text("a"), reply.text("never")])
        pipeline = make_pipeline(backend)
        checks = []

        async def gone_after_analysis():
            checks.append(True)
            # before analysis, then the engine's own check before its round trip
            return len(checks) > 2

        events = await collect(
            pipeline, OrchestrationSession(task="t", api_key="secret"), gone_after_analysis
        )

        assert types(events) == [PipelineEventType.START, PipelineEventType.ANALYSIS]
        assert [c["agent_id"] for c in backend.calls] == ["analyst"]
        assert pipeline.stage == PipelineStage.CANCELLED


class TestPrompts:
    def test_analysis_prompt_quotes_task(self):
        assert 'recommend a course of action: "buy milk"' in build_analysis_prompt("buy milk")

    def test_format_prompt_embeds_analysis_json(self):
        analysis = AgentResponse.failure("x", details={"k": "v"})
        prompt = build_format_prompt(analysis)
        embedded = prompt.split("\n\n")[1]
        assert json.loads(embedded) == {"success": False, "error": "x", "details": {"k": "v"}}
        assert prompt.endswith("Make it conversational and helpful.")


class TestModuleSources:
    @pytest.mark.parametrize(
        "path",
        sorted(Path(safecap.__file__).parent.rglob("*.py")),
        ids=lambda p: p.name,
    )
    def test_compiles_without_warnings(self, path):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(path.read_text(), str(path), "exec")

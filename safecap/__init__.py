"""
SafeCap - agent tool-call resolution and two-stage orchestration.

Talks to a remote agent-generation service, runs the tools the agent asks
for, and streams a two-stage (analysis, formatting) orchestration to
clients as Server-Sent Events.
"""

from .backend import AgentBackendClient, parse_generate_response
from .builtin_tools import ChainRPC, build_default_registry
from .completions import CompletionsClient
from .conversation import ConversationAssembler, parse_arguments
from .engine import AgentEngine, LoopState
from .exceptions import (
    BackendCallError,
    CompletionError,
    InvalidConversationError,
    MaxRoundsExceeded,
    OrchestrationCancelled,
    SafeCapError,
    ToolExecutionError,
    ValidationError,
)
from .models import (
    AgentResponse,
    Message,
    OrchestrationSession,
    PipelineEvent,
    PipelineEventType,
    Role,
    ToolCall,
)
from .orchestration import OrchestrationPipeline, PipelineSettings, PipelineStage
from .tools import ToolDef, ToolRegistry, define_tool, generic_tool_handler

__version__ = "1.0.0"

__all__ = [
    "AgentBackendClient",
    "parse_generate_response",
    "ChainRPC",
    "build_default_registry",
    "CompletionsClient",
    "ConversationAssembler",
    "parse_arguments",
    "AgentEngine",
    "LoopState",
    "SafeCapError",
    "ValidationError",
    "BackendCallError",
    "MaxRoundsExceeded",
    "ToolExecutionError",
    "InvalidConversationError",
    "CompletionError",
    "OrchestrationCancelled",
    "AgentResponse",
    "Message",
    "OrchestrationSession",
    "PipelineEvent",
    "PipelineEventType",
    "Role",
    "ToolCall",
    "OrchestrationPipeline",
    "PipelineSettings",
    "PipelineStage",
    "ToolDef",
    "ToolRegistry",
    "define_tool",
    "generic_tool_handler",
]

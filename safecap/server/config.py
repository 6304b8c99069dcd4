"""
Server configuration for SafeCap.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from ..orchestration import PipelineSettings


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


@dataclass
class ServerConfig:
    """Configuration for the SafeCap server."""

    host: str = "0.0.0.0"
    port: int = 8000

    environment: str = "production"

    # Secret callers must present to the orchestration endpoint.
    api_key: Optional[str] = None

    agent_api_url: str = "https://api.mastra.ai/v1"
    agent_api_key: Optional[str] = None
    agent_timeout: float = 60.0

    openai_api_url: str = "https://api.openai.com"
    openai_api_key: Optional[str] = None

    analysis_agent_id: str = "example-agent"
    format_agent_id: str = "example-agent"
    inter_stage_delay: float = 1.0
    orchestration_timeout: float = 300.0
    max_tool_rounds: int = 10

    rpc_url: Optional[str] = None

    cors_origins: list = field(default_factory=lambda: ["*"])

    debug: bool = False

    log_level: str = "info"

    version: str = "1.0.0"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def pipeline_settings(self) -> PipelineSettings:
        return PipelineSettings(
            api_key=self.api_key,
            environment=self.environment,
            analysis_agent_id=self.analysis_agent_id,
            format_agent_id=self.format_agent_id,
            inter_stage_delay=self.inter_stage_delay,
            timeout=self.orchestration_timeout,
        )

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create configuration from environment variables."""
        cors = os.environ.get("CORS_ORIGINS")
        return cls(
            host=os.environ.get("SAFECAP_HOST", "0.0.0.0"),
            port=int(os.environ.get("SAFECAP_PORT", os.environ.get("PORT", "8000"))),
            environment=os.environ.get(
                "SAFECAP_ENV", os.environ.get("NODE_ENV", "production")
            ),
            api_key=os.environ.get("API_KEY") or None,
            agent_api_url=os.environ.get("MASTRA_API_URL", "https://api.mastra.ai/v1"),
            agent_api_key=os.environ.get("MASTRA_API_KEY") or None,
            agent_timeout=_env_float("MASTRA_TIMEOUT", 60.0),
            openai_api_url=os.environ.get("OPENAI_API_URL", "https://api.openai.com"),
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            analysis_agent_id=os.environ.get("ANALYSIS_AGENT_ID", "example-agent"),
            format_agent_id=os.environ.get("FORMAT_AGENT_ID", "example-agent"),
            inter_stage_delay=_env_float("ORCHESTRATION_DELAY", 1.0),
            orchestration_timeout=_env_float("ORCHESTRATION_TIMEOUT", 300.0),
            max_tool_rounds=int(os.environ.get("MAX_TOOL_ROUNDS", "10")),
            rpc_url=os.environ.get("RPC_URL") or None,
            cors_origins=[o.strip() for o in cors.split(",") if o.strip()] if cors else ["*"],
            debug=os.environ.get("SAFECAP_DEBUG", "").lower() == "true",
            log_level=os.environ.get("SAFECAP_LOG_LEVEL", "info"),
        )

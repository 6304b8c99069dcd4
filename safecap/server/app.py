"""
FastAPI application for the SafeCap server.
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from ..backend import AgentBackendClient
from ..builtin_tools import ChainRPC, build_default_registry
from ..completions import CompletionsClient
from ..engine import AgentEngine
from ..exceptions import CompletionError, SafeCapError
from ..models import OrchestrationSession
from ..orchestration import OrchestrationPipeline
from ..tools import ToolRegistry
from .campaigns import CampaignStore
from .config import ServerConfig

logger = logging.getLogger("safecap.server.app")


class OrchestrateRequest(BaseModel):
    task: str
    api_key: str = Field(alias="apiKey")

    class Config:
        populate_by_name = True


class MessageRequest(BaseModel):
    agent_id: str = Field(alias="agentId")
    message: str

    class Config:
        populate_by_name = True


class CampaignCreate(BaseModel):
    title: str
    description: str = ""
    goal: float
    creator: str
    deadline: Optional[str] = None


class DonationRequest(BaseModel):
    amount: float


class CompletionRequest(BaseModel):
    prompt: str = ""
    model: Optional[str] = None
    max_tokens: Optional[int] = None


class ChatMessage(BaseModel):
    role: str
    content: str
    name: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
    model: Optional[str] = None
    max_tokens: Optional[int] = None


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _describe_validation_errors(errors: list) -> str:
    missing = [
        str(err["loc"][-1])
        for err in errors
        if err.get("type") == "missing" and err.get("loc")
    ]
    if missing:
        return f"{', '.join(missing)} is required"
    return "Invalid request"


def create_app(
    config: Optional[ServerConfig] = None,
    backend: Optional[AgentBackendClient] = None,
    registry: Optional[ToolRegistry] = None,
    rpc: Optional[ChainRPC] = None,
    completions: Optional[CompletionsClient] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    ``backend``, ``registry``, ``rpc`` and ``completions`` are built from
    ``config`` unless supplied. Only the ones built here are closed on
    shutdown.
    """
    if config is None:
        config = ServerConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = []
        agent_backend = backend
        if agent_backend is None:
            agent_backend = AgentBackendClient(
                base_url=config.agent_api_url,
                api_key=config.agent_api_key,
                timeout=config.agent_timeout,
            )
            owned.append(agent_backend)
        chain = rpc
        if chain is None and config.rpc_url:
            chain = ChainRPC(config.rpc_url)
            owned.append(chain)
        completions_client = completions
        if completions_client is None:
            completions_client = CompletionsClient(
                config.openai_api_url,
                config.openai_api_key,
                timeout=config.agent_timeout,
            )
            owned.append(completions_client)
        tool_registry = registry if registry is not None else build_default_registry(chain)

        app.state.config = config
        app.state.backend = agent_backend
        app.state.rpc = chain
        app.state.completions = completions_client
        app.state.engine = AgentEngine(
            agent_backend,
            tool_registry,
            max_rounds=config.max_tool_rounds,
        )
        app.state.campaigns = CampaignStore()
        logger.info(
            "SafeCap server starting (environment=%s, agent backend=%s)",
            config.environment,
            config.agent_api_url,
        )
        logger.debug("Tool schemas: %s", json.dumps(tool_registry.schemas()))
        try:
            yield
        finally:
            for resource in owned:
                await resource.aclose()

    app = FastAPI(
        title="SafeCap API",
        description="Campaigns and agent orchestration",
        version=config.version,
        lifespan=lifespan,
        debug=config.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": _describe_validation_errors(errors),
                "details": errors,
            },
        )

    @app.exception_handler(SafeCapError)
    async def safecap_error_handler(request: Request, exc: SafeCapError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code or 500, content=exc.to_response())

    @app.get("/")
    async def root():
        return {"message": "SafeCap API", "version": config.version, "timestamp": _now()}

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": _now()}

    @app.post("/api/mastra/message")
    async def send_agent_message(body: MessageRequest):
        if not body.agent_id or not body.message:
            return JSONResponse(
                status_code=400,
                content={"success": False, "error": "Agent ID and message are required"},
            )
        response = await app.state.engine.send_message(body.agent_id, body.message)
        return response.to_dict()

    @app.post("/api/agent/orchestrate")
    async def orchestrate(body: OrchestrateRequest, request: Request):
        """Run the analysis and formatting agents, streaming progress as SSE."""
        session = OrchestrationSession(
            task=body.task,
            api_key=body.api_key,
            session_id=str(uuid.uuid4()),
        )
        pipeline = OrchestrationPipeline(app.state.engine, config.pipeline_settings())
        logger.info("Orchestration %s requested", session.session_id)

        async def event_generator():
            async for event in pipeline.run(session, is_disconnected=request.is_disconnected):
                logger.info(
                    "Orchestration %s SSE event: %s",
                    session.session_id,
                    event.type.value,
                )
                yield event.to_sse()
                if event.is_terminal:
                    logger.info(
                        "Orchestration %s stream closed after %s",
                        session.session_id,
                        event.type.value,
                    )
                    break

        return EventSourceResponse(
            event_generator(),
            headers={"Cache-Control": "no-cache"},
            sep="\n",
        )

    @app.get("/api/campaigns")
    async def list_campaigns():
        return [c.to_dict() for c in app.state.campaigns.list_all()]

    @app.get("/api/campaigns/{campaign_id}")
    async def get_campaign(campaign_id: str):
        campaign = app.state.campaigns.get(campaign_id)
        if campaign is None:
            return JSONResponse(status_code=404, content={"error": "Campaign not found"})
        return campaign.to_dict()

    @app.post("/api/campaigns", status_code=201)
    async def create_campaign(body: CampaignCreate):
        campaign = app.state.campaigns.create(
            title=body.title,
            description=body.description,
            goal=body.goal,
            creator=body.creator,
            deadline=body.deadline,
        )
        return campaign.to_dict()

    @app.post("/api/campaigns/{campaign_id}/donate")
    async def donate(campaign_id: str, body: DonationRequest):
        store: CampaignStore = app.state.campaigns
        if store.get(campaign_id) is None:
            return JSONResponse(status_code=404, content={"error": "Campaign not found"})
        try:
            campaign = store.donate(campaign_id, body.amount)
        except ValueError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        return campaign.to_dict()

    @app.post("/v1/completions")
    async def create_completion(body: CompletionRequest):
        if not body.prompt:
            return JSONResponse(status_code=400, content={"error": "Prompt is required"})
        try:
            return await app.state.completions.create_completion(
                body.prompt, model=body.model, max_tokens=body.max_tokens
            )
        except CompletionError as e:
            logger.error("Completion failed: %s", e.message)
            return JSONResponse(
                status_code=500,
                content={
                    "error": {
                        "message": f"Failed to create completion: {e.message}",
                        "type": "api_error",
                    }
                },
            )

    @app.post("/v1/chat/completions")
    async def create_chat_completion(body: ChatCompletionRequest):
        if not body.messages:
            return JSONResponse(
                status_code=400,
                content={
                    "error": {
                        "message": "Messages array is required and cannot be empty",
                        "type": "invalid_request_error",
                    }
                },
            )
        messages = [m.model_dump(exclude_none=True) for m in body.messages]
        try:
            return await app.state.completions.create_chat_completion(
                messages, model=body.model, max_tokens=body.max_tokens
            )
        except CompletionError as e:
            logger.error("Chat completion failed: %s", e.message)
            return JSONResponse(
                status_code=500,
                content={
                    "error": {
                        "message": f"Failed to create chat completion: {e.message}",
                        "type": "api_error",
                    }
                },
            )

    @app.get("/api/transactions/health")
    async def transactions_health():
        status = "ok" if app.state.rpc is not None else "unavailable"
        return {"status": status, "timestamp": _now()}

    @app.get("/api/transactions/{tx_hash}")
    async def get_transaction(tx_hash: str):
        chain: Optional[ChainRPC] = app.state.rpc
        if chain is None:
            return JSONResponse(
                status_code=503,
                content={"error": "Service unavailable", "details": "RPC_URL is not configured"},
            )
        try:
            tx = await chain.get_transaction(tx_hash)
        except ValueError as e:
            return JSONResponse(
                status_code=400,
                content={"error": "Invalid transaction hash", "details": str(e)},
            )
        except (httpx.HTTPError, RuntimeError) as e:
            logger.error("Transaction lookup for %s failed: %s", tx_hash, e)
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to fetch transaction", "details": str(e)},
            )
        if tx is None:
            return JSONResponse(
                status_code=404,
                content={
                    "error": "Transaction not found",
                    "details": "The requested transaction was not found on the blockchain",
                },
            )
        return tx

    return app


class SafeCapServer:
    """High-level server class for running SafeCap."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8000,
        config: Optional[ServerConfig] = None,
        **kwargs,
    ):
        self.config = config or ServerConfig.from_env()
        self.config.host = host
        self.config.port = port
        for key, value in kwargs.items():
            setattr(self.config, key, value)
        self.app = create_app(self.config)

    def run(self):
        """Run the server (blocking)."""
        import uvicorn

        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )

    async def run_async(self):
        """Run the server asynchronously."""
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level,
        )
        server = uvicorn.Server(config)
        await server.serve()

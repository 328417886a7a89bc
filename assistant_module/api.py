"""FastAPI entry point for the assistant module."""

from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator
import uvicorn

from .config import AssistantConfig, BackendDescriptor, BackendKind, SamplingParams
from .errors import GenerationError, NotReadyError, UnsupportedBackendError
from .service import Orchestrator
from .utils import setup_logging

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    message: str = Field(..., description="User message to send to the assistant.")
    history: List[str] = Field(
        default_factory=list,
        description="Optional alternating user/assistant messages replacing the live context.",
    )

    @field_validator("message")
    @classmethod
    def _not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("field must not be empty")
        return value


class ChatResponse(BaseModel):
    reply: str
    session_id: str
    status: str
    failed: bool = False


class BackendRequest(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    kind: BackendKind = BackendKind.HTTP_INFERENCE
    endpoint: str = "http://localhost:11434"
    model_id: str = "qwen2.5:3b"
    temperature: float = Field(0.7, ge=0.0)
    top_p: float = Field(0.9, gt=0.0, le=1.0)
    top_k: int = Field(40, gt=0)
    extra: Dict[str, Any] = Field(default_factory=dict)

    def to_descriptor(self) -> BackendDescriptor:
        return BackendDescriptor(
            kind=self.kind,
            endpoint=self.endpoint.rstrip("/"),
            model_id=self.model_id,
            sampling=SamplingParams(temperature=self.temperature, top_p=self.top_p, top_k=self.top_k),
            extra=dict(self.extra),
        )


class StatusResponse(BaseModel):
    status: str
    error_message: str = ""
    model: Optional[str] = None
    locale: Optional[str] = None


class SessionResponse(BaseModel):
    session_id: str
    started_at: str
    message_count: int
    estimated_tokens: int
    topics: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    turns: List[Dict[str, Any]] = Field(default_factory=list)


def create_app(
    orchestrator: Optional[Orchestrator] = None,
    *,
    config: Optional[AssistantConfig] = None,
    log_dir: Optional[str] = None,
    initialize: bool = True,
) -> FastAPI:
    if log_dir:
        setup_logging(log_dir, logging.INFO)

    service = orchestrator or Orchestrator(config)
    if initialize:
        try:
            service.initialize()
        except UnsupportedBackendError:
            logger.exception("Configured backend is not supported")

    app = FastAPI(title="Mail Assistant", version="0.1.0")
    app.state.service = service

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/status", response_model=StatusResponse)
    def status() -> StatusResponse:
        svc: Orchestrator = app.state.service
        backend = svc.backend
        return StatusResponse(
            status=svc.status.value,
            error_message=svc.error_message,
            model=backend.model_name if backend is not None else None,
            locale=svc.locale,
        )

    @app.post("/chat", response_model=ChatResponse)
    def chat(request: ChatRequest) -> ChatResponse:
        svc: Orchestrator = app.state.service
        failed = False
        try:
            reply = svc.generate(request.message, request.history or None)
        except NotReadyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except GenerationError as exc:
            logger.warning("Chat generation failed: %s", exc)
            svc.last_error = exc
            reply = svc.config.failure_message
            failed = True
        return ChatResponse(
            reply=reply,
            session_id=svc.session.id,
            status=svc.status.value,
            failed=failed,
        )

    @app.post("/chat/stream")
    def chat_stream(request: ChatRequest):
        svc: Orchestrator = app.state.service
        try:
            stream = svc.generate_stream(request.message, request.history or None)
        except NotReadyError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("Chat stream request failed")
            raise HTTPException(status_code=500, detail="Chat request failed") from exc

        def guarded():
            try:
                yield from stream
            except GenerationError as exc:
                logger.warning("Streaming generation failed: %s", exc)
                svc.last_error = exc
                yield svc.config.failure_message

        return StreamingResponse(guarded(), media_type="text/plain")

    @app.post("/session/new", response_model=SessionResponse)
    def new_session() -> Dict[str, Any]:
        return app.state.service.start_new_session().to_dict()

    @app.get("/session", response_model=SessionResponse)
    def session() -> Dict[str, Any]:
        return app.state.service.session.to_dict()

    @app.post("/backend", response_model=StatusResponse)
    def switch_backend(request: BackendRequest) -> StatusResponse:
        svc: Orchestrator = app.state.service
        try:
            svc.switch_backend(request.to_descriptor())
        except UnsupportedBackendError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return StatusResponse(
            status=svc.status.value,
            error_message=svc.error_message,
            model=request.model_id,
            locale=svc.locale,
        )

    @app.get("/model")
    def model_info() -> Dict[str, Any]:
        return app.state.service.model_info()

    return app


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the mail assistant service.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8004, help="Port to bind.")
    parser.add_argument("--log_dir", help="Directory for application logs.")
    parser.add_argument("--llm_endpoint", default="http://localhost:11434", help="Inference server base URL.")
    parser.add_argument("--llm_model", default="qwen2.5:3b", help="Model name for generation.")
    parser.add_argument("--temperature", type=float, default=0.7, help="Sampling temperature.")
    parser.add_argument("--request_timeout", type=float, default=30.0, help="Timeout for generation calls (seconds).")
    parser.add_argument("--probe_timeout", type=float, default=5.0, help="Timeout for the liveness probe (seconds).")
    parser.add_argument("--native_streaming", action="store_true", help="Relay server-side streaming fragments.")
    parser.add_argument("--locale", help="Voice locale preference, e.g. fr_FR.")
    return parser.parse_args(argv)


def config_from_args(args: argparse.Namespace) -> AssistantConfig:
    descriptor = BackendDescriptor(
        kind=BackendKind.HTTP_INFERENCE,
        endpoint=args.llm_endpoint.rstrip("/"),
        model_id=args.llm_model,
        sampling=SamplingParams(temperature=args.temperature),
        extra={"native_streaming": args.native_streaming},
        probe_timeout=args.probe_timeout,
        request_timeout=args.request_timeout,
    )
    return AssistantConfig(backend=descriptor, locale=args.locale)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    app = create_app(config=config_from_args(args), log_dir=args.log_dir)
    logger.info("Starting assistant service on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()

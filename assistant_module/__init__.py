"""Conversational assistant core for mailbox questions over a local LLM.

This package wires a pluggable text-generation backend (an Ollama-style HTTP
inference server by default) with an immutable conversation ledger that
compacts itself, a rule-based mailbox intent router and a readiness status
channel. The primary entry points are ``assistant_module.api.create_app`` for
running the HTTP service and ``assistant_module.service.Orchestrator`` for
embedding the assistant directly into Python code.
"""

from .config import AssistantConfig, BackendDescriptor, BackendKind, SamplingParams
from .context import ConversationSession, Speaker, Turn
from .errors import (
    AssistantError,
    ConnectivityError,
    GenerationError,
    NotReadyError,
    ProtocolError,
    UnsupportedBackendError,
)
from .service import Orchestrator
from .status import ReadinessState

__all__ = [
    "AssistantConfig",
    "AssistantError",
    "BackendDescriptor",
    "BackendKind",
    "ConnectivityError",
    "ConversationSession",
    "GenerationError",
    "NotReadyError",
    "Orchestrator",
    "ProtocolError",
    "ReadinessState",
    "SamplingParams",
    "Speaker",
    "Turn",
    "UnsupportedBackendError",
]

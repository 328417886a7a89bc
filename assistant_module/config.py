"""Configuration objects for the assistant module."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

DEFAULT_SYSTEM_PROMPT = (
    "Tu es MailMind, un assistant conversationnel intelligent et amical. "
    "Tu discutes naturellement en français et anglais. Tu es spécialisé dans "
    "l'aide à la gestion d'emails et la productivité. Réponds de manière précise, "
    "concise et directe. Suis exactement les instructions données sans ajouter "
    "d'informations non demandées."
)
DEFAULT_EMPTY_REPLY = "Je ne peux pas répondre à cette question pour le moment."


class BackendKind(str, Enum):
    """Backend implementations known to the assistant."""

    HTTP_INFERENCE = "http_inference"
    NATIVE = "native"


@dataclass(frozen=True)
class SamplingParams:
    """Sampling options forwarded to the inference server."""

    temperature: float = 0.7
    top_p: float = 0.9
    top_k: int = 40

    def to_options(self) -> Dict[str, Any]:
        return {"temperature": self.temperature, "top_p": self.top_p, "top_k": self.top_k}


@dataclass(frozen=True)
class BackendDescriptor:
    """Everything needed to construct one backend adapter."""

    kind: BackendKind = BackendKind.HTTP_INFERENCE
    endpoint: str = "http://localhost:11434"
    model_id: str = "qwen2.5:3b"
    sampling: SamplingParams = field(default_factory=SamplingParams)
    extra: Mapping[str, Any] = field(default_factory=dict, hash=False)
    probe_timeout: float = 5.0
    request_timeout: float = 30.0
    stream_delay: float = 0.05

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @classmethod
    def http(
        cls,
        endpoint: str = "http://localhost:11434",
        model_id: str = "qwen2.5:3b",
        temperature: float = 0.7,
        **extra: Any,
    ) -> "BackendDescriptor":
        return cls(
            kind=BackendKind.HTTP_INFERENCE,
            endpoint=endpoint.rstrip("/"),
            model_id=model_id,
            sampling=SamplingParams(temperature=temperature),
            extra=dict(extra),
        )

    def option(self, name: str, default: Any = None) -> Any:
        return self.extra.get(name, default)


@dataclass
class AssistantConfig:
    """Runtime controls for the assistant."""

    backend: BackendDescriptor = field(default_factory=BackendDescriptor)
    history_turns: int = 3
    compaction_threshold_tokens: int = 1500
    compaction_keep_turns: int = 6
    locale: Optional[str] = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    empty_reply_message: str = DEFAULT_EMPTY_REPLY
    failure_message: str = "Désolé, j'ai rencontré un problème technique. Pouvez-vous réessayer ?"
    status_buffer_size: int = 64

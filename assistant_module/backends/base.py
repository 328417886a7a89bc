"""Capability contract shared by every backend adapter."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, Optional

from ..config import BackendDescriptor, BackendKind
from ..context import ConversationSession
from ..errors import GenerationError, NotReadyError
from ..status import ReadinessState, StatusChannel

logger = logging.getLogger(__name__)


class BackendAdapter(ABC):
    """Turns (message, context) into generated text and tracks readiness.

    Subclasses implement :meth:`_probe` and :meth:`_generate`; the base class
    owns the state machine, the status channel and the emulated streaming.
    A backend capable of incremental decoding overrides
    :meth:`generate_stream` directly.
    """

    def __init__(self, descriptor: BackendDescriptor, *, status_buffer_size: int = 64) -> None:
        self.descriptor = descriptor
        self.status_channel = StatusChannel(status_buffer_size)
        self._status = ReadinessState.UNINITIALIZED
        self._error_message = ""
        self._initialized = False
        self._disposed = False

    @property
    def backend_kind(self) -> BackendKind:
        return self.descriptor.kind

    @property
    def status(self) -> ReadinessState:
        return self._status

    @property
    def error_message(self) -> str:
        return self._error_message

    @property
    def model_name(self) -> str:
        return self.descriptor.model_id

    @property
    def is_ready(self) -> bool:
        return self._status is ReadinessState.READY

    def initialize(self) -> None:
        """Probe the backend; end in READY or ERROR. No-op once initialized."""
        if self._initialized:
            return

        self._set_status(ReadinessState.LOADING)
        logger.info("Initialising %s backend for model %s", self.backend_kind.value, self.model_name)
        try:
            self._probe()
        except Exception as exc:
            self._error_message = f"Backend initialisation failed: {exc}"
            logger.error("%s backend unavailable: %s", self.backend_kind.value, exc)
            self._set_status(ReadinessState.ERROR)
            return

        self._error_message = ""
        self._initialized = True
        self._set_status(ReadinessState.READY)
        logger.info("%s backend ready", self.backend_kind.value)

    def generate(self, message: str, context: Optional[ConversationSession] = None) -> str:
        self._require_ready()
        self._set_status(ReadinessState.THINKING)
        try:
            reply = self._generate(message, context)
        except Exception as exc:
            logger.warning("Generation failed on %s backend: %s", self.backend_kind.value, exc)
            self._set_status(ReadinessState.READY)
            raise GenerationError("Generation failed", cause=exc) from exc

        self._set_status(ReadinessState.READY)
        return reply

    def generate_stream(self, message: str, context: Optional[ConversationSession] = None) -> Iterator[str]:
        """Emulate incremental delivery by chunking a complete reply into words.

        The pacing delay only imitates a token stream; it is not a timing
        guarantee.
        """
        self._require_ready()

        def generator() -> Iterator[str]:
            reply = self.generate(message, context)
            delay = self.descriptor.stream_delay
            for index, word in enumerate(reply.split(" ")):
                if index:
                    if delay > 0:
                        time.sleep(delay)
                    yield " " + word
                else:
                    yield word

        return generator()

    def check_availability(self) -> bool:
        try:
            self._probe()
        except Exception:
            logger.debug("Availability probe failed for %s backend", self.backend_kind.value, exc_info=True)
            return False
        return True

    def model_info(self) -> Dict[str, Any]:
        return {
            "backend": self.backend_kind.value,
            "model": self.model_name,
            "endpoint": self.descriptor.endpoint,
            "status": self._status.value,
            "available": self.check_availability(),
        }

    def quick_test(self) -> str:
        return self.generate("Bonjour", None)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self.status_channel.close()
        logger.info("%s backend disposed", self.backend_kind.value)

    def _require_ready(self) -> None:
        if not self.is_ready:
            raise NotReadyError(
                f"{self.backend_kind.value} backend is not ready (status={self._status.value})"
            )

    def _set_status(self, state: ReadinessState) -> None:
        self._status = state
        self.status_channel.publish(state)

    @abstractmethod
    def _probe(self) -> None:
        """Raise when the backend is not reachable."""

    @abstractmethod
    def _generate(self, message: str, context: Optional[ConversationSession]) -> str:
        """Perform one round trip and return cleaned text."""

"""Error taxonomy shared by backends and the orchestrator."""

from __future__ import annotations

from typing import Optional


class AssistantError(Exception):
    """Base class for every error raised by the assistant core."""


class BackendError(AssistantError):
    """A backend could not complete a network exchange."""


class ConnectivityError(BackendError):
    """The endpoint could not be reached or did not answer in time."""


class ProtocolError(BackendError):
    """The endpoint answered with an unexpected status or payload."""


class NotReadyError(AssistantError):
    """Generation was requested while no backend is ready."""


class UnsupportedBackendError(AssistantError):
    """The requested backend kind has no implementation on this platform."""


class GenerationError(AssistantError):
    """A single generation failed; the session stays usable."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        base = super().__str__()
        if self.cause is None:
            return base
        return f"{base}: {self.cause}"

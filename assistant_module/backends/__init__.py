"""Backend adapters and the factory that selects one per descriptor."""

from __future__ import annotations

from typing import Any

from ..config import BackendDescriptor, BackendKind
from ..errors import UnsupportedBackendError
from .base import BackendAdapter
from .http_backend import HTTPInferenceBackend


def create_backend(descriptor: BackendDescriptor, **kwargs: Any) -> BackendAdapter:
    """Construct the adapter for ``descriptor.kind``; never falls back to another kind."""
    if descriptor.kind is BackendKind.HTTP_INFERENCE:
        return HTTPInferenceBackend(descriptor, **kwargs)
    if descriptor.kind is BackendKind.NATIVE:
        raise UnsupportedBackendError(
            "The native on-device backend is not available on this platform; "
            "use an HTTP inference server instead."
        )
    raise UnsupportedBackendError(f"Unknown backend kind: {descriptor.kind!r}")


__all__ = ["BackendAdapter", "HTTPInferenceBackend", "create_backend"]

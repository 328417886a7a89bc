"""Client wrapper for an Ollama-style text generation server."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Optional

import requests

from .errors import ConnectivityError, ProtocolError

logger = logging.getLogger(__name__)


class InferenceClient:
    """Thin wrapper around ``/api/tags`` and ``/api/generate`` with timeouts."""

    def __init__(
        self,
        endpoint: str,
        model: str,
        *,
        probe_timeout: float = 5.0,
        request_timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.model = model
        self.probe_timeout = probe_timeout
        self.request_timeout = request_timeout
        self.http = session or requests.Session()

    @property
    def tags_url(self) -> str:
        return f"{self.endpoint}/api/tags"

    @property
    def generate_url(self) -> str:
        return f"{self.endpoint}/api/generate"

    def ping(self) -> None:
        """Raise unless the server answers the liveness probe with HTTP 200."""
        try:
            response = self.http.get(self.tags_url, timeout=self.probe_timeout)
        except requests.Timeout as exc:
            raise ConnectivityError(f"Liveness probe to {self.tags_url} timed out") from exc
        except requests.RequestException as exc:
            raise ConnectivityError(f"Inference server unreachable at {self.endpoint}: {exc}") from exc

        if response.status_code != 200:
            raise ProtocolError(
                f"Inference server at {self.endpoint} answered liveness probe with HTTP {response.status_code}"
            )

    def complete(self, prompt: str, *, options: Optional[Dict[str, Any]] = None) -> str:
        """Return the full ``response`` text for a non-streaming request."""
        payload = self._payload(prompt, stream=False, options=options)

        logger.debug("Requesting completion from %s using model %s", self.generate_url, self.model)
        try:
            response = self.http.post(self.generate_url, json=payload, timeout=self.request_timeout)
        except requests.Timeout as exc:
            raise ConnectivityError(
                f"Generation request timed out after {self.request_timeout:.0f}s"
            ) from exc
        except requests.RequestException as exc:
            raise ConnectivityError(f"Generation request failed: {exc}") from exc

        if response.status_code != 200:
            raise ProtocolError(f"Inference API error: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError("Inference API returned a non-JSON body") from exc

        text = data.get("response") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise ProtocolError("Inference API response lacks a 'response' text field")
        return text

    def stream_completion(self, prompt: str, *, options: Optional[Dict[str, Any]] = None) -> Iterable[str]:
        """Yield response fragments from a streaming request as they arrive."""
        payload = self._payload(prompt, stream=True, options=options)

        logger.info("Streaming completion from %s using model %s", self.generate_url, self.model)
        try:
            response = self.http.post(
                self.generate_url,
                json=payload,
                stream=True,
                timeout=self.request_timeout,
            )
        except requests.Timeout as exc:
            raise ConnectivityError(
                f"Generation request timed out after {self.request_timeout:.0f}s"
            ) from exc
        except requests.RequestException as exc:
            raise ConnectivityError(f"Generation request failed: {exc}") from exc

        if response.status_code != 200:
            raise ProtocolError(f"Inference API error: HTTP {response.status_code}")

        try:
            for raw_line in response.iter_lines():
                if not raw_line:
                    continue
                line = raw_line.decode("utf-8").strip() if isinstance(raw_line, bytes) else raw_line.strip()
                try:
                    chunk = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping non-JSON stream line: %s", line)
                    continue

                fragment = chunk.get("response") or ""
                if fragment:
                    yield str(fragment)
                if chunk.get("done"):
                    break
        except requests.RequestException as exc:
            raise ConnectivityError(f"Stream interrupted: {exc}") from exc
        finally:
            response.close()

    def _payload(self, prompt: str, *, stream: bool, options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": stream,
        }
        if options:
            payload["options"] = dict(options)
        return payload

    def close(self) -> None:
        self.http.close()

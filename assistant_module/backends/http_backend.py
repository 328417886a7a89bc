"""Backend adapter for an HTTP inference server (Ollama ``/api`` protocol)."""

from __future__ import annotations

import logging
import re
from typing import Iterator, Optional

import requests

from ..config import DEFAULT_EMPTY_REPLY, DEFAULT_SYSTEM_PROMPT, BackendDescriptor
from ..context import ConversationSession
from ..errors import GenerationError
from ..llm_client import InferenceClient
from ..status import ReadinessState
from .base import BackendAdapter

logger = logging.getLogger(__name__)

IM_START = "<|im_start|>"
IM_END = "<|im_end|>"
ASSISTANT_SEGMENT = f"{IM_START}assistant"

_MARKUP_RE = re.compile(r"<[^>]*>")
_ESCAPED_NEWLINES_RE = re.compile(r"(?:\\n)+")
_NEWLINES_RE = re.compile(r"[\r\n]+")
_SPACES_RE = re.compile(r" {2,}")
_ROLE_LINE_RE = re.compile(r"<\|im_start\|>(?:assistant|user|system)?")
_OPEN_ROLE_RE = re.compile(r"<\|im_start\|>\w*$")


def build_prompt(
    message: str,
    context: Optional[ConversationSession],
    *,
    system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    history_turns: int = 3,
) -> str:
    """Render the ChatML prompt: system, recent turns, user, open assistant."""
    lines = [f"{IM_START}system", system_prompt, IM_END]
    if context is not None and context.turns:
        for turn in context.recent(history_turns):
            lines.append(f"{IM_START}{turn.speaker.value}")
            lines.append(turn.text)
            lines.append(IM_END)
    lines.extend([f"{IM_START}user", message, IM_END])
    return "\n".join(lines) + f"\n{ASSISTANT_SEGMENT}"


def clean_response(text: str, *, fallback: str = DEFAULT_EMPTY_REPLY) -> str:
    """Strip echoed prompt and markup from a raw completion."""
    cleaned = text.strip()
    while cleaned.endswith(IM_END):
        cleaned = cleaned[: -len(IM_END)].rstrip()
    if ASSISTANT_SEGMENT in cleaned:
        cleaned = cleaned.split(ASSISTANT_SEGMENT)[-1]
    elif IM_END in cleaned:
        cleaned = cleaned.split(IM_END)[-1]

    cleaned = _MARKUP_RE.sub("", cleaned)
    cleaned = _ESCAPED_NEWLINES_RE.sub(" ", cleaned)
    cleaned = _NEWLINES_RE.sub(" ", cleaned)
    cleaned = _SPACES_RE.sub(" ", cleaned).strip()
    return cleaned or fallback


class StreamCleaner:
    """Incremental form of :func:`clean_response` for streamed fragments.

    A fragment tail that could still be the start of a markup tag, an escaped
    newline or an ``<|im_start|>`` role line is held back until the next
    fragment completes it. Whitespace is collapsed across fragment boundaries
    and never emitted at either end of the reply.
    """

    def __init__(self) -> None:
        self._pending = ""
        self._started = False
        self._gap = False

    def feed(self, fragment: str) -> str:
        self._pending += fragment
        cut = _hold_point(self._pending)
        ready, self._pending = self._pending[:cut], self._pending[cut:]
        return self._emit(_normalise(ready))

    def flush(self) -> str:
        rest, self._pending = self._pending, ""
        return self._emit(_normalise(rest))

    def _emit(self, text: str) -> str:
        body = text.strip(" ")
        if not body:
            if text and self._started:
                self._gap = True
            return ""
        prefix = " " if self._started and (self._gap or text[0] == " ") else ""
        self._started = True
        self._gap = text[-1] == " "
        return prefix + body


def _hold_point(text: str) -> int:
    cut = len(text)
    opening = text.rfind("<")
    if opening != -1 and ">" not in text[opening:]:
        cut = opening
    role = _OPEN_ROLE_RE.search(text, 0, cut)
    if role is not None:
        cut = role.start()
    if text[:cut].endswith("\\"):
        cut -= 1
    return cut


def _normalise(text: str) -> str:
    text = _ROLE_LINE_RE.sub(" ", text)
    text = _MARKUP_RE.sub("", text)
    text = _ESCAPED_NEWLINES_RE.sub(" ", text)
    text = _NEWLINES_RE.sub(" ", text)
    return _SPACES_RE.sub(" ", text)


class HTTPInferenceBackend(BackendAdapter):
    """Talks to an inference server over ``/api/tags`` and ``/api/generate``.

    ``descriptor.extra`` understands ``system_prompt``, ``history_turns``,
    ``empty_reply`` and ``native_streaming``. With ``native_streaming`` set,
    :meth:`generate_stream` relays server-side fragments instead of chunking
    a finished reply.
    """

    def __init__(
        self,
        descriptor: BackendDescriptor,
        *,
        session: Optional[requests.Session] = None,
        status_buffer_size: int = 64,
    ) -> None:
        super().__init__(descriptor, status_buffer_size=status_buffer_size)
        self.client = InferenceClient(
            descriptor.endpoint,
            descriptor.model_id,
            probe_timeout=descriptor.probe_timeout,
            request_timeout=descriptor.request_timeout,
            session=session,
        )
        self.system_prompt = descriptor.option("system_prompt", DEFAULT_SYSTEM_PROMPT)
        self.history_turns = int(descriptor.option("history_turns", 3))
        self.empty_reply = descriptor.option("empty_reply", DEFAULT_EMPTY_REPLY)
        self.native_streaming = bool(descriptor.option("native_streaming", False))

    def build_prompt(self, message: str, context: Optional[ConversationSession]) -> str:
        return build_prompt(
            message,
            context,
            system_prompt=self.system_prompt,
            history_turns=self.history_turns,
        )

    def _probe(self) -> None:
        self.client.ping()

    def _generate(self, message: str, context: Optional[ConversationSession]) -> str:
        prompt = self.build_prompt(message, context)
        raw = self.client.complete(prompt, options=self.descriptor.sampling.to_options())
        reply = clean_response(raw, fallback=self.empty_reply)
        logger.info("Reply generated by %s (%d chars)", self.model_name, len(reply))
        return reply

    def generate_stream(self, message: str, context: Optional[ConversationSession] = None) -> Iterator[str]:
        if not self.native_streaming:
            return super().generate_stream(message, context)

        self._require_ready()
        prompt = self.build_prompt(message, context)

        def generator() -> Iterator[str]:
            self._set_status(ReadinessState.THINKING)
            cleaner = StreamCleaner()
            emitted = False
            try:
                for fragment in self.client.stream_completion(
                    prompt, options=self.descriptor.sampling.to_options()
                ):
                    piece = cleaner.feed(fragment)
                    if piece:
                        emitted = True
                        yield piece
                tail = cleaner.flush()
                if tail:
                    emitted = True
                    yield tail
                if not emitted:
                    yield self.empty_reply
            except Exception as exc:
                logger.warning("Streaming generation failed on %s: %s", self.model_name, exc)
                raise GenerationError("Generation failed", cause=exc) from exc
            finally:
                self._set_status(ReadinessState.READY)

        return generator()

    def dispose(self) -> None:
        if not self._disposed:
            self.client.close()
        super().dispose()

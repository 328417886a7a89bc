"""High level orchestration of backend, conversation memory and intent rewriting."""

from __future__ import annotations

import dataclasses
import logging
import queue
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from .backends import BackendAdapter, create_backend
from .boundaries import MailboxQuery, SettingsProvider, SpeechOutput
from .config import AssistantConfig, BackendDescriptor
from .context import ConversationSession, Turn, new_session, session_from_history
from .errors import AssistantError, NotReadyError
from .intent import IntentRouter
from .status import ReadinessState, StatusChannel, StatusSubscription

logger = logging.getLogger(__name__)

BackendFactory = Callable[[BackendDescriptor], BackendAdapter]
BackendSelector = Callable[[AssistantConfig, Optional[str]], BackendDescriptor]

_STREAM_END = object()


class Orchestrator:
    """Core assistant engine used by both the API and direct Python consumers.

    Owns the active backend adapter, the live conversation session and the
    status channel. Generations are serialised: one in flight at a time.
    Session and backend swaps are guarded by a separate short lock so that
    ``start_new_session`` and ``switch_backend`` never wait on the network.
    """

    def __init__(
        self,
        config: Optional[AssistantConfig] = None,
        *,
        mailbox: Optional[MailboxQuery] = None,
        settings: Optional[SettingsProvider] = None,
        speech_output: Optional[SpeechOutput] = None,
        backend_factory: BackendFactory = create_backend,
        backend_selector: Optional[BackendSelector] = None,
    ) -> None:
        self.config = config or AssistantConfig()
        self.router = IntentRouter(mailbox)
        self.settings = settings
        self.speech_output = speech_output
        self.backend_factory = backend_factory
        self.backend_selector = backend_selector
        self.status_channel = StatusChannel(self.config.status_buffer_size)
        self.last_error: Optional[BaseException] = None

        self._backend: Optional[BackendAdapter] = None
        self._session: Optional[ConversationSession] = None
        self._locale: Optional[str] = self.config.locale
        self._setup_error = ""
        self._state_lock = threading.RLock()
        self._generation_lock = threading.Lock()

    # ------------------------------------------------------------------ state

    @property
    def backend(self) -> Optional[BackendAdapter]:
        return self._backend

    @property
    def status(self) -> ReadinessState:
        backend = self._backend
        if backend is not None:
            return backend.status
        return ReadinessState.ERROR if self._setup_error else ReadinessState.UNINITIALIZED

    @property
    def error_message(self) -> str:
        backend = self._backend
        if backend is not None:
            return backend.error_message
        return self._setup_error

    @property
    def is_ready(self) -> bool:
        return self.status is ReadinessState.READY

    @property
    def locale(self) -> Optional[str]:
        return self._locale

    @property
    def session(self) -> ConversationSession:
        """The live session; created on first use."""
        with self._state_lock:
            if self._session is None:
                self._session = new_session()
            return self._session

    def subscribe_status(self) -> StatusSubscription:
        return self.status_channel.subscribe()

    # -------------------------------------------------------------- lifecycle

    def initialize(self) -> None:
        """Select, build and initialise the backend. Re-initialises after an error.

        The state lock only covers selection and attachment; the liveness
        probe runs after it is released.
        """
        with self._state_lock:
            backend = self._backend
            if backend is not None:
                if backend.status is not ReadinessState.ERROR:
                    return
                logger.info("Re-initialising %s backend after failure", backend.backend_kind.value)
            else:
                if self.settings is not None:
                    self._locale = self.settings.voice_locale() or self._locale

                try:
                    descriptor = self._with_defaults(self._select_descriptor())
                    backend = self.backend_factory(descriptor)
                except AssistantError as exc:
                    self._setup_error = str(exc)
                    logger.error("Backend selection failed: %s", exc)
                    self.status_channel.publish(ReadinessState.ERROR)
                    raise

                logger.info("Selected %s backend (%s)", descriptor.kind.value, descriptor.model_id)
                self._attach(backend)

        backend.initialize()

    def switch_backend(self, descriptor: BackendDescriptor) -> None:
        """Replace the active backend. In-flight generations finish on the old one."""
        descriptor = self._with_defaults(descriptor)
        backend = self.backend_factory(descriptor)

        with self._state_lock:
            previous = self._backend
            logger.info(
                "Switching backend: %s -> %s",
                previous.backend_kind.value if previous else None,
                descriptor.kind.value,
            )
            self._attach(backend)

        if previous is not None:
            previous.dispose()
        backend.initialize()

    def start_new_session(self) -> ConversationSession:
        with self._state_lock:
            self._session = new_session()
            logger.info("Started new conversation %s", self._session.id)
            return self._session

    def dispose(self) -> None:
        with self._state_lock:
            backend, self._backend = self._backend, None
            self._session = None
        if backend is not None:
            backend.dispose()
        self.status_channel.close()
        logger.info("Orchestrator disposed")

    # ------------------------------------------------------------- generation

    def generate(self, text: str, history: Optional[Sequence[str]] = None) -> str:
        """Generate a reply and record the exchange in the live session."""
        self._require_backend()
        with self._generation_lock:
            backend = self._require_backend()
            issuer, context = self._context_for(history)
            prompt = self.router.rewrite(text)
            reply = backend.generate(prompt, context)
            self._record(backend, issuer.id, text, reply)
            return reply

    def generate_stream(self, text: str, history: Optional[Sequence[str]] = None) -> Iterator[str]:
        """Yield reply chunks in backend order; the exchange is recorded once complete.

        Generation starts on first iteration and runs on a worker thread that
        owns the generation lock. The caller only reads from a queue, so a
        consumer that stops iterating never blocks later generations, and the
        reply is still recorded when the worker finishes.
        """
        self._require_backend()

        def generator() -> Iterator[str]:
            sink: "queue.Queue[Any]" = queue.Queue()
            worker = threading.Thread(
                target=self._pump_stream,
                args=(text, history, sink),
                name="assistant-stream",
                daemon=True,
            )
            worker.start()
            while True:
                item = sink.get()
                if item is _STREAM_END:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item

        return generator()

    def respond(self, text: str, history: Optional[Sequence[str]] = None, *, speak: bool = False) -> str:
        """User-facing reply: never raises, substitutes a fixed message on failure."""
        try:
            reply = self.generate(text, history)
        except AssistantError as exc:
            self.last_error = exc
            logger.warning("Replying with fallback message: %s", exc)
            reply = self.config.failure_message

        if speak:
            self._speak(reply)
        return reply

    def handle_transcript(self, text: str) -> Optional[str]:
        """Voice input callback: reply to recognised text and speak the answer."""
        if not text or not text.strip():
            return None
        return self.respond(text.strip(), speak=True)

    # ----------------------------------------------------------------- health

    def check_availability(self) -> bool:
        backend = self._backend
        return backend.check_availability() if backend is not None else False

    def model_info(self) -> Dict[str, Any]:
        backend = self._backend
        info: Dict[str, Any] = backend.model_info() if backend is not None else {
            "backend": None,
            "model": None,
            "status": self.status.value,
            "available": False,
        }
        info["locale"] = self._locale
        info["session"] = self.session.summary()
        return info

    # ---------------------------------------------------------------- helpers

    def _select_descriptor(self) -> BackendDescriptor:
        if self.backend_selector is not None:
            return self.backend_selector(self.config, self._locale)
        return self.config.backend

    def _with_defaults(self, descriptor: BackendDescriptor) -> BackendDescriptor:
        defaults = {
            "system_prompt": self.config.system_prompt,
            "history_turns": self.config.history_turns,
            "empty_reply": self.config.empty_reply_message,
        }
        defaults.update(descriptor.extra)
        return dataclasses.replace(descriptor, extra=defaults)

    def _attach(self, backend: BackendAdapter) -> None:
        def forward(state: ReadinessState) -> None:
            if self._backend is backend:
                self.status_channel.publish(state)

        self._backend = backend
        self._setup_error = ""
        backend.status_channel.connect(forward)

    def _require_backend(self) -> BackendAdapter:
        with self._state_lock:
            backend = self._backend
        if backend is None or backend.status not in (ReadinessState.READY, ReadinessState.THINKING):
            status = backend.status.value if backend is not None else "uninitialized"
            raise NotReadyError(f"No backend is ready (status={status})")
        return backend

    def _context_for(self, history: Optional[Sequence[str]]) -> Tuple[ConversationSession, ConversationSession]:
        live = self.session
        if history:
            return live, session_from_history(history, live)
        return live, live

    def _pump_stream(self, text: str, history: Optional[Sequence[str]], sink: "queue.Queue[Any]") -> None:
        try:
            with self._generation_lock:
                backend = self._require_backend()
                issuer, context = self._context_for(history)
                prompt = self.router.rewrite(text)
                chunks: List[str] = []
                for chunk in backend.generate_stream(prompt, context):
                    chunks.append(chunk)
                    sink.put(chunk)
                self._record(backend, issuer.id, text, "".join(chunks))
        except Exception as exc:
            logger.warning("Streamed generation failed: %s", exc)
            sink.put(exc)
        finally:
            sink.put(_STREAM_END)

    def _record(self, backend: BackendAdapter, session_id: str, user_text: str, reply: str) -> bool:
        with self._state_lock:
            if self._backend is not backend:
                logger.warning("Backend changed during generation; reply not recorded")
                return False
            live = self._session
            if live is None or live.id != session_id:
                logger.warning("Session %s was replaced during generation; reply not recorded", session_id)
                return False

            updated = live.append(Turn.user(user_text)).append(Turn.assistant(reply))
            if updated.needs_compaction(self.config.compaction_threshold_tokens):
                updated = updated.compacted(self.config.compaction_keep_turns)
                logger.info(
                    "Condensed session %s from %d to %d turns",
                    updated.id,
                    updated.metadata["original_turn_count"],
                    len(updated.turns),
                )
            self._session = updated
            return True

    def _speak(self, text: str) -> None:
        if self.speech_output is None:
            return
        if self.settings is not None and not self.settings.tts_enabled():
            return
        try:
            self.speech_output.speak(text)
        except Exception:
            logger.exception("Speech output failed")

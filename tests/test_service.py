"""Tests for the orchestrator: lifecycle, context handling and concurrency."""

import threading
from unittest.mock import MagicMock

import pytest

from assistant_module.config import AssistantConfig, BackendDescriptor, BackendKind
from assistant_module.errors import GenerationError, NotReadyError, UnsupportedBackendError
from assistant_module.service import Orchestrator
from assistant_module.settings import SettingsStore
from assistant_module.status import ReadinessState


@pytest.fixture
def orchestrator(config, mailbox, scripted_factory):
    return Orchestrator(config, mailbox=mailbox, backend_factory=scripted_factory)


@pytest.fixture
def ready(orchestrator):
    orchestrator.initialize()
    assert orchestrator.status is ReadinessState.READY
    return orchestrator


class TestInitialize:
    def test_status_is_forwarded(self, orchestrator):
        events = orchestrator.subscribe_status()
        orchestrator.initialize()
        assert events.drain() == [ReadinessState.LOADING, ReadinessState.READY]

    def test_idempotent(self, orchestrator, backends):
        orchestrator.initialize()
        orchestrator.initialize()
        assert len(backends) == 1

    def test_uninitialized_status(self, orchestrator):
        assert orchestrator.status is ReadinessState.UNINITIALIZED
        with pytest.raises(NotReadyError):
            orchestrator.generate("Bonjour")

    def test_failed_probe_then_generate_is_not_ready(self, mailbox, scripted_factory, backends):
        config = AssistantConfig(backend=BackendDescriptor.http(available=False))
        orchestrator = Orchestrator(config, mailbox=mailbox, backend_factory=scripted_factory)
        orchestrator.initialize()

        assert orchestrator.status is ReadinessState.ERROR
        assert orchestrator.error_message
        with pytest.raises(NotReadyError):
            orchestrator.generate("Bonjour")
        assert backends[0].prompts == []

    def test_slow_probe_does_not_block_session_swaps(self, config, mailbox, scripted_factory):
        probing = threading.Event()
        release = threading.Event()

        def factory(descriptor):
            backend = scripted_factory(descriptor)
            backend.on_probe = lambda: (probing.set(), release.wait(5))
            return backend

        orchestrator = Orchestrator(config, mailbox=mailbox, backend_factory=factory)
        starter = threading.Thread(target=orchestrator.initialize)
        starter.start()
        try:
            assert probing.wait(5)
            swapped = threading.Event()
            threading.Thread(target=lambda: (orchestrator.start_new_session(), swapped.set())).start()

            assert swapped.wait(1)
            assert orchestrator.status is ReadinessState.LOADING
        finally:
            release.set()
            starter.join(timeout=5)

        assert orchestrator.status is ReadinessState.READY

    def test_reinitialize_recovers_from_error(self, mailbox, scripted_factory, backends):
        config = AssistantConfig(backend=BackendDescriptor.http(available=False))
        orchestrator = Orchestrator(config, mailbox=mailbox, backend_factory=scripted_factory)
        orchestrator.initialize()
        backends[0].available = True

        orchestrator.initialize()

        assert orchestrator.status is ReadinessState.READY
        assert len(backends) == 1

    def test_unsupported_backend_surfaces(self, mailbox):
        config = AssistantConfig(backend=BackendDescriptor(kind=BackendKind.NATIVE))
        orchestrator = Orchestrator(config, mailbox=mailbox)
        events = orchestrator.subscribe_status()

        with pytest.raises(UnsupportedBackendError):
            orchestrator.initialize()
        assert orchestrator.status is ReadinessState.ERROR
        assert events.drain() == [ReadinessState.ERROR]

    def test_locale_read_from_settings(self, config, mailbox, scripted_factory):
        selector = MagicMock(return_value=config.backend)
        orchestrator = Orchestrator(
            config,
            mailbox=mailbox,
            settings=SettingsStore(locale="fr_CA"),
            backend_factory=scripted_factory,
            backend_selector=selector,
        )
        orchestrator.initialize()

        assert orchestrator.locale == "fr_CA"
        selector.assert_called_once_with(config, "fr_CA")

    def test_config_defaults_reach_descriptor(self, ready, backends):
        extra = backends[0].descriptor.extra
        assert extra["history_turns"] == 3
        assert extra["system_prompt"] == ready.config.system_prompt


class TestGenerate:
    def test_records_original_text_not_rewrite(self, ready, backends):
        backends[0].replies.append("Tu as 2 emails non lus.")

        reply = ready.generate("combien d'emails non lus j'ai")

        assert reply == "Tu as 2 emails non lus."
        assert backends[0].prompts == ["Réponds EXACTEMENT en une phrase: Tu as 2 emails non lus."]
        turns = ready.session.turns
        assert [t.text for t in turns] == ["combien d'emails non lus j'ai", "Tu as 2 emails non lus."]
        assert turns[0].is_user and not turns[1].is_user

    def test_uses_live_session_as_context(self, ready, backends):
        ready.generate("Bonjour")
        ready.generate("Encore")
        context = backends[0].contexts[-1]
        assert [t.text for t in context.turns] == ["Bonjour", "echo: Bonjour"]

    def test_history_replaces_context_for_the_call(self, ready, backends):
        ready.generate("Bonjour")
        ready.generate("Suite", history=["q1", "a1"])

        context = backends[0].contexts[-1]
        assert [t.text for t in context.turns] == ["q1", "a1"]
        assert context.id == ready.session.id
        assert len(ready.session.turns) == 4

    def test_history_on_empty_live_session_keeps_live_id(self, ready, backends):
        ready.generate("Suite", history=["q1", "a1"])

        context = backends[0].contexts[-1]
        assert context.id == ready.session.id
        assert [t.text for t in ready.session.turns] == ["Suite", "echo: Suite"]

    def test_compaction_after_threshold(self, mailbox, scripted_factory, backends):
        config = AssistantConfig(compaction_threshold_tokens=20, compaction_keep_turns=4)
        orchestrator = Orchestrator(config, mailbox=mailbox, backend_factory=scripted_factory)
        orchestrator.initialize()
        session_id = orchestrator.session.id

        for _ in range(3):
            orchestrator.generate("un deux trois quatre cinq six sept huit neuf dix")

        session = orchestrator.session
        assert len(session.turns) <= 4
        assert session.metadata["condensed"] is True
        assert session.id == session_id

    def test_failure_keeps_backend_ready_and_session_intact(self, ready, backends):
        backends[0].failure = ConnectionError("down")

        with pytest.raises(GenerationError) as info:
            ready.generate("Bonjour")

        assert isinstance(info.value.cause, ConnectionError)
        assert ready.status is ReadinessState.READY
        assert ready.session.turns == ()

    def test_respond_substitutes_fallback(self, ready, backends):
        backends[0].failure = ConnectionError("down")
        assert ready.respond("Bonjour") == ready.config.failure_message
        assert isinstance(ready.last_error, GenerationError)

    def test_respond_when_not_ready(self, orchestrator):
        assert orchestrator.respond("Bonjour") == orchestrator.config.failure_message


class TestStreaming:
    def test_chunks_in_order_and_recorded(self, ready, backends):
        backends[0].replies.append("Tu as 4 emails au total.")
        ready.backend.descriptor = BackendDescriptor(stream_delay=0)

        chunks = list(ready.generate_stream("Combien d'emails ?"))

        assert "".join(chunks) == "Tu as 4 emails au total."
        assert chunks[0] == "Tu"
        assert [t.text for t in ready.session.turns] == ["Combien d'emails ?", "Tu as 4 emails au total."]

    def test_abandoned_stream_does_not_block_later_generations(self, ready, backends):
        backends[0].replies.append("un deux trois")
        ready.backend.descriptor = BackendDescriptor(stream_delay=0)

        stream = ready.generate_stream("Bonjour")
        assert next(stream) == "un"

        replies = []
        follower = threading.Thread(target=lambda: replies.append(ready.generate("Encore")))
        follower.start()
        follower.join(timeout=5)

        assert not follower.is_alive()
        assert replies == ["echo: Encore"]
        assert [t.text for t in ready.session.turns] == ["Bonjour", "un deux trois", "Encore", "echo: Encore"]

    def test_stream_failure_is_raised_to_consumer(self, ready, backends):
        backends[0].failure = ConnectionError("down")

        with pytest.raises(GenerationError):
            list(ready.generate_stream("Bonjour"))

        assert ready.status is ReadinessState.READY
        assert ready.session.turns == ()

    def test_not_ready_raises_before_iteration(self, orchestrator):
        with pytest.raises(NotReadyError):
            orchestrator.generate_stream("Bonjour")


class TestSessionsAndSwitching:
    def test_start_new_session(self, ready):
        ready.generate("Bonjour")
        old = ready.session
        fresh = ready.start_new_session()

        assert fresh.id != old.id
        assert fresh.turns == ()
        assert ready.session is fresh

    def test_result_dropped_when_session_replaced_mid_flight(self, ready, backends):
        backends[0].on_generate = ready.start_new_session
        reply = ready.generate("Bonjour")

        assert reply == "echo: Bonjour"
        assert ready.session.turns == ()

    def test_result_dropped_when_backend_switched_mid_flight(self, ready, backends):
        backends[0].on_generate = lambda: ready.switch_backend(BackendDescriptor.http(model_id="other"))
        ready.generate("Bonjour")

        assert len(backends) == 2
        assert ready.backend is backends[1]
        assert ready.session.turns == ()

    def test_switch_disposes_previous(self, ready, backends):
        old_events = backends[0].status_channel.subscribe()
        ready.switch_backend(BackendDescriptor.http(model_id="other"))

        assert old_events.closed
        assert ready.backend.model_name == "other"
        assert ready.status is ReadinessState.READY

    def test_switch_to_unsupported_keeps_current(self, ready, backends):
        def factory(descriptor):
            raise UnsupportedBackendError("nope")

        ready.backend_factory = factory
        with pytest.raises(UnsupportedBackendError):
            ready.switch_backend(BackendDescriptor(kind=BackendKind.NATIVE))
        assert ready.backend is backends[0]
        assert ready.is_ready

    def test_switch_recovers_from_error(self, mailbox, scripted_factory):
        config = AssistantConfig(backend=BackendDescriptor.http(available=False))
        orchestrator = Orchestrator(config, mailbox=mailbox, backend_factory=scripted_factory)
        orchestrator.initialize()
        assert orchestrator.status is ReadinessState.ERROR

        orchestrator.switch_backend(BackendDescriptor.http())
        assert orchestrator.status is ReadinessState.READY

    def test_old_backend_events_are_not_forwarded(self, ready, backends):
        ready.switch_backend(BackendDescriptor.http(model_id="other"))
        events = ready.subscribe_status()
        backends[0]._set_status(ReadinessState.ERROR)
        assert events.drain() == []


class TestConcurrency:
    def test_concurrent_generations_do_not_interleave(self, ready, backends):
        barrier = threading.Barrier(4)
        errors = []

        def worker(index):
            barrier.wait()
            try:
                ready.generate(f"question {index}")
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert errors == []
        turns = ready.session.turns
        assert len(turns) == 8
        for user, assistant in zip(turns[::2], turns[1::2]):
            assert user.is_user and not assistant.is_user
            assert assistant.text == f"echo: {user.text}"


class TestVoiceBoundary:
    def test_transcript_is_answered_and_spoken(self, config, mailbox, scripted_factory):
        speaker = MagicMock()
        orchestrator = Orchestrator(
            config,
            mailbox=mailbox,
            settings=SettingsStore(),
            speech_output=speaker,
            backend_factory=scripted_factory,
        )
        orchestrator.initialize()

        reply = orchestrator.handle_transcript("  Bonjour  ")

        assert reply == "echo: Bonjour"
        speaker.speak.assert_called_once_with("echo: Bonjour")

    def test_speech_disabled_in_settings(self, config, mailbox, scripted_factory):
        speaker = MagicMock()
        orchestrator = Orchestrator(
            config,
            mailbox=mailbox,
            settings=SettingsStore(tts_enabled=False),
            speech_output=speaker,
            backend_factory=scripted_factory,
        )
        orchestrator.initialize()
        orchestrator.handle_transcript("Bonjour")
        speaker.speak.assert_not_called()

    def test_empty_transcript_is_ignored(self, ready, backends):
        assert ready.handle_transcript("   ") is None
        assert backends[0].prompts == []


class TestDiagnostics:
    def test_model_info(self, ready):
        info = ready.model_info()
        assert info["status"] == "ready"
        assert info["session"] == "Nouvelle conversation"

    def test_model_info_without_backend(self, orchestrator):
        assert orchestrator.model_info()["backend"] is None

    def test_dispose(self, ready, backends):
        events = ready.subscribe_status()
        ready.dispose()
        assert events.closed
        assert backends[0].status_channel.closed
        assert ready.check_availability() is False

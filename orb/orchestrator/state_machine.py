from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from typing import Any, Protocol, TypeVar
from uuid import uuid4

from orb.audio.gate import Rejected, SignalGate
from orb.errors import CapturePermissionDenied, EmptyTranscript, PlaybackError, ServiceFailure, SignalRejected
from orb.llm.prompt import compose_messages
from orb.memory.extraction import FactExtractor
from orb.memory.facts import FactCache
from orb.memory.ranker import MemoryRanker, json_fact_value
from orb.orchestrator.clock import CLOCK, Clock
from orb.orchestrator.events import (
    AudioBuffer,
    ConversationMessage,
    PersonalityFact,
    SignalMetrics,
    TurnState,
)
from orb.orchestrator.policies import TurnPolicies
from orb.orchestrator.scheduler import AutoLoopScheduler, LoopFlags
from orb.telemetry.logging import bind_turn, clear_turn, get_logger
from orb.telemetry.tracing import get_tracer
from orb.tools.interceptor import Interception, ToolCallInterceptor

T = TypeVar("T")

AUTO_CONVERSE_KEY = "auto_converse"
CURRENT_SESSION_KEY = "current_session_id"
EMPTY_REPLY_SPEECH = "Done."
SERVICE_NOTICE = "Error processing voice input. Please try again."
PERMISSION_NOTICE = "Microphone access denied. Please allow microphone access to use voice features."


class Recorder(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> AudioBuffer | None: ...


class SpeechServices(Protocol):
    async def transcribe(self, audio: bytes) -> str: ...

    async def chat(
        self,
        messages: Sequence[dict[str, str]],
        on_chunk: Callable[[str], None] | None = None,
    ) -> str: ...

    async def synthesize(self, text: str, voice: str) -> bytes: ...


class Player(Protocol):
    async def play(self, audio: bytes, tag: str = "reply") -> float: ...


class MessageStore(Protocol):
    async def save_message(self, session_id: str, message: ConversationMessage) -> int: ...

    async def get_recent_context(self, session_id: str, limit: int = 8) -> list[ConversationMessage]: ...

    async def get_preference(self, key: str) -> Any: ...

    async def set_preference(self, key: str, value: Any, category: str) -> None: ...


class StatePublisher(Protocol):
    async def publish_state(self, state: str, payload: dict[str, Any] | None = None) -> None: ...


class LoopScheduler(Protocol):
    def maybe_resume(self, enabled: bool, is_capturing: bool, is_processing: bool) -> bool: ...

    def cancel(self) -> None: ...


class TurnEngine:
    """Drives one spoken turn at a time from capture to persistence.

    ``start_capture`` is the only way into CAPTURING and is refused unless the
    engine is IDLE; manual push-to-talk and the auto-loop both go through it.
    """

    def __init__(
        self,
        recorder: Recorder,
        speech: SpeechServices,
        player: Player,
        store: MessageStore,
        facts: FactCache,
        interceptor: ToolCallInterceptor,
        ui: StatePublisher,
        session_id: str,
        policies: TurnPolicies | None = None,
        gate: SignalGate | None = None,
        extractor: FactExtractor | None = None,
        scheduler: LoopScheduler | None = None,
        clock: Clock = CLOCK,
    ) -> None:
        self._policies = policies or TurnPolicies()
        self._recorder = recorder
        self._speech = speech
        self._player = player
        self._store = store
        self._facts = facts
        self._interceptor = interceptor
        self._ui = ui
        self._session_id = session_id
        self._gate = gate or SignalGate(self._policies.gate)
        self._extractor = extractor
        self._prompt_ranker = MemoryRanker(self._policies.prompt_ranking)
        self._highlight_ranker = MemoryRanker(self._policies.highlight_ranking, serializer=json_fact_value)
        self._scheduler: LoopScheduler = scheduler or AutoLoopScheduler(
            probe=self.loop_flags,
            start_capture=lambda: self.start_capture(origin="auto"),
            debounce_s=self._policies.loop.debounce_s,
            clock=clock,
        )
        self._state: TurnState = "IDLE"
        self._auto_loop = False
        self._opening: asyncio.Task[None] | None = None
        self._stopping = False
        self._turn_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()
        self._last_user_message: str | None = None
        self._logger = get_logger(__name__)
        self._tracer = get_tracer(__name__)

    # Introspection

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_capturing(self) -> bool:
        return self._state == "CAPTURING"

    @property
    def is_processing(self) -> bool:
        return self._state not in ("IDLE", "CAPTURING")

    @property
    def auto_loop_enabled(self) -> bool:
        return self._auto_loop

    def loop_flags(self) -> LoopFlags:
        return LoopFlags(self._auto_loop, self.is_capturing, self.is_processing)

    def highlighted_memories(self) -> list[PersonalityFact]:
        return self._highlight_ranker.rank(self._facts.facts, self._last_user_message)

    async def use_session(self, session_id: str) -> bool:
        """Switch to ``session_id`` and remember it; refused unless IDLE."""
        if self._state != "IDLE":
            self._logger.info("turn.session.refused", session_id=session_id, state=self._state)
            return False
        self._session_id = session_id
        await self._store.set_preference(CURRENT_SESSION_KEY, session_id, "system")
        self._logger.info("turn.session.switched", session_id=session_id)
        return True

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state,
            "session_id": self._session_id,
            "auto_loop": self._auto_loop,
            "last_user_message": self._last_user_message,
        }

    # Triggers

    async def press(self) -> bool:
        return await self.start_capture(origin="manual")

    async def release(self) -> asyncio.Task[None] | None:
        return await self.stop_capture()

    async def start_capture(self, origin: str = "manual") -> bool:
        # Check-and-set with no await in between: the one guarded way into CAPTURING.
        if self._state != "IDLE":
            self._logger.info("turn.capture.refused", origin=origin, state=self._state)
            return False
        self._set_state("CAPTURING")
        opening = asyncio.create_task(self._recorder.start(), name="capture-open")
        self._opening = opening
        try:
            await opening
        except CapturePermissionDenied as exc:
            self._logger.error("turn.capture.denied", origin=origin, error=str(exc))
            await self._transition("IDLE", reason="permission_denied")
            await self._notify(PERMISSION_NOTICE)
            await self._disable_auto_loop()
            return False
        finally:
            self._opening = None
        self._logger.info("turn.capture.started", origin=origin)
        await self._publish({"origin": origin})
        return True

    async def stop_capture(self) -> asyncio.Task[None] | None:
        if self._state != "CAPTURING" or self._stopping:
            return None
        self._stopping = True
        try:
            opening = self._opening
            if opening is not None:
                try:
                    await opening
                except CapturePermissionDenied:
                    return None
            buffer = await self._recorder.stop()
        except Exception as exc:
            self._logger.exception("turn.capture.stop_failed", error=str(exc))
            await self._transition("IDLE", reason="capture_error")
            await self._notify(SERVICE_NOTICE)
            self._resume()
            return None
        finally:
            self._stopping = False

        if buffer is None or not buffer.data:
            self._logger.info("turn.capture.empty")
            await self._transition("IDLE", reason="no_audio")
            self._resume()
            return None

        await self._transition("TRANSCRIBING")
        task = asyncio.create_task(self._run_turn(buffer), name="turn")
        self._turn_task = task
        return task

    async def set_auto_loop(self, enabled: bool) -> None:
        self._auto_loop = enabled
        await self._store.set_preference(AUTO_CONVERSE_KEY, enabled, "behavior")
        self._logger.info("autoloop.toggled", enabled=enabled)
        if enabled:
            self._resume()
        else:
            self._scheduler.cancel()

    async def restore_preferences(self) -> None:
        value = await self._store.get_preference(AUTO_CONVERSE_KEY)
        if isinstance(value, bool):
            self._auto_loop = value
            self._logger.info("autoloop.restored", enabled=value)
            if value:
                self._resume()

    async def drain(self) -> None:
        """Wait for the in-flight turn and any background work to finish."""
        if self._turn_task is not None:
            await asyncio.gather(self._turn_task, return_exceptions=True)
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        self._scheduler.cancel()
        if self._state == "CAPTURING":
            await self._recorder.stop()
            self._set_state("IDLE")
        for task in list(self._background):
            task.cancel()
        await self.drain()

    # Turn pipeline

    async def _run_turn(self, buffer: AudioBuffer) -> None:
        turn_id = str(uuid4())
        bind_turn(turn_id)
        try:
            with self._tracer.start_as_current_span("turn"):
                await self._process(buffer)
        except SignalRejected as exc:
            self._logger.info("turn.signal_rejected", reason=exc.reason)
            await self._transition("IDLE", reason="signal_rejected")
        except EmptyTranscript:
            self._logger.info("turn.empty_transcript")
            await self._transition("IDLE", reason="empty_transcript")
        except ServiceFailure as exc:
            self._logger.error("turn.service_failed", service=exc.service, error=exc.detail)
            await self._transition("IDLE", reason="service_failure", service=exc.service)
            await self._notify(SERVICE_NOTICE)
        except Exception as exc:
            self._logger.exception("turn.failed", error=str(exc))
            await self._transition("IDLE", reason="error")
            await self._notify(SERVICE_NOTICE)
        finally:
            if self._state != "IDLE":
                await self._transition("IDLE")
            clear_turn()
            self._resume()

    async def _process(self, buffer: AudioBuffer) -> None:
        verdict = self._gate.evaluate(buffer)
        if isinstance(verdict, Rejected):
            raise SignalRejected(verdict.reason)
        metrics = verdict.metrics

        with self._tracer.start_as_current_span("turn.transcribe"):
            transcript = (await self._call("transcription", self._speech.transcribe(buffer.data))).strip()
        self._logger.info("turn.transcribed", chars=len(transcript))
        if not transcript:
            raise EmptyTranscript()

        self._last_user_message = transcript
        await self._transition("COMPOSING", transcript=transcript)
        with self._tracer.start_as_current_span("turn.compose"):
            facts = self._prompt_ranker.rank(self._facts.facts, transcript)
            history = await self._store.get_recent_context(self._session_id, self._policies.history_limit)
            messages = compose_messages(transcript, facts, history)
            reply = await self._call("chat", self._speech.chat(messages, on_chunk=self._publish_delta))
        self._logger.info("turn.reply", chars=len(reply), facts=[fact.key for fact in facts])

        await self._transition("SYNTHESIZING")
        with self._tracer.start_as_current_span("turn.synthesize"):
            interception = await self._interceptor.intercept(reply)
            speech_text = interception.final_text or EMPTY_REPLY_SPEECH
            audio = await self._call("synthesis", self._speech.synthesize(speech_text, self._policies.voice))

        await self._transition("PLAYING", text=interception.final_text)
        playback_duration: float | None = None
        with self._tracer.start_as_current_span("turn.play"):
            try:
                playback_duration = await self._player.play(audio)
            except PlaybackError as exc:
                self._logger.error("turn.playback_failed", error=str(exc))

        with self._tracer.start_as_current_span("turn.persist"):
            persisted = await self._persist(transcript, metrics, reply, interception, playback_duration)
        if persisted:
            self._spawn(self._extract_facts(transcript, interception.final_text), name="fact-extraction")
        await self._transition("IDLE", reason="complete")

    async def _persist(
        self,
        transcript: str,
        metrics: SignalMetrics,
        reply: str,
        interception: Interception,
        playback_duration: float | None,
    ) -> bool:
        assistant_meta: dict[str, Any] = {"playbackDuration": playback_duration}
        if interception.invocation is not None:
            assistant_meta["raw_reply"] = reply
        sequence = [
            ConversationMessage(
                role="user",
                content=transcript,
                metadata={
                    "rms": metrics.rms,
                    "duration": metrics.duration_seconds,
                    "peak": metrics.peak_amplitude,
                    "autoLoop": self._auto_loop,
                },
            )
        ]
        if interception.message is not None:
            sequence.append(interception.message)
        sequence.append(ConversationMessage(role="assistant", content=interception.final_text, metadata=assistant_meta))
        try:
            for message in sequence:
                await self._store.save_message(self._session_id, message)
        except Exception as exc:
            self._logger.exception("turn.persist_failed", error=str(exc))
            await self._notify("Could not save this conversation turn.", level="warning")
            return False
        return True

    async def _extract_facts(self, user: str, assistant: str) -> None:
        if self._extractor is None:
            return
        try:
            await self._extractor.extract(user, assistant)
        except Exception as exc:  # background work: logged, never surfaced
            self._logger.warning("memory.extract.failed", error=str(exc))

    async def _call(self, service: str, call: Awaitable[T]) -> T:
        timeout = self._policies.service_timeout_s
        if timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ServiceFailure(service, f"timed out after {timeout}s") from exc

    # State and notifications

    def _set_state(self, state: TurnState) -> None:
        previous = self._state
        self._state = state
        self._logger.debug("turn.transition", previous=previous, state=state)

    async def _transition(self, state: TurnState, **payload: Any) -> None:
        self._set_state(state)
        await self._publish(payload)

    async def _publish(self, payload: dict[str, Any]) -> None:
        await self._ui.publish_state(self._state, payload)

    async def _notify(self, message: str, level: str = "error") -> None:
        await self._ui.publish_state("NOTICE", {"level": level, "message": message})

    def _publish_delta(self, delta: str) -> None:
        self._spawn(self._ui.publish_state("REPLY_DELTA", {"delta": delta}), name="reply-delta")

    def _resume(self) -> None:
        self._scheduler.maybe_resume(self._auto_loop, self.is_capturing, self.is_processing)

    async def _disable_auto_loop(self) -> None:
        if self._auto_loop:
            await self.set_auto_loop(False)

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


__all__ = ["TurnEngine", "Recorder", "SpeechServices", "Player", "MessageStore", "StatePublisher", "AUTO_CONVERSE_KEY", "CURRENT_SESSION_KEY"]

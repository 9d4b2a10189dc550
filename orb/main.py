from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from orb.audio.analyzer import LevelMixer
from orb.audio.capture import AudioCapture
from orb.audio.gate import SignalGate
from orb.audio.monitor import MicLevelMonitor
from orb.audio.output import AudioOutputController
from orb.audio.pump import PlaybackLevelPump
from orb.config import load_settings
from orb.errors import CapturePermissionDenied
from orb.llm.groq import GroqClient
from orb.memory.extraction import FactExtractor
from orb.memory.facts import FactCache
from orb.memory.store import ConversationStore
from orb.orchestrator.policies import TurnPolicies
from orb.orchestrator.state_machine import CURRENT_SESSION_KEY, TurnEngine
from orb.telemetry.logging import configure_logging, get_logger
from orb.telemetry.tracing import configure_tracing
from orb.tools.interceptor import ToolCallInterceptor
from orb.tools.shell import ShellCommandExecutor
from orb.ui.websocket import FloatingUIBridge

AUDIO_REACTIVE_KEY = "audio_reactive"

settings = load_settings()
configure_logging(settings.telemetry.log_level, settings.telemetry.log_format)
configure_tracing("voice-orb", settings.telemetry.otlp_endpoint)
logger = get_logger(__name__)

app = FastAPI(title="Voice Orb")
ui_bridge = FloatingUIBridge()

origins = {settings.ui.floating_ui_origin}
if "localhost" in settings.ui.floating_ui_origin:
    origins.add(settings.ui.floating_ui_origin.replace("localhost", "127.0.0.1"))
app.include_router(ui_bridge.router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


class ToggleRequest(BaseModel):
    enabled: bool


class SessionRequest(BaseModel):
    title: str | None = None


class Runtime:
    def __init__(
        self,
        engine: TurnEngine,
        store: ConversationStore,
        facts: FactCache,
        groq: GroqClient,
        player: AudioOutputController,
        monitor: MicLevelMonitor,
    ) -> None:
        self.engine = engine
        self.store = store
        self.facts = facts
        self._groq = groq
        self._player = player
        self._monitor = monitor
        self._audio_reactive = False
        self._logger = get_logger(__name__)

    @property
    def audio_reactive(self) -> bool:
        return self._audio_reactive

    async def set_audio_reactive(self, enabled: bool, persist: bool = True) -> bool:
        if enabled and not self._monitor.running:
            try:
                self._monitor.start()
            except CapturePermissionDenied as exc:
                self._logger.error("runtime.audio_reactive.denied", error=str(exc))
                await ui_bridge.notify("Microphone access denied. Audio reactivity is off.")
                enabled = False
        elif not enabled:
            self._monitor.stop()
        self._audio_reactive = enabled
        if persist:
            await self.store.set_preference(AUDIO_REACTIVE_KEY, enabled, "audio")
        self._logger.info("runtime.audio_reactive", enabled=enabled)
        return enabled

    async def new_session(self, title: str | None = None) -> dict[str, str]:
        if self.engine.state != "IDLE":
            raise RuntimeError("a turn is in progress")
        session = await self.store.create_session(title)
        # A turn may have started while the session row was being written.
        if not await self.engine.use_session(session["id"]):
            raise RuntimeError("a turn is in progress")
        return session

    async def shutdown(self) -> None:
        self._logger.info("runtime.shutdown.start")
        self._monitor.stop()
        await self._player.stop()
        await self.engine.shutdown()
        await self._groq.aclose()
        await self.store.close()
        self._logger.info("runtime.shutdown.complete")


async def bootstrap_runtime() -> Runtime:
    policies = TurnPolicies.from_settings(settings.engine)

    store = ConversationStore(settings.database.url, settings.database.max_pool_size)
    await store.init()
    session_id = await store.get_preference(CURRENT_SESSION_KEY)
    if not isinstance(session_id, str) or await store.get_session(session_id) is None:
        session_id = (await store.create_session())["id"]
        await store.set_preference(CURRENT_SESSION_KEY, session_id, "system")

    facts = FactCache(store)
    await facts.refresh()

    groq = GroqClient(settings.groq)
    extractor = FactExtractor(groq.chat, store, facts, min_chars=policies.extraction_min_chars)
    interceptor = ToolCallInterceptor(ShellCommandExecutor(timeout_s=settings.engine.command_timeout_s))

    mixer = LevelMixer()
    mixer.subscribe(ui_bridge.publish_levels)
    audio = settings.audio
    pump = PlaybackLevelPump(mixer.sink("playback"), fft_size=audio.fft_size, fps=audio.level_fps)
    player = AudioOutputController(pump=pump)
    recorder = AudioCapture(audio.sample_rate, audio.channels, audio.input_device)
    monitor = MicLevelMonitor(mixer, audio.sample_rate, audio.fft_size, audio.input_device)

    engine = TurnEngine(
        recorder=recorder,
        speech=groq,
        player=player,
        store=store,
        facts=facts,
        interceptor=interceptor,
        ui=ui_bridge,
        session_id=session_id,
        policies=policies,
        gate=SignalGate(policies.gate),
        extractor=extractor,
    )
    runtime = Runtime(engine, store, facts, groq, player, monitor)

    if await store.get_preference(AUDIO_REACTIVE_KEY) is True:
        await runtime.set_audio_reactive(True, persist=False)
    await engine.restore_preferences()
    logger.info("runtime.ready", session_id=session_id, facts=len(facts.facts))
    return runtime


def _runtime() -> Runtime:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime unavailable")
    return runtime


@app.on_event("startup")
async def startup_event() -> None:
    app.state.runtime = await bootstrap_runtime()


@app.on_event("shutdown")
async def shutdown_event() -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.shutdown()


@app.post("/ptt/press")
async def ptt_press() -> dict[str, Any]:
    engine = _runtime().engine
    started = await engine.press()
    logger.info("ptt.endpoint.press", started=started)
    return {"started": started, "state": engine.state}


@app.post("/ptt/release")
async def ptt_release() -> dict[str, Any]:
    engine = _runtime().engine
    task: asyncio.Task[None] | None = await engine.release()
    logger.info("ptt.endpoint.release", processing=task is not None)
    return {"processing": task is not None, "state": engine.state}


@app.post("/autoloop")
async def set_autoloop(req: ToggleRequest) -> dict[str, bool]:
    engine = _runtime().engine
    await engine.set_auto_loop(req.enabled)
    return {"enabled": engine.auto_loop_enabled}


@app.post("/audio-reactive")
async def set_audio_reactive(req: ToggleRequest) -> dict[str, bool]:
    enabled = await _runtime().set_audio_reactive(req.enabled)
    return {"enabled": enabled}


@app.get("/state")
async def get_state() -> dict[str, Any]:
    runtime = _runtime()
    return {**runtime.engine.snapshot(), "audio_reactive": runtime.audio_reactive}


@app.get("/memories")
async def list_memories() -> dict[str, Any]:
    runtime = _runtime()
    return {"facts": [fact.to_dict() for fact in runtime.facts.facts]}


@app.get("/memories/highlighted")
async def highlighted_memories() -> dict[str, Any]:
    runtime = _runtime()
    return {"facts": [fact.to_dict() for fact in runtime.engine.highlighted_memories()]}


@app.delete("/memories/{key}")
async def forget_memory(key: str) -> dict[str, bool]:
    removed = await _runtime().facts.forget(key)
    if not removed:
        raise HTTPException(status_code=404, detail=f"no memory named {key}")
    return {"removed": True}


@app.get("/conversations")
async def list_conversations(limit: int = 50) -> dict[str, Any]:
    runtime = _runtime()
    messages = await runtime.store.get_conversations(runtime.engine.session_id, limit)
    return {
        "session_id": runtime.engine.session_id,
        "messages": [
            {"role": m.role, "content": m.content, "metadata": m.metadata, "timestamp": m.timestamp}
            for m in messages
        ],
    }


@app.get("/sessions")
async def list_sessions(limit: int = 20) -> dict[str, Any]:
    runtime = _runtime()
    return {"current": runtime.engine.session_id, "sessions": await runtime.store.get_sessions(limit)}


@app.post("/sessions")
async def create_session(req: SessionRequest) -> dict[str, str]:
    try:
        return await _runtime().new_session(req.title)
    except RuntimeError as exc:
        raise HTTPException(status_code=409, detail=str(exc))

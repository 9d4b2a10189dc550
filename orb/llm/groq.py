from __future__ import annotations

import json
from collections.abc import Callable, Sequence

import httpx

from orb.config import GroqSettings
from orb.errors import ServiceFailure
from orb.telemetry.logging import get_logger

ChunkCallback = Callable[[str], None]


class GroqClient:
    """Transcription, chat and speech synthesis over Groq's OpenAI-compatible API."""

    def __init__(self, settings: GroqSettings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {settings.api_key}"},
            timeout=httpx.Timeout(60.0, connect=5.0),
            transport=transport,
        )
        self._logger = get_logger(__name__)

    async def transcribe(self, audio: bytes, filename: str = "audio.wav") -> str:
        files = {"file": (filename, audio, "audio/wav")}
        data = {"model": self._settings.stt_model, "response_format": "verbose_json", "temperature": "0"}
        self._logger.info("groq.transcribe", bytes=len(audio), model=self._settings.stt_model)
        try:
            resp = await self._client.post("/audio/transcriptions", files=files, data=data)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.error("groq.transcribe.failed", error=str(exc))
            raise ServiceFailure("transcription", str(exc)) from exc
        return (payload.get("text") or "").strip()

    async def chat(
        self,
        messages: Sequence[dict[str, str]],
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        """Return the full reply; streamed deltas are also handed to ``on_chunk``."""
        body = {
            "model": self._settings.chat_model,
            "messages": list(messages),
            "stream": True,
            "temperature": self._settings.chat_temperature,
            "max_tokens": self._settings.chat_max_tokens,
        }
        self._logger.info("groq.chat", messages=len(body["messages"]), model=self._settings.chat_model)
        chunks: list[str] = []
        try:
            async with self._client.stream("POST", "/chat/completions", json=body) as resp:
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    delta = self._parse_stream_line(line)
                    if not delta:
                        continue
                    chunks.append(delta)
                    if on_chunk is not None:
                        on_chunk(delta)
        except httpx.HTTPError as exc:
            self._logger.error("groq.chat.failed", error=str(exc))
            raise ServiceFailure("chat", str(exc)) from exc
        return "".join(chunks)

    async def synthesize(self, text: str, voice: str) -> bytes:
        body = {
            "model": self._settings.tts_model,
            "voice": voice,
            "input": text,
            "response_format": "wav",
        }
        log_input = text if len(text) <= 120 else text[:120] + "…"
        self._logger.info("groq.tts.request", voice=voice, input=log_input)
        try:
            async with self._client.stream("POST", "/audio/speech", json=body) as resp:
                if resp.is_error:
                    detail = (await resp.aread()).decode("utf-8", errors="replace")
                    raise ServiceFailure("synthesis", f"{resp.status_code} {detail}")
                audio_chunks: list[bytes] = []
                async for chunk in resp.aiter_bytes():
                    audio_chunks.append(chunk)
        except httpx.HTTPError as exc:
            self._logger.error("groq.tts.failed", error=str(exc))
            raise ServiceFailure("synthesis", str(exc)) from exc
        return b"".join(audio_chunks)

    def _parse_stream_line(self, line: str) -> str:
        line = line.strip()
        if not line.startswith("data:"):
            return ""
        data = line[len("data:") :].strip()
        if not data or data == "[DONE]":
            return ""
        try:
            event = json.loads(data)
        except json.JSONDecodeError:
            self._logger.warning("groq.chat.bad_event", payload=data[:200])
            return ""
        choices = event.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("delta") or {}).get("content") or ""

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["GroqClient"]

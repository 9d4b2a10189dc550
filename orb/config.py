from __future__ import annotations

import functools
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    url: str
    max_pool_size: int = 5


class GroqSettings(BaseModel):
    api_key: str
    base_url: str = "https://api.groq.com/openai/v1"
    stt_model: str = "whisper-large-v3-turbo"
    chat_model: str = "llama-3.3-70b-versatile"
    tts_model: str = "playai-tts"
    chat_temperature: float = 0.8
    chat_max_tokens: int = 2048


class AudioSettings(BaseModel):
    sample_rate: int = 16_000
    channels: int = 1
    input_device: str | int | None = None
    fft_size: int = 2048
    level_fps: float = 60.0


class EngineSettings(BaseModel):
    voice: str = "Fritz-PlayAI"
    gate_min_duration_s: float = 0.35
    gate_min_rms: float = 0.008
    prompt_fact_weight: float = 0.2
    highlight_fact_weight: float = 0.15
    fact_limit: int = 4
    history_limit: int = 8
    autoloop_debounce_ms: int = 350
    service_timeout_s: float | None = 45.0
    command_timeout_s: float = 30.0
    extraction_min_chars: int = 12


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"
    otlp_endpoint: str | None = None


class UISettings(BaseModel):
    floating_ui_origin: str = "http://localhost:5173"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    GROQ_API_KEY: str
    GROQ_BASE_URL: str = "https://api.groq.com/openai/v1"
    GROQ_STT_MODEL: str = "whisper-large-v3-turbo"
    GROQ_CHAT_MODEL: str = "llama-3.3-70b-versatile"
    GROQ_TTS_MODEL: str = "playai-tts"
    CHAT_TEMPERATURE: float = 0.8
    CHAT_MAX_TOKENS: int = 2048
    DATABASE_URL: str = "sqlite+aiosqlite:///conversations.db"
    DATABASE_POOL_SIZE: int = 5
    AUDIO_SAMPLE_RATE: int = 16_000
    AUDIO_CHANNELS: int = 1
    AUDIO_INPUT_DEVICE: str | int | None = None
    AUDIO_FFT_SIZE: int = 2048
    AUDIO_LEVEL_FPS: float = 60.0
    TTS_VOICE: str = "Fritz-PlayAI"
    GATE_MIN_DURATION_S: float = 0.35
    GATE_MIN_RMS: float = 0.008
    PROMPT_FACT_WEIGHT: float = 0.2
    HIGHLIGHT_FACT_WEIGHT: float = 0.15
    FACT_LIMIT: int = 4
    HISTORY_LIMIT: int = 8
    AUTOLOOP_DEBOUNCE_MS: int = 350
    SERVICE_TIMEOUT_S: float | None = 45.0
    COMMAND_TIMEOUT_S: float = 30.0
    EXTRACTION_MIN_CHARS: int = 12
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: Literal["json", "console"] = "json"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    FLOATING_UI_ORIGIN: str = "http://localhost:5173"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    @staticmethod
    def _coerce_device(device: str | int | None) -> str | int | None:
        if isinstance(device, str):
            trimmed = device.strip()
            if not trimmed:
                return None
            if trimmed.isdigit():
                return int(trimmed)
            return trimmed
        return device

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings(url=self.DATABASE_URL, max_pool_size=self.DATABASE_POOL_SIZE)

    @property
    def groq(self) -> GroqSettings:
        return GroqSettings(
            api_key=self.GROQ_API_KEY,
            base_url=self.GROQ_BASE_URL,
            stt_model=self.GROQ_STT_MODEL,
            chat_model=self.GROQ_CHAT_MODEL,
            tts_model=self.GROQ_TTS_MODEL,
            chat_temperature=self.CHAT_TEMPERATURE,
            chat_max_tokens=self.CHAT_MAX_TOKENS,
        )

    @property
    def audio(self) -> AudioSettings:
        return AudioSettings(
            sample_rate=self.AUDIO_SAMPLE_RATE,
            channels=self.AUDIO_CHANNELS,
            input_device=self._coerce_device(self.AUDIO_INPUT_DEVICE),
            fft_size=self.AUDIO_FFT_SIZE,
            level_fps=self.AUDIO_LEVEL_FPS,
        )

    @property
    def engine(self) -> EngineSettings:
        return EngineSettings(
            voice=self.TTS_VOICE,
            gate_min_duration_s=self.GATE_MIN_DURATION_S,
            gate_min_rms=self.GATE_MIN_RMS,
            prompt_fact_weight=self.PROMPT_FACT_WEIGHT,
            highlight_fact_weight=self.HIGHLIGHT_FACT_WEIGHT,
            fact_limit=self.FACT_LIMIT,
            history_limit=self.HISTORY_LIMIT,
            autoloop_debounce_ms=self.AUTOLOOP_DEBOUNCE_MS,
            service_timeout_s=self.SERVICE_TIMEOUT_S,
            command_timeout_s=self.COMMAND_TIMEOUT_S,
            extraction_min_chars=self.EXTRACTION_MIN_CHARS,
        )

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(
            log_level=self.LOG_LEVEL,
            log_format=self.LOG_FORMAT,
            otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT,
        )

    @property
    def ui(self) -> UISettings:
        return UISettings(floating_ui_origin=self.FLOATING_UI_ORIGIN)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


__all__ = ["AppSettings", "load_settings"]

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173", "http://127.0.0.1:5173"])


@dataclass
class ProvidersConfig:
    stt: str = "groq"
    tts: str = "cartesia"
    answer: str = "rag_http"


@dataclass
class AudioConfig:
    sample_rate: int = 16000
    channels: int = 1
    bitrate: str = "96k"
    output_format: str = "mp3"
    ffmpeg_path: str = ""
    max_concurrent_conversions: int = 2
    conversion_timeout_s: float = 60.0


@dataclass
class GroqConfig:
    endpoint: str = "https://api.groq.com/openai/v1/audio/transcriptions"
    api_key: str = ""
    model: str = "whisper-large-v3-turbo"
    language: str = "en"
    timeout_s: float = 30.0


@dataclass
class FasterWhisperConfig:
    model_size: str = "small"
    device: str = "cpu"
    compute_type: str = "int8"
    device_index: int = 0
    language: str = "en"


@dataclass
class CartesiaConfig:
    endpoint: str = "https://api.cartesia.ai/tts/bytes"
    api_key: str = ""
    api_version: str = "2025-04-16"
    model_id: str = "sonic-2"
    voice_id: str = "613e5172-2e8b-41ff-981b-5d0acdc6ff6c"
    sample_rate: int = 44100
    language: str = "en"
    timeout_s: float = 30.0


@dataclass
class Pyttsx3Config:
    rate: int = 185
    volume: float = 1.0


@dataclass
class AnswerConfig:
    endpoint: str = "http://localhost:5001/ask"
    api_key: str = ""
    model: str = ""
    system_prompt: str = (
        "You are a friendly customer service assistant speaking over voice. "
        "Answer briefly in plain sentences without markdown."
    )
    timeout_s: float = 60.0
    fallback_text: str = "Sorry, I couldn't find an answer."


@dataclass
class RateLimitConfig:
    min_spacing_s: float = 6.5
    attempts: int = 3
    retry_delay_s: float = 1.2


@dataclass
class SynthesisConfig:
    spacing_s: float = 0.2
    attempts: int = 1
    retry_delay_s: float = 1.0


@dataclass
class RetryConfig:
    attempts: int = 3
    delay_s: float = 1.0


@dataclass
class SessionConfig:
    idle_timeout_s: float = 10.0
    heartbeat_transcript: str = "."
    close_after_turn: bool = False


@dataclass
class RuntimeConfig:
    temp_dir: str = "runtime/tmp"


@dataclass
class AppConfig:
    server: ServerConfig
    providers: ProvidersConfig
    audio: AudioConfig
    groq: GroqConfig
    faster_whisper: FasterWhisperConfig
    cartesia: CartesiaConfig
    pyttsx3: Pyttsx3Config
    answer: AnswerConfig
    rate_limit: RateLimitConfig
    synthesis: SynthesisConfig
    stt_retry: RetryConfig
    session: SessionConfig
    runtime: RuntimeConfig
    project_root: Path


_DEFAULTS: dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 5000},
    "providers": {"stt": "groq", "tts": "cartesia", "answer": "rag_http"},
    "audio": {
        "sample_rate": 16000,
        "channels": 1,
        "bitrate": "96k",
        "output_format": "mp3",
        "ffmpeg_path": "",
        "max_concurrent_conversions": 2,
        "conversion_timeout_s": 60.0,
    },
    "groq": {},
    "faster_whisper": {},
    "cartesia": {},
    "pyttsx3": {"rate": 185, "volume": 1.0},
    "answer": {},
    "rate_limit": {"min_spacing_s": 6.5, "attempts": 3, "retry_delay_s": 1.2},
    "synthesis": {"spacing_s": 0.2, "attempts": 1, "retry_delay_s": 1.0},
    "stt_retry": {"attempts": 3, "delay_s": 1.0},
    "session": {"idle_timeout_s": 10.0, "heartbeat_transcript": ".", "close_after_turn": False},
    "runtime": {"temp_dir": "runtime/tmp"},
}

# section -> environment variable used when the YAML api_key is blank
_ENV_API_KEYS = {
    "groq": "GROQ_API_KEY",
    "cartesia": "CARTESIA_API_KEY",
    "answer": "ANSWER_API_KEY",
}


def _merge_dict(base: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_dict(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_api_keys(merged: dict[str, Any]) -> None:
    for section, env_name in _ENV_API_KEYS.items():
        values = dict(merged.get(section) or {})
        if not (values.get("api_key") or "").strip():
            values["api_key"] = os.environ.get(env_name, "")
        merged[section] = values


def load_config(path: str | Path = "configs/config.yaml") -> AppConfig:
    path_obj = Path(path).resolve()
    project_root = path_obj.parent.parent

    loaded: dict[str, Any] = {}
    if path_obj.exists():
        loaded = yaml.safe_load(path_obj.read_text(encoding="utf-8")) or {}

    merged = _merge_dict(_DEFAULTS, loaded)
    _apply_env_api_keys(merged)

    return AppConfig(
        server=ServerConfig(**merged["server"]),
        providers=ProvidersConfig(**merged["providers"]),
        audio=AudioConfig(**merged["audio"]),
        groq=GroqConfig(**merged["groq"]),
        faster_whisper=FasterWhisperConfig(**merged["faster_whisper"]),
        cartesia=CartesiaConfig(**merged["cartesia"]),
        pyttsx3=Pyttsx3Config(**merged["pyttsx3"]),
        answer=AnswerConfig(**merged["answer"]),
        rate_limit=RateLimitConfig(**merged["rate_limit"]),
        synthesis=SynthesisConfig(**merged["synthesis"]),
        stt_retry=RetryConfig(**merged["stt_retry"]),
        session=SessionConfig(**merged["session"]),
        runtime=RuntimeConfig(**merged["runtime"]),
        project_root=project_root,
    )


def resolve_project_path(config: AppConfig, maybe_relative_path: str) -> str:
    path = Path(maybe_relative_path)
    if path.is_absolute():
        return str(path)
    return str((config.project_root / path).resolve())


def ensure_project_dir(config: AppConfig, maybe_relative_dir: str) -> str:
    path = Path(resolve_project_path(config, maybe_relative_dir))
    path.mkdir(parents=True, exist_ok=True)
    return str(path)

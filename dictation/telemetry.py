"""Typed telemetry events recorded through a TelemetrySink."""

from dataclasses import dataclass
from typing import ClassVar, Optional


@dataclass
class TranscriptionCompleted:
    event_name: ClassVar[str] = "transcription_completed"

    session_id: str
    model_id: Optional[str]
    model_preloaded: bool
    engine_binding: Optional[str]
    total_duration_ms: float
    recording_duration_ms: Optional[float]
    processing_duration_ms: Optional[float]
    audio_duration_seconds: Optional[float]
    realtime_factor: Optional[float]
    text_length: int
    word_count: int
    formatting_enabled: bool
    formatting_model: Optional[str]
    formatting_duration_ms: Optional[float]
    vad_enabled: bool
    session_type: str
    language: str
    vocabulary_size: int


@dataclass
class NativeHelperCrashed:
    event_name: ClassVar[str] = "native_helper_crashed"

    helper_name: str
    platform: str
    exit_code: Optional[int]
    signal: Optional[str]
    restart_attempt: int
    max_restarts: int
    will_restart: bool

"""
Core dictation components.

This module contains:
- vad: Silero voice activity detection with hysteresis
- providers: buffering transcription providers (local worker, cloud API)
- worker: faster-whisper worker process and its client
- orchestrator: per-session streaming state machine
- postprocess / formatter: text clean-up after transcription
"""


# Lazy imports to avoid circular dependencies
def __getattr__(name: str):
    if name == "SessionOrchestrator":
        from dictation.core.orchestrator import SessionOrchestrator

        return SessionOrchestrator
    elif name == "VoiceActivityDetector":
        from dictation.core.vad import VoiceActivityDetector

        return VoiceActivityDetector
    elif name == "BufferingTranscriptionProvider":
        from dictation.core.providers.base import BufferingTranscriptionProvider

        return BufferingTranscriptionProvider
    elif name == "TranscribeContext":
        from dictation.core.session import TranscribeContext

        return TranscribeContext
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "SessionOrchestrator",
    "VoiceActivityDetector",
    "BufferingTranscriptionProvider",
    "TranscribeContext",
]

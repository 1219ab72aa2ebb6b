"""Dictation session state shared by the orchestrator and the providers."""

import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List, Optional

from dictation.core.audio import SAMPLE_RATE
from dictation.helper.protocol import AccessibilityContext


class SessionState(Enum):
    """Lifecycle of a dictation session."""

    UNSTARTED = auto()
    ACTIVE = auto()
    FINALIZING = auto()
    COMPLETED = auto()
    CANCELLED = auto()


@dataclass
class TranscribeContext:
    """Per-session context handed to the provider on every call."""

    session_id: str
    vocabulary: List[str] = field(default_factory=list)
    replacements: Dict[str, str] = field(default_factory=dict)
    language: Optional[str] = None
    accessibility: Optional[AccessibilityContext] = None
    aggregated_transcription: Optional[str] = None
    previous_chunk: Optional[str] = None

    @property
    def pre_selection_text(self) -> Optional[str]:
        """Text before the cursor in the focused field, when known."""
        if self.accessibility is None or self.accessibility.text_selection is None:
            return None
        return self.accessibility.text_selection.pre_selection_text


@dataclass
class Session:
    """An in-flight dictation session, owned by the orchestrator."""

    session_id: str
    context: TranscribeContext
    state: SessionState = SessionState.UNSTARTED
    chunks: List[str] = field(default_factory=list)
    first_chunk_received_at: float = field(default_factory=time.monotonic)
    recording_started_at: Optional[float] = None
    recording_stopped_at: Optional[float] = None
    finalization_started_at: Optional[float] = None
    audio_samples: int = 0

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    @property
    def audio_duration_seconds(self) -> Optional[float]:
        if not self.audio_samples:
            return None
        return self.audio_samples / SAMPLE_RATE

    def provider_context(self) -> TranscribeContext:
        """Refresh the rolling transcription fields and return the context."""
        self.context.aggregated_transcription = self.text or None
        self.context.previous_chunk = self.chunks[-1] if self.chunks else None
        return self.context

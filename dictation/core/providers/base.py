"""
Frame-buffering transcription provider.

Accumulates 32 ms frames and their speech probabilities, decides when enough
context has been gathered, and hands one contiguous sample array to the
underlying speech engine. The local (worker subprocess) and cloud engines
share this buffering logic and differ only in ``_transcribe_audio``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

import numpy as np

from dictation.core.audio import FRAME_SIZE, SAMPLE_RATE, as_float32, concat_frames
from dictation.core.session import TranscribeContext
from dictation.errors import EngineUnavailableError, TranscriptionError
from dictation.logging import get_logger

logger = get_logger("transcription")


@dataclass
class BufferSettings:
    """Flush heuristic configuration."""

    speech_threshold: float = 0.2
    max_silence_ms: float = 3000
    max_buffer_ms: float = 30000
    ignore_fully_silent_chunks: bool = True
    trim_silence: bool = False
    frame_size: int = FRAME_SIZE
    sample_rate: int = SAMPLE_RATE

    @classmethod
    def from_config(cls, config: Any) -> "BufferSettings":
        cfg = config.transcription
        return cls(
            speech_threshold=float(cfg.get("speech_threshold", 0.2)),
            max_silence_ms=float(cfg.get("max_silence_ms", 3000)),
            max_buffer_ms=float(cfg.get("max_buffer_ms", 30000)),
            ignore_fully_silent_chunks=bool(cfg.get("ignore_fully_silent_chunks", True)),
            trim_silence=bool(cfg.get("trim_silence", False)),
            frame_size=int(config.get("audio", "frame_size", default=FRAME_SIZE)),
            sample_rate=int(config.get("audio", "sample_rate", default=SAMPLE_RATE)),
        )


class BufferingTranscriptionProvider(ABC):
    """
    Uniform transcribe / flush / reset contract over a speech engine.

    Provider instances are not session-scoped: exactly one logical buffer is
    active at a time and callers serialize access (the orchestrator's
    transcription lock).
    """

    name = "base"

    def __init__(self, settings: Optional[BufferSettings] = None):
        self.settings = settings or BufferSettings()
        self._frames: List[np.ndarray] = []
        self._probabilities: List[float] = []
        self._silence_frame_count = 0

    @property
    def model_id(self) -> Optional[str]:
        """Identifier of the speech model in use, when known."""
        return None

    @property
    def buffered_frames(self) -> int:
        return len(self._frames)

    @property
    def silence_frame_count(self) -> int:
        return self._silence_frame_count

    @property
    def speech_probabilities(self) -> List[float]:
        return list(self._probabilities)

    def _frames_to_ms(self, count: int) -> float:
        return count * self.settings.frame_size / self.settings.sample_rate * 1000

    @property
    def buffer_duration_ms(self) -> float:
        return self._frames_to_ms(len(self._frames))

    @property
    def silence_duration_ms(self) -> float:
        return self._frames_to_ms(self._silence_frame_count)

    async def transcribe(
        self,
        frame: Any,
        speech_probability: float = 1.0,
        context: Optional[TranscribeContext] = None,
    ) -> str:
        """
        Buffer a frame and transcribe when the flush heuristic fires.

        Args:
            frame: Audio samples for one frame
            speech_probability: Speech probability of the frame in [0, 1]
            context: Session context used to build the initial prompt

        Returns:
            Transcribed text, or "" while still buffering

        Raises:
            EngineUnavailableError: If no speech engine is configured
            TranscriptionError: If the engine call failed
        """
        self._frames.append(as_float32(frame))
        self._probabilities.append(speech_probability)

        if speech_probability > self.settings.speech_threshold:
            self._silence_frame_count = 0
        else:
            self._silence_frame_count += 1

        logger.debug(
            f"Frame received - SpeechProb: {speech_probability:.3f}, "
            f"Buffer size: {len(self._frames)}, Silence count: {self._silence_frame_count}"
        )

        if not self.should_transcribe():
            return ""

        return await self._do_transcription(context)

    async def flush(self, context: Optional[TranscribeContext] = None) -> str:
        """Transcribe whatever is buffered; "" when the buffer is empty."""
        if not self._frames:
            return ""
        return await self._do_transcription(context)

    def reset(self) -> None:
        """Discard buffered audio without invoking the engine."""
        self._frames = []
        self._probabilities = []
        self._silence_frame_count = 0

    def should_transcribe(self) -> bool:
        buffer_ms = self.buffer_duration_ms
        silence_ms = self.silence_duration_ms

        if self._frames and silence_ms > self.settings.max_silence_ms:
            logger.debug(f"Transcribing due to {silence_ms:.0f}ms of silence")
            return True

        if buffer_ms > self.settings.max_buffer_ms:
            logger.debug(f"Transcribing due to buffer size: {buffer_ms:.0f}ms")
            return True

        return False

    def is_all_silent(self) -> bool:
        return self._silence_frame_count == len(self._frames)

    def aggregate_frames(self) -> np.ndarray:
        audio = concat_frames(self._frames)
        if self.settings.trim_silence:
            audio = self._trim_silence(audio)
        return audio

    def _trim_silence(self, audio: np.ndarray) -> np.ndarray:
        """Cut leading and trailing frames that are below the speech threshold."""
        speech = [
            i
            for i, p in enumerate(self._probabilities)
            if p > self.settings.speech_threshold
        ]
        if not speech:
            return audio
        start = speech[0] * self.settings.frame_size
        end = min((speech[-1] + 1) * self.settings.frame_size, len(audio))
        return audio[start:end]

    async def _do_transcription(self, context: Optional[TranscribeContext]) -> str:
        all_silent = self.is_all_silent()
        audio = self.aggregate_frames()

        # Buffer is cleared before the engine call, whatever its outcome
        self.reset()

        if all_silent and self.settings.ignore_fully_silent_chunks:
            logger.debug("Skipping transcription - all silent")
            return ""

        prompt = self.build_initial_prompt(context)
        logger.debug(
            f"Starting {self.name} transcription of {len(audio)} samples "
            f"({len(audio) / self.settings.sample_rate * 1000:.0f}ms)"
        )

        try:
            text = await self._transcribe_audio(audio, prompt, context)
        except EngineUnavailableError:
            raise
        except TranscriptionError:
            logger.error(f"{self.name} transcription failed")
            raise
        except Exception as e:
            logger.error(f"{self.name} transcription failed: {e}")
            raise TranscriptionError(f"Transcription failed: {e}") from e

        logger.debug(f"Transcription completed, length: {len(text)}")
        return text

    def build_initial_prompt(self, context: Optional[TranscribeContext]) -> str:
        """
        Build the engine prompt from vocabulary and recent text.

        Vocabulary terms come first (joined with ", "), followed by the
        session's aggregated transcription or, before any text exists, the
        text preceding the cursor in the focused field. Engines truncate long
        prompts themselves.
        """
        if context is None:
            return ""

        parts: List[str] = []
        if context.vocabulary:
            parts.append(", ".join(context.vocabulary))

        if context.aggregated_transcription:
            parts.append(context.aggregated_transcription)
        else:
            before = context.pre_selection_text
            if before and before.strip():
                parts.append(before)

        prompt = " ".join(parts)
        logger.debug(f'Generated initial prompt: "{prompt}"')
        return prompt

    @abstractmethod
    async def _transcribe_audio(
        self,
        audio: np.ndarray,
        prompt: str,
        context: Optional[TranscribeContext],
    ) -> str:
        """Run the engine on aggregated audio."""

    async def preload(self) -> None:
        """Load the engine ahead of the first chunk (no-op by default)."""

    async def get_binding_info(self) -> Optional[dict]:
        return None

    async def dispose(self) -> None:
        self.reset()

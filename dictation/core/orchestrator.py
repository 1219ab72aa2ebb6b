"""
Session orchestrator for streaming dictation.

Owns the map of in-flight sessions and drives VAD and the transcription
provider for each incoming frame. Two asyncio locks serialize work that
would otherwise interleave at suspension points:

- vad_lock: the shared detector's recurrent state
- transcription_lock: the provider buffer and the session map

Per frame the order is always VAD lock, then transcription lock, and each is
held only within a single call.
"""

import asyncio
import time
from typing import Any, Dict, Optional, Protocol, Set

import numpy as np

from dictation.collaborators import PersistenceSink, SettingsReader, TelemetrySink
from dictation.core.audio import as_float32
from dictation.core.formatter import Formatter, create_formatter
from dictation.core.postprocess import apply_replacements, count_words, strip_leading_space
from dictation.core.providers.base import BufferingTranscriptionProvider
from dictation.core.session import Session, SessionState, TranscribeContext
from dictation.core.vad import VoiceActivityDetector
from dictation.errors import EngineUnavailableError
from dictation.helper.protocol import AccessibilityContext
from dictation.logging import get_logger
from dictation.telemetry import TranscriptionCompleted

logger = get_logger("transcription")

DEFAULT_VOCABULARY_LIMIT = 50


class AccessibilitySource(Protocol):
    async def refresh_accessibility_context(self) -> Optional[AccessibilityContext]: ...

    def get_accessibility_context(self) -> Optional[AccessibilityContext]: ...


class SessionOrchestrator:
    """
    Streaming dictation sessions over a shared VAD and provider.

    Sessions are created implicitly by the first chunk for a new id and are
    removed when finalized or cancelled.
    """

    def __init__(
        self,
        provider: BufferingTranscriptionProvider,
        settings: SettingsReader,
        persistence: PersistenceSink,
        telemetry: TelemetrySink,
        vad: Optional[VoiceActivityDetector] = None,
        helper: Optional[AccessibilitySource] = None,
        formatter: Optional[Formatter] = None,
        vocabulary_limit: int = DEFAULT_VOCABULARY_LIMIT,
        preload_model: bool = True,
    ):
        """
        Initialize the orchestrator.

        Args:
            provider: Buffering provider wrapping the speech engine
            settings: Source of vocabulary, language and formatter settings
            persistence: Receives finished transcriptions
            telemetry: Receives TranscriptionCompleted events
            vad: Shared voice activity detector; without it the caller's
                speech probability is used
            helper: Source of the cached accessibility snapshot
            formatter: LLM formatter; built from settings on demand when None
            vocabulary_limit: Maximum vocabulary entries loaded per session
            preload_model: Whether preload() warms up the provider
        """
        self.provider = provider
        self.settings = settings
        self.persistence = persistence
        self.telemetry = telemetry
        self.vad = vad
        self.helper = helper
        self.formatter = formatter
        self.vocabulary_limit = vocabulary_limit
        self.preload_model = preload_model

        self.vad_lock = asyncio.Lock()
        self.transcription_lock = asyncio.Lock()

        self._sessions: Dict[str, Session] = {}
        self._vad_sessions: Set[str] = set()
        self._context_sessions: Set[str] = set()
        self._last_transcription: Optional[str] = None
        self._model_was_preloaded = False

    @property
    def sessions(self) -> Dict[str, Session]:
        return self._sessions

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def preload(self) -> None:
        """Warm up the speech engine if preloading is enabled."""
        if not self.preload_model:
            logger.info("Whisper model preloading disabled")
            return
        try:
            await self.provider.preload()
        except EngineUnavailableError as e:
            logger.info(f"Model preloading skipped: {e}")
            return
        self._model_was_preloaded = True
        logger.info("Speech model preloaded successfully")

    def _build_context(self, session_id: str) -> TranscribeContext:
        context = TranscribeContext(
            session_id=session_id,
            language=self.settings.get_dictation_language(),
        )
        for entry in self.settings.get_vocabulary(self.vocabulary_limit):
            if entry.is_replacement:
                context.replacements[entry.word] = entry.replacement_word or ""
            else:
                context.vocabulary.append(entry.word)

        if self.helper is not None:
            context.accessibility = self.helper.get_accessibility_context()
        return context

    async def _refresh_accessibility(self, session_id: str) -> None:
        """Take one accessibility snapshot per session, outside the transcription lock."""
        if self.helper is None or session_id in self._context_sessions:
            return
        self._context_sessions.add(session_id)
        await self.helper.refresh_accessibility_context()

    async def _run_vad(
        self, vad: VoiceActivityDetector, session_id: str, frame: np.ndarray
    ) -> float:
        async with self.vad_lock:
            if session_id not in self._vad_sessions:
                vad.reset()
                self._vad_sessions.add(session_id)
            result = await vad.process_frame(frame)
        logger.debug(
            f"VAD result: probability={result.probability:.3f}, "
            f"speaking={result.is_speaking}"
        )
        return result.probability

    async def process_chunk(
        self,
        session_id: str,
        frame: Any,
        speech_probability: Optional[float] = None,
        recording_started_at: Optional[float] = None,
    ) -> str:
        """
        Process one audio frame for a session.

        Args:
            session_id: Session identifier; unknown ids start a new session
            frame: Audio samples (normally 512 float32 samples)
            speech_probability: Externally computed probability, used when
                no VAD is configured; frames without either count as speech
            recording_started_at: Monotonic time the recording began

        Returns:
            All text accumulated for the session so far

        Raises:
            EngineUnavailableError: If no speech engine is available
            TranscriptionError: If the engine failed on this chunk; the
                session stays open
        """
        samples = as_float32(frame)

        if self.vad is not None and len(samples) > 0:
            probability = await self._run_vad(self.vad, session_id, samples)
        elif speech_probability is not None:
            probability = speech_probability
        elif self.vad is None:
            # No detector and no caller estimate: treat the frame as speech
            probability = 1.0
        else:
            probability = 0.0

        await self._refresh_accessibility(session_id)

        async with self.transcription_lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(
                    session_id=session_id,
                    context=self._build_context(session_id),
                    state=SessionState.ACTIVE,
                    recording_started_at=recording_started_at,
                )
                self._sessions[session_id] = session
                logger.info(f"Started streaming session {session_id}")

            session.audio_samples += len(samples)
            text = await self.provider.transcribe(
                samples,
                speech_probability=probability,
                context=session.provider_context(),
            )

            if text.strip():
                session.chunks.append(text)
                logger.info(
                    f"Engine returned transcription for {session_id} "
                    f"(length: {len(text)}, chunks: {len(session.chunks)})"
                )

            return session.text

    async def finalize_session(
        self,
        session_id: str,
        audio_file_path: Optional[str] = None,
        recording_started_at: Optional[float] = None,
        recording_stopped_at: Optional[float] = None,
    ) -> str:
        """
        Flush, post-process and persist a session.

        The session is removed whether or not finalization succeeds.

        Args:
            session_id: Session to finalize
            audio_file_path: Recording saved alongside the transcription
            recording_started_at: Monotonic time the recording began
            recording_stopped_at: Monotonic time the recording ended

        Returns:
            Final text, or "" when the session does not exist
        """
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"No session found to finalize: {session_id}")
            return ""

        try:
            return await self._finalize(
                session, audio_file_path, recording_started_at, recording_stopped_at
            )
        finally:
            self._sessions.pop(session_id, None)
            self._vad_sessions.discard(session_id)
            self._context_sessions.discard(session_id)

    async def _finalize(
        self,
        session: Session,
        audio_file_path: Optional[str],
        recording_started_at: Optional[float],
        recording_stopped_at: Optional[float],
    ) -> str:
        session_id = session.session_id
        session.state = SessionState.FINALIZING
        session.finalization_started_at = time.monotonic()
        session.recording_stopped_at = recording_stopped_at
        if recording_started_at is not None and session.recording_started_at is None:
            session.recording_started_at = recording_started_at

        async with self.transcription_lock:
            final_chunk = await self.provider.flush(session.provider_context())
            if final_chunk.strip():
                session.chunks.append(final_chunk)
                logger.info(
                    f"Engine returned final transcription for {session_id} "
                    f"(length: {len(final_chunk)})"
                )

        text = strip_leading_space(session.text, session.context.pre_selection_text)
        logger.info(
            f"Finalizing streaming session {session_id} "
            f"(raw length: {len(text)}, chunks: {len(session.chunks)})"
        )

        text, formatting_model, formatting_ms = await self._format(session, text)

        if session.context.replacements:
            before = text
            text = apply_replacements(text, session.context.replacements)
            if text != before:
                logger.info(
                    f"Applied {len(session.context.replacements)} vocabulary "
                    f"replacements for {session_id}"
                )

        language = session.context.language or "en"
        self.persistence.save_transcription(
            text,
            {
                "session_id": session_id,
                "language": language,
                "audio_file": audio_file_path,
                "speech_model": self.provider.name,
                "formatting_model": formatting_model,
                "duration": session.audio_duration_seconds,
                "vocabulary_size": len(session.context.vocabulary),
            },
        )

        await self._record_completion(session, text, language, formatting_model, formatting_ms)

        self._last_transcription = text
        session.state = SessionState.COMPLETED
        logger.info(f"Streaming session completed: {session_id}")
        return text

    async def _format(self, session: Session, text: str):
        """Return (text, formatting model, duration ms); never raises."""
        formatter_config = self.settings.get_formatter_config()
        if not formatter_config or not formatter_config.enabled:
            logger.debug("Formatting skipped: disabled in config")
            return text, None, None
        if not text.strip():
            logger.debug("Formatting skipped: empty transcription")
            return text, None, None

        formatter = self.formatter or create_formatter(self.settings)
        if formatter is None:
            return text, None, None

        started = time.monotonic()
        try:
            formatted = await formatter.format(text, session.context)
        except Exception as e:
            logger.error(
                f"Formatting failed for {session.session_id}, using unformatted text: {e}"
            )
            return text, None, None

        duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            f"Text formatted for {session.session_id} "
            f"({len(text)} -> {len(formatted)} chars, {duration_ms:.0f}ms)"
        )
        return formatted, formatter.model, duration_ms

    async def _record_completion(
        self,
        session: Session,
        text: str,
        language: str,
        formatting_model: Optional[str],
        formatting_ms: Optional[float],
    ) -> None:
        completed_at = time.monotonic()

        recording_ms = None
        if session.recording_started_at is not None and session.recording_stopped_at is not None:
            recording_ms = (session.recording_stopped_at - session.recording_started_at) * 1000
        processing_ms = None
        if session.recording_stopped_at is not None:
            processing_ms = (completed_at - session.recording_stopped_at) * 1000
        total_ms = None
        if session.recording_started_at is not None:
            total_ms = (completed_at - session.recording_started_at) * 1000

        audio_seconds = session.audio_duration_seconds
        realtime_factor = None
        if audio_seconds and total_ms:
            realtime_factor = audio_seconds / (total_ms / 1000)

        binding = await self.provider.get_binding_info()

        self.telemetry.record_metric(
            TranscriptionCompleted(
                session_id=session.session_id,
                model_id=self.provider.model_id,
                model_preloaded=self._model_was_preloaded,
                engine_binding=(binding or {}).get("type"),
                total_duration_ms=total_ms or 0.0,
                recording_duration_ms=recording_ms,
                processing_duration_ms=processing_ms,
                audio_duration_seconds=audio_seconds,
                realtime_factor=realtime_factor,
                text_length=len(text),
                word_count=count_words(text),
                formatting_enabled=formatting_model is not None,
                formatting_model=formatting_model,
                formatting_duration_ms=formatting_ms,
                vad_enabled=self.vad is not None,
                session_type="streaming",
                language=language,
                vocabulary_size=len(session.context.vocabulary),
            )
        )

    async def cancel_session(self, session_id: str) -> None:
        """
        Discard a session without transcribing or persisting anything.

        Waits for any in-flight chunk, clears the provider buffer so audio
        does not bleed into the next session, and removes the session.
        Unknown ids are ignored.
        """
        async with self.transcription_lock:
            session = self._sessions.pop(session_id, None)
            self._vad_sessions.discard(session_id)
            self._context_sessions.discard(session_id)
            if session is None:
                return
            self.provider.reset()
            session.state = SessionState.CANCELLED
        logger.info(f"Streaming session cancelled: {session_id}")

    def get_last_transcription(self) -> Optional[str]:
        return self._last_transcription

    async def dispose(self) -> None:
        await self.provider.dispose()
        logger.info("Transcription orchestrator disposed")

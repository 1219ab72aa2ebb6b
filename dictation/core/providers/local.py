"""Local Whisper provider backed by the speech worker subprocess."""

import asyncio
from typing import Any, Dict, Optional, Sequence

import numpy as np

from dictation.collaborators import ModelLocator
from dictation.core.providers.base import BufferingTranscriptionProvider, BufferSettings
from dictation.core.session import TranscribeContext
from dictation.core.worker.client import WorkerClient, default_worker_command
from dictation.core.worker.protocol import TranscribeOptions, WorkerMethod
from dictation.errors import EngineUnavailableError, TranscriptionError, WorkerError
from dictation.logging import get_logger

logger = get_logger("transcription")


class LocalWhisperProvider(BufferingTranscriptionProvider):
    """
    Buffers frames and transcribes them with faster-whisper in a worker.

    The worker is started lazily and the best available model is
    (re)initialized before each engine call; the worker ignores repeated
    initialization with the same model path.
    """

    name = "whisper-local"

    def __init__(
        self,
        model_locator: ModelLocator,
        worker: Optional[WorkerClient] = None,
        settings: Optional[BufferSettings] = None,
        beam_size: int = 5,
    ):
        super().__init__(settings)
        self.model_locator = model_locator
        self.worker = worker or WorkerClient()
        self.beam_size = beam_size
        self.model_path: Optional[str] = None
        self._init_lock = asyncio.Lock()

    @property
    def model_id(self) -> Optional[str]:
        return self.model_path

    async def initialize(self) -> None:
        """
        Start the worker and load the best available model.

        Raises:
            EngineUnavailableError: If no speech model is available
            TranscriptionError: If the worker failed to load the model
        """
        async with self._init_lock:
            # Locating may hash model files
            model_path = await asyncio.to_thread(
                self.model_locator.get_best_available_engine_path
            )
            if not model_path:
                raise EngineUnavailableError(
                    "No Whisper models available. Please download a model first."
                )

            try:
                await self.worker.call(WorkerMethod.INITIALIZE_MODEL, model_path)
            except WorkerError as e:
                logger.error(f"Failed to initialize: {e}")
                raise TranscriptionError(
                    f"Failed to initialize whisper worker: {e}"
                ) from e

            if model_path != self.model_path:
                logger.info(f"Whisper model ready: {model_path}")
            self.model_path = model_path

    async def preload(self) -> None:
        await self.initialize()

    async def _transcribe_audio(
        self,
        audio: np.ndarray,
        prompt: str,
        context: Optional[TranscribeContext],
    ) -> str:
        await self.initialize()

        options = TranscribeOptions(
            language=(context.language if context and context.language else "auto"),
            initial_prompt=prompt,
            suppress_blank=True,
            suppress_non_speech_tokens=True,
            no_timestamps=False,
            beam_size=self.beam_size,
        )
        result = await self.worker.call(
            WorkerMethod.TRANSCRIBE_AUDIO, audio, options.to_dict()
        )
        return result or ""

    async def get_binding_info(self) -> Optional[Dict[str, Any]]:
        if not self.worker.is_running:
            return None
        try:
            return await self.worker.call(WorkerMethod.GET_BINDING_INFO)
        except WorkerError as e:
            logger.warning(f"Failed to get binding info: {e}")
            return None

    async def dispose(self) -> None:
        if self.worker.is_running:
            try:
                await self.worker.call(WorkerMethod.DISPOSE)
            except WorkerError as e:
                logger.warning(f"Error disposing worker: {e}")
            await self.worker.stop()
        self.model_path = None
        self.reset()


def create_local_provider(config: Any, model_locator: ModelLocator) -> LocalWhisperProvider:
    """
    Factory function to create the local provider from configuration.

    Args:
        config: DictationConfig instance
        model_locator: Resolves which model the worker loads

    Returns:
        Configured LocalWhisperProvider
    """
    cfg = config.local_engine
    command: Optional[Sequence[str]] = cfg.get("worker_command")
    if not command:
        command = default_worker_command() + [
            "--device",
            str(cfg.get("device", "auto")),
            "--compute-type",
            str(cfg.get("compute_type", "default")),
            "--log-level",
            str(config.get("logging", "level", default="INFO")),
        ]

    return LocalWhisperProvider(
        model_locator,
        worker=WorkerClient(command),
        settings=BufferSettings.from_config(config),
        beam_size=int(cfg.get("beam_size", 5)),
    )

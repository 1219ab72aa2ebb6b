"""Cloud provider using the OpenAI audio transcription API."""

from typing import Any, Optional

import httpx
import numpy as np

from dictation.collaborators import SettingsReader
from dictation.core.audio import float32_to_wav
from dictation.core.providers.base import BufferingTranscriptionProvider, BufferSettings
from dictation.core.session import TranscribeContext
from dictation.errors import EngineUnavailableError, TranscriptionError
from dictation.logging import get_logger

logger = get_logger("transcription")


class CloudWhisperProvider(BufferingTranscriptionProvider):
    """Buffers frames locally and posts each aggregated chunk as a WAV upload."""

    name = "openai-whisper"

    def __init__(
        self,
        settings_reader: SettingsReader,
        settings: Optional[BufferSettings] = None,
        model: str = "whisper-1",
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(settings)
        self.settings_reader = settings_reader
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def model_id(self) -> Optional[str]:
        return self.model

    def is_api_configured(self) -> bool:
        openai_config = self.settings_reader.get_openai_config()
        return bool(openai_config and openai_config.api_key)

    async def _transcribe_audio(
        self,
        audio: np.ndarray,
        prompt: str,
        context: Optional[TranscribeContext],
    ) -> str:
        openai_config = self.settings_reader.get_openai_config()
        if not openai_config or not openai_config.api_key:
            raise EngineUnavailableError("OpenAI API key is not configured")

        data = {"model": self.model}
        language = context.language if context else None
        if language and language != "auto":
            data["language"] = language
        if prompt:
            data["prompt"] = prompt

        files = {
            "file": (
                "audio.wav",
                float32_to_wav(audio, self.settings.sample_rate),
                "audio/wav",
            )
        }
        url = f"{openai_config.base_url.rstrip('/')}/audio/transcriptions"
        headers = {"Authorization": f"Bearer {openai_config.api_key}"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    url, data=data, files=files, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        url, data=data, files=files, headers=headers
                    )
        except httpx.ConnectError as e:
            raise TranscriptionError(f"Cannot connect to {url}: {e}") from e
        except httpx.TimeoutException as e:
            raise TranscriptionError("OpenAI transcription request timed out") from e

        if response.status_code != 200:
            logger.error(
                f"OpenAI transcription API error: {response.status_code} - {response.text}"
            )
            raise TranscriptionError(
                f"OpenAI transcription failed: HTTP {response.status_code}"
            )

        text = response.json().get("text") or ""
        logger.debug(f"OpenAI Whisper transcription completed, length: {len(text)}")
        return text


def create_cloud_provider(config: Any, settings_reader: SettingsReader) -> CloudWhisperProvider:
    cfg = config.openai
    return CloudWhisperProvider(
        settings_reader,
        settings=BufferSettings.from_config(config),
        model=cfg.get("transcription_model", "whisper-1"),
        timeout=float(cfg.get("timeout", 60.0)),
    )

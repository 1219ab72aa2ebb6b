"""
Speech worker process.

Loads a faster-whisper model once and serves transcription requests over
stdin/stdout (one JSON object per line, see ``protocol.py``). Logs go to
stderr so stdout stays a clean protocol channel.

Usage:
    python -m dictation.core.worker [--device auto] [--compute-type default]
"""

import argparse
import logging
import sys
from typing import Any, Dict, Optional

import numpy as np

from dictation.core.audio import pad_to_min_length
from dictation.core.worker.protocol import (
    MIN_AUDIO_SAMPLES,
    TranscribeOptions,
    UnknownMethodError,
    WorkerMethod,
    WorkerRequest,
    WorkerResponse,
)
from dictation.errors import DictationError, ProtocolError
from dictation.logging import setup_logging

logger = logging.getLogger("dictation.worker.process")


class WhisperWorker:
    """Holds the loaded model and executes worker methods."""

    def __init__(self, device: str = "auto", compute_type: str = "default"):
        self.device = device
        self.compute_type = compute_type
        self._model: Optional[Any] = None
        self._model_path: Optional[str] = None

    def initialize_model(self, model_path: str) -> None:
        if self._model is not None and self._model_path == model_path:
            return

        self.dispose()

        import faster_whisper

        logger.info(f"Loading Whisper model: {model_path}")
        try:
            self._model = faster_whisper.WhisperModel(
                model_size_or_path=model_path,
                device=self.device,
                compute_type=self.compute_type,
            )
        except Exception as e:
            logger.exception(f"Error loading Whisper model: {e}")
            raise
        self._model_path = model_path
        logger.info(f"Initialized with model: {model_path}")

    def transcribe_audio(self, audio: np.ndarray, options: Dict[str, Any]) -> str:
        if self._model is None:
            raise DictationError("Whisper instance is not initialized")

        opts = TranscribeOptions.from_dict(options)
        audio = pad_to_min_length(audio, MIN_AUDIO_SAMPLES)

        segments, info = self._model.transcribe(
            audio,
            language=None if opts.language in ("", "auto") else opts.language,
            beam_size=opts.beam_size,
            initial_prompt=opts.initial_prompt or None,
            suppress_blank=opts.suppress_blank,
            suppress_tokens=[-1] if opts.suppress_non_speech_tokens else [],
            without_timestamps=opts.no_timestamps,
        )
        texts = [segment.text for segment in segments]
        logger.debug(
            f"Transcription segments: {len(texts)} (language: {info.language})"
        )
        return "".join(texts)

    def dispose(self) -> None:
        if self._model is not None:
            logger.info(f"Releasing model: {self._model_path}")
        self._model = None
        self._model_path = None

    def get_binding_info(self) -> Optional[Dict[str, str]]:
        if self._model is None:
            return None
        return {
            "path": self._model_path or "",
            "type": f"faster-whisper/{self.device}/{self.compute_type}",
        }

    def handle(self, request: WorkerRequest) -> Any:
        if request.method is WorkerMethod.INITIALIZE_MODEL:
            return self.initialize_model(*request.args)
        if request.method is WorkerMethod.TRANSCRIBE_AUDIO:
            return self.transcribe_audio(*request.args)
        if request.method is WorkerMethod.DISPOSE:
            return self.dispose()
        if request.method is WorkerMethod.GET_BINDING_INFO:
            return self.get_binding_info()
        raise UnknownMethodError(request.id, request.method.value)


def serve(worker: WhisperWorker, stdin=None, stdout=None) -> None:
    """Answer requests until stdin is closed."""
    stdin = stdin or sys.stdin.buffer
    stdout = stdout or sys.stdout.buffer

    for line in stdin:
        if not line.strip():
            continue
        try:
            request = WorkerRequest.decode(line)
        except UnknownMethodError as e:
            response = WorkerResponse(id=e.request_id, error=str(e))
        except ProtocolError as e:
            logger.error(f"Dropping malformed request: {e}")
            continue
        else:
            try:
                response = WorkerResponse(id=request.id, result=worker.handle(request))
            except Exception as e:
                logger.error(f"{request.method.value} failed: {e}")
                response = WorkerResponse(id=request.id, error=str(e) or type(e).__name__)

        stdout.write(response.encode())
        stdout.flush()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Dictation speech worker")
    parser.add_argument("--device", default="auto")
    parser.add_argument("--compute-type", default="default")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    setup_logging({"level": args.log_level, "console_output": True})
    logger.info("Worker process started")

    worker = WhisperWorker(device=args.device, compute_type=args.compute_type)
    try:
        serve(worker)
    finally:
        worker.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(main())

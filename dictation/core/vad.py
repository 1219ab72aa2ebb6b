"""
Voice Activity Detection (VAD).

Runs the Silero VAD ONNX model frame by frame with an explicitly managed
recurrent state and a short rolling context, and smooths the raw speech
probability with a speech/silence hysteresis so that ``is_speaking`` does not
flap on noisy input.

Each inference pass sees ``context (64) + frame (512) = 576`` samples; after
the pass the context becomes the trailing 64 samples of that input.
"""

import asyncio
import logging
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any, List, Optional, Protocol, Tuple

import numpy as np

from dictation.core.audio import FRAME_SIZE, SAMPLE_RATE, fit_frame
from dictation.errors import ModelLoadError

logger = logging.getLogger(__name__)

STATE_SHAPE = (2, 1, 128)
DEFAULT_CONTEXT_SIZE = 64


@dataclass
class VadResult:
    """Result of classifying a single frame."""

    probability: float
    is_speaking: bool


class VadModel(Protocol):
    """Recurrent speech-probability model."""

    def run(
        self, samples: np.ndarray, state: np.ndarray, sample_rate: int
    ) -> Tuple[float, np.ndarray]:
        """Return (speech probability, next state) for one input window."""
        ...


class VoiceActivityListener(Protocol):
    """Observer notified when the smoothed speaking state flips."""

    def on_voice_activity(self, is_speaking: bool) -> None: ...


def default_silero_model_path() -> Path:
    """Path of the ONNX model bundled with the ``silero-vad`` distribution."""
    return Path(str(resources.files("silero_vad.data").joinpath("silero_vad.onnx")))


class SileroOnnxModel:
    """
    Silero VAD inference through onnxruntime.

    The session is created once; the caller owns and threads the state
    tensor through every call.
    """

    def __init__(self, model_path: Optional[Path] = None):
        import onnxruntime as ort

        self.model_path = Path(model_path) if model_path else default_silero_model_path()
        if not self.model_path.exists():
            raise ModelLoadError(
                f"VAD model file not found at: {self.model_path}. "
                "Install the silero-vad package or set vad.model_path."
            )

        options = ort.SessionOptions()
        options.inter_op_num_threads = 1
        options.intra_op_num_threads = 1
        try:
            self._session = ort.InferenceSession(
                str(self.model_path),
                sess_options=options,
                providers=["CPUExecutionProvider"],
            )
        except Exception as e:
            logger.exception(f"Error initializing Silero VAD: {e}")
            raise ModelLoadError(f"Failed to load VAD model: {e}") from e

        outputs = [o.name for o in self._session.get_outputs()]
        self._probability_output = outputs[0]
        self._state_output = next(name for name in outputs if name != outputs[0])
        logger.debug(f"Silero VAD initialized from {self.model_path}")

    def run(
        self, samples: np.ndarray, state: np.ndarray, sample_rate: int
    ) -> Tuple[float, np.ndarray]:
        feeds = {
            "input": samples.reshape(1, -1).astype(np.float32, copy=False),
            "state": state,
            "sr": np.array(sample_rate, dtype=np.int64),
        }
        results = self._session.run(
            [self._probability_output, self._state_output], feeds
        )
        probability = float(np.asarray(results[0]).reshape(-1)[0])
        return probability, np.asarray(results[1], dtype=np.float32)


class VoiceActivityDetector:
    """
    Frame-level voice activity detector with hysteresis.

    A frame counts as speech when its probability exceeds
    ``speech_threshold``. ``is_speaking`` turns on after
    ``min_speech_frames`` consecutive speech frames and turns off after
    ``redemption_frames`` consecutive silence frames.
    """

    def __init__(
        self,
        model: VadModel,
        speech_threshold: float = 0.1,
        redemption_frames: int = 8,
        min_speech_frames: int = 3,
        frame_size: int = FRAME_SIZE,
        context_size: int = DEFAULT_CONTEXT_SIZE,
        sample_rate: int = SAMPLE_RATE,
    ):
        """
        Initialize the VAD.

        Args:
            model: Inference backend (normally SileroOnnxModel)
            speech_threshold: Probability above which a frame is speech
            redemption_frames: Silence frames required to leave speaking state
            min_speech_frames: Speech frames required to enter speaking state
            frame_size: Samples per frame; other lengths are padded/truncated
            context_size: Trailing samples carried into the next inference
            sample_rate: Sample rate passed to the model
        """
        self.model = model
        self.speech_threshold = speech_threshold
        self.redemption_frames = redemption_frames
        self.min_speech_frames = min_speech_frames
        self.frame_size = frame_size
        self.context_size = context_size
        self.sample_rate = sample_rate

        self._listeners: List[VoiceActivityListener] = []
        self.reset()

    @property
    def input_size(self) -> int:
        return self.context_size + self.frame_size

    @property
    def is_speaking(self) -> bool:
        return self._is_speaking

    def add_listener(self, listener: VoiceActivityListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: VoiceActivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reset(self) -> None:
        """
        Reset VAD state for a new recording session.

        Clears the recurrent state, the context buffer and the hysteresis
        counters.
        """
        self._state = np.zeros(STATE_SHAPE, dtype=np.float32)
        self._context = np.zeros(self.context_size, dtype=np.float32)
        self._speech_frame_count = 0
        self._silence_frame_count = 0
        self._is_speaking = False
        logger.debug("VAD state reset for new recording session")

    def process_frame_sync(self, frame: Any) -> VadResult:
        """Classify one frame, blocking on inference."""
        window = fit_frame(frame, self.frame_size)

        model_input = np.empty(self.input_size, dtype=np.float32)
        model_input[: self.context_size] = self._context
        model_input[self.context_size :] = window

        try:
            probability, next_state = self.model.run(
                model_input, self._state, self.sample_rate
            )
        except Exception as e:
            logger.error(f"VAD inference failed: {e}")
            raise

        self._state = next_state
        self._context = model_input[-self.context_size :].copy()

        is_speaking = self._apply_hysteresis(probability)
        return VadResult(probability=probability, is_speaking=is_speaking)

    async def process_frame(self, frame: Any) -> VadResult:
        """Classify one frame, running inference off the event loop."""
        return await asyncio.to_thread(self.process_frame_sync, frame)

    def _apply_hysteresis(self, probability: float) -> bool:
        if probability > self.speech_threshold:
            self._speech_frame_count += 1
            self._silence_frame_count = 0
        else:
            self._silence_frame_count += 1
            if self._silence_frame_count > self.redemption_frames:
                self._speech_frame_count = 0

        if not self._is_speaking and self._speech_frame_count >= self.min_speech_frames:
            self._is_speaking = True
            self._notify(True)

        if self._is_speaking and self._silence_frame_count >= self.redemption_frames:
            self._is_speaking = False
            self._notify(False)

        return self._is_speaking

    def _notify(self, is_speaking: bool) -> None:
        logger.debug(f"Voice activity changed: speaking={is_speaking}")
        for listener in list(self._listeners):
            listener.on_voice_activity(is_speaking)


def create_vad(config: Any) -> VoiceActivityDetector:
    """
    Factory function to create a VoiceActivityDetector from configuration.

    Args:
        config: DictationConfig instance

    Returns:
        Configured VoiceActivityDetector backed by the Silero ONNX model
    """
    vad_cfg = config.vad
    model_path = vad_cfg.get("model_path")
    model = SileroOnnxModel(Path(model_path) if model_path else None)

    return VoiceActivityDetector(
        model,
        speech_threshold=float(vad_cfg.get("speech_threshold", 0.1)),
        redemption_frames=int(vad_cfg.get("redemption_frames", 8)),
        min_speech_frames=int(vad_cfg.get("min_speech_frames", 3)),
        frame_size=int(config.get("audio", "frame_size", default=FRAME_SIZE)),
        context_size=int(vad_cfg.get("context_size", DEFAULT_CONTEXT_SIZE)),
    )

"""
Audio sample helpers and the typed-buffer serialization boundary.

All pipeline audio is mono float32 in [-1, 1] at 16 kHz. Sample arrays cross
process boundaries (speech worker) as a tagged JSON object:

    {"__type": "Float32Array", "data": "<base64 of little-endian float32>"}

A plain list of numbers in "data" is also accepted on decode.
"""

import base64
import io
from typing import Any, Dict, Iterable, List, Sequence

import numpy as np
import soundfile as sf

from dictation.errors import ProtocolError

# Target sample rate for Whisper/Silero (technical requirement, not configurable)
SAMPLE_RATE = 16000

# One VAD/provider frame: 512 samples = 32 ms at 16 kHz
FRAME_SIZE = 512

FLOAT32_TAG = "Float32Array"


def as_float32(audio: Any) -> np.ndarray:
    """Return a 1-D float32 view or copy of audio samples."""
    array = np.asarray(audio, dtype=np.float32)
    if array.ndim != 1:
        array = array.reshape(-1)
    return array


def fit_frame(frame: Any, size: int = FRAME_SIZE) -> np.ndarray:
    """
    Fit a frame to exactly ``size`` samples.

    Shorter frames are zero-padded at the end, longer frames are truncated.
    """
    samples = as_float32(frame)
    if len(samples) == size:
        return samples
    if len(samples) > size:
        return samples[:size].copy()
    padded = np.zeros(size, dtype=np.float32)
    padded[: len(samples)] = samples
    return padded


def pad_to_min_length(audio: np.ndarray, min_samples: int) -> np.ndarray:
    """Append silence so that audio is at least ``min_samples`` long."""
    if len(audio) >= min_samples:
        return audio
    padded = np.zeros(min_samples, dtype=np.float32)
    padded[: len(audio)] = audio
    return padded


def concat_frames(frames: Sequence[np.ndarray]) -> np.ndarray:
    """Concatenate buffered frames into one contiguous float32 array."""
    if not frames:
        return np.zeros(0, dtype=np.float32)
    return np.concatenate([as_float32(f) for f in frames]).astype(np.float32, copy=False)


def frames_to_ms(frame_count: int, frame_size: int = FRAME_SIZE) -> float:
    """Duration in milliseconds of ``frame_count`` frames."""
    return frame_count * frame_size / SAMPLE_RATE * 1000


def serialize_audio(audio: Any) -> Dict[str, Any]:
    """Encode a sample array as a tagged JSON-safe object."""
    samples = as_float32(audio).astype("<f4", copy=False)
    return {
        "__type": FLOAT32_TAG,
        "data": base64.b64encode(samples.tobytes()).decode("ascii"),
    }


def is_serialized_audio(value: Any) -> bool:
    return isinstance(value, dict) and value.get("__type") == FLOAT32_TAG


def deserialize_audio(value: Any) -> np.ndarray:
    """
    Decode a tagged audio object produced by :func:`serialize_audio`.

    Args:
        value: ``{"__type": "Float32Array", "data": str | list}``

    Returns:
        1-D float32 numpy array

    Raises:
        ProtocolError: If the object is not a well-formed audio payload
    """
    if not is_serialized_audio(value):
        raise ProtocolError(f"Expected a {FLOAT32_TAG} payload, got {value!r:.80}")

    data = value.get("data")
    if isinstance(data, str):
        try:
            raw = base64.b64decode(data.encode("ascii"), validate=True)
        except (ValueError, UnicodeEncodeError) as e:
            raise ProtocolError(f"Invalid base64 audio payload: {e}") from e
        if len(raw) % 4:
            raise ProtocolError(
                f"Audio payload length {len(raw)} is not a multiple of 4 bytes"
            )
        return np.frombuffer(raw, dtype="<f4").astype(np.float32)
    if isinstance(data, list):
        try:
            return np.asarray(data, dtype=np.float32)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid numeric audio payload: {e}") from e

    raise ProtocolError(f"Unsupported audio data type: {type(data).__name__}")


def encode_args(args: Iterable[Any]) -> List[Any]:
    """Serialize numpy arrays in an argument list for the wire."""
    return [serialize_audio(a) if isinstance(a, np.ndarray) else a for a in args]


def decode_args(args: Iterable[Any]) -> List[Any]:
    """Inverse of :func:`encode_args`."""
    return [deserialize_audio(a) if is_serialized_audio(a) else a for a in args]


def float32_to_wav(audio: np.ndarray, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Encode float32 samples as a 16-bit PCM mono WAV file."""
    buffer = io.BytesIO()
    clipped = np.clip(as_float32(audio), -1.0, 1.0)
    sf.write(buffer, clipped, sample_rate, format="WAV", subtype="PCM_16")
    return buffer.getvalue()


def load_audio_file(path: str) -> tuple[np.ndarray, int]:
    """Read an audio file as mono float32 samples."""
    data, sample_rate = sf.read(path, dtype="float32", always_2d=True)
    mono = data.mean(axis=1).astype(np.float32)
    return mono, int(sample_rate)


def iter_frames(audio: np.ndarray, frame_size: int = FRAME_SIZE):
    """Yield consecutive frames; the last one may be shorter."""
    for start in range(0, len(audio), frame_size):
        yield audio[start : start + frame_size]

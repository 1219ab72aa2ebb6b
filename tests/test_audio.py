"""Tests for sample helpers and the tagged audio serialization boundary."""

import base64

import numpy as np
import pytest

from dictation.core import audio
from dictation.errors import ProtocolError


def test_serialize_audio_uses_little_endian_float32_base64() -> None:
    samples = np.array([0.0, 0.5, -1.0], dtype=np.float32)

    payload = audio.serialize_audio(samples)

    assert payload["__type"] == "Float32Array"
    raw = base64.b64decode(payload["data"])
    assert raw == samples.astype("<f4").tobytes()


def test_deserialize_audio_accepts_plain_number_list() -> None:
    result = audio.deserialize_audio({"__type": "Float32Array", "data": [0.25, -0.5]})

    assert result.dtype == np.float32
    assert result.tolist() == [0.25, -0.5]


def test_deserialize_audio_restores_samples() -> None:
    samples = np.linspace(-1, 1, 1000, dtype=np.float32)

    restored = audio.deserialize_audio(audio.serialize_audio(samples))

    assert np.array_equal(restored, samples)


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"data": "AAAA"}, "Expected a Float32Array"),
        ([1.0, 2.0], "Expected a Float32Array"),
        ({"__type": "Float32Array", "data": "not base64!"}, "Invalid base64"),
        (
            {"__type": "Float32Array", "data": base64.b64encode(b"\x00" * 6).decode()},
            "not a multiple of 4",
        ),
        ({"__type": "Float32Array", "data": 42}, "Unsupported audio data type"),
    ],
)
def test_deserialize_audio_rejects_malformed_payloads(payload, message) -> None:
    with pytest.raises(ProtocolError, match=message):
        audio.deserialize_audio(payload)


def test_encode_and_decode_args_only_touch_arrays() -> None:
    samples = np.ones(4, dtype=np.float32)

    encoded = audio.encode_args([samples, {"language": "en"}, "path"])

    assert audio.is_serialized_audio(encoded[0])
    assert encoded[1:] == [{"language": "en"}, "path"]

    decoded = audio.decode_args(encoded)
    assert np.array_equal(decoded[0], samples)
    assert decoded[1:] == [{"language": "en"}, "path"]


@pytest.mark.parametrize("length", [0, 100, 512, 700])
def test_fit_frame_always_returns_frame_size(length) -> None:
    frame = np.full(length, 0.5, dtype=np.float32)

    fitted = audio.fit_frame(frame, 512)

    assert len(fitted) == 512
    kept = min(length, 512)
    assert np.all(fitted[:kept] == 0.5)
    assert np.all(fitted[kept:] == 0.0)


def test_pad_to_min_length_appends_silence() -> None:
    samples = np.ones(10, dtype=np.float32)

    padded = audio.pad_to_min_length(samples, 20000)

    assert len(padded) == 20000
    assert padded[:10].sum() == 10
    assert padded[10:].sum() == 0
    assert audio.pad_to_min_length(padded, 100) is padded


def test_frames_to_ms_matches_32ms_frames() -> None:
    assert audio.frames_to_ms(1) == pytest.approx(32.0)
    assert audio.frames_to_ms(94) > 3000


def test_float32_to_wav_round_trips_through_soundfile(tmp_path) -> None:
    samples = np.sin(np.linspace(0, 100, 16000)).astype(np.float32) * 0.5
    path = tmp_path / "clip.wav"
    path.write_bytes(audio.float32_to_wav(samples))

    loaded, sample_rate = audio.load_audio_file(str(path))

    assert sample_rate == 16000
    assert len(loaded) == 16000
    assert np.allclose(loaded, samples, atol=1e-3)


def test_iter_frames_keeps_short_tail() -> None:
    frames = list(audio.iter_frames(np.zeros(1100, dtype=np.float32), 512))

    assert [len(f) for f in frames] == [512, 512, 76]

"""Tests for the speech worker protocol, request loop and async client."""

import io
import json
import sys

import numpy as np
import pytest

from dictation.core.worker.__main__ import WhisperWorker, serve
from dictation.core.worker.client import WorkerClient
from dictation.core.worker.protocol import (
    MIN_AUDIO_SAMPLES,
    TranscribeOptions,
    UnknownMethodError,
    WorkerMethod,
    WorkerRequest,
    WorkerResponse,
)
from dictation.errors import ProtocolError, WorkerCrashedError, WorkerError


def test_request_encodes_audio_args_as_tagged_payload() -> None:
    audio = np.array([0.5, -0.5], dtype=np.float32)
    request = WorkerRequest(
        id=7, method=WorkerMethod.TRANSCRIBE_AUDIO, args=[audio, {"language": "en"}]
    )

    line = request.encode()
    message = json.loads(line)

    assert line.endswith(b"\n")
    assert message["method"] == "transcribeAudio"
    assert message["args"][0]["__type"] == "Float32Array"

    decoded = WorkerRequest.decode(line)
    assert decoded.id == 7
    assert decoded.method is WorkerMethod.TRANSCRIBE_AUDIO
    assert np.array_equal(decoded.args[0], audio)
    assert decoded.args[1] == {"language": "en"}


def test_unknown_method_keeps_request_id() -> None:
    with pytest.raises(UnknownMethodError) as exc_info:
        WorkerRequest.decode(b'{"id": 4, "method": "explode", "args": []}')

    assert exc_info.value.request_id == 4


@pytest.mark.parametrize(
    "line",
    [b"not json", b"[1, 2]", b'{"method": "dispose"}', b'{"id": "x", "method": "dispose"}'],
)
def test_malformed_requests_raise_protocol_error(line) -> None:
    with pytest.raises(ProtocolError):
        WorkerRequest.decode(line)


def test_response_carries_result_or_error() -> None:
    ok = WorkerResponse.decode(WorkerResponse(id=1, result="text").encode())
    failed = WorkerResponse.decode(WorkerResponse(id=2, error="boom").encode())

    assert (ok.id, ok.result, ok.error) == (1, "text", None)
    assert (failed.id, failed.error) == (2, "boom")


def test_transcribe_options_ignore_unknown_keys() -> None:
    options = TranscribeOptions.from_dict({"language": "de", "temperature": 0.3})

    assert options.language == "de"
    assert options.to_dict()["initial_prompt"] == ""


class _StubSegment:
    def __init__(self, text: str) -> None:
        self.text = text


class _StubInfo:
    language = "en"


class _StubModel:
    def __init__(self) -> None:
        self.kwargs = {}
        self.audio_length = 0

    def transcribe(self, audio, **kwargs):
        self.audio_length = len(audio)
        self.kwargs = kwargs
        return iter([_StubSegment(" Hello"), _StubSegment(" world.")]), _StubInfo()


def _run_serve(worker: WhisperWorker, *requests: bytes) -> list:
    stdout = io.BytesIO()
    serve(worker, stdin=io.BytesIO(b"".join(requests)), stdout=stdout)
    return [json.loads(line) for line in stdout.getvalue().splitlines()]


def test_serve_transcribes_with_padding_and_joins_segments() -> None:
    worker = WhisperWorker()
    model = _StubModel()
    worker._model = model
    worker._model_path = "/models/small"
    options = TranscribeOptions(language="auto", initial_prompt="Amical").to_dict()

    responses = _run_serve(
        worker,
        WorkerRequest(
            id=1,
            method=WorkerMethod.TRANSCRIBE_AUDIO,
            args=[np.zeros(512, dtype=np.float32), options],
        ).encode(),
    )

    assert responses == [{"id": 1, "result": " Hello world."}]
    assert model.audio_length == MIN_AUDIO_SAMPLES
    assert model.kwargs["language"] is None
    assert model.kwargs["initial_prompt"] == "Amical"


def test_serve_answers_errors_and_skips_malformed_lines() -> None:
    worker = WhisperWorker()

    responses = _run_serve(
        worker,
        b"garbage\n",
        b"\n",
        b'{"id": 2, "method": "explode", "args": []}\n',
        WorkerRequest(
            id=3,
            method=WorkerMethod.TRANSCRIBE_AUDIO,
            args=[np.zeros(10, dtype=np.float32), {}],
        ).encode(),
        WorkerRequest(id=4, method=WorkerMethod.GET_BINDING_INFO).encode(),
    )

    assert responses[0] == {"id": 2, "error": "Unknown method: explode"}
    assert responses[1]["id"] == 3
    assert "not initialized" in responses[1]["error"]
    assert responses[2] == {"id": 4, "result": None}


def test_binding_info_describes_loaded_model() -> None:
    worker = WhisperWorker(device="cpu", compute_type="int8")
    worker._model = _StubModel()
    worker._model_path = "/models/base"

    assert worker.get_binding_info() == {
        "path": "/models/base",
        "type": "faster-whisper/cpu/int8",
    }
    worker.dispose()
    assert worker.get_binding_info() is None


@pytest.mark.asyncio
async def test_client_round_trip_with_worker_process() -> None:
    client = WorkerClient([sys.executable, "-m", "dictation.core.worker", "--log-level", "ERROR"])
    try:
        assert await client.call(WorkerMethod.GET_BINDING_INFO) is None
        with pytest.raises(WorkerError, match="not initialized"):
            await client.call(
                WorkerMethod.TRANSCRIBE_AUDIO, np.zeros(512, dtype=np.float32), {}
            )
        assert client.is_running
        assert client.pending_count == 0
    finally:
        await client.stop()

    assert not client.is_running


_CRASHING_WORKER = """
import sys
sys.stdin.readline()
sys.exit(3)
"""


@pytest.mark.asyncio
async def test_client_rejects_pending_calls_when_worker_exits() -> None:
    client = WorkerClient([sys.executable, "-c", _CRASHING_WORKER])

    with pytest.raises(WorkerCrashedError, match="code 3"):
        await client.call(WorkerMethod.GET_BINDING_INFO)

    assert client.pending_count == 0
    await client.stop()

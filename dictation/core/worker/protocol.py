"""
Request/response protocol between the pipeline and the speech worker.

One JSON object per line over the worker's stdin/stdout:

    Request:  {"id": 3, "method": "transcribeAudio", "args": [<audio>, {...}]}
    Response: {"id": 3, "result": "text"}  or  {"id": 3, "error": "message"}

Sample arrays in ``args`` use the tagged encoding from ``dictation.core.audio``.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from dictation.core.audio import decode_args, encode_args
from dictation.errors import ProtocolError

# Whisper needs at least one second of input; a little extra avoids edge clipping
MIN_AUDIO_SAMPLES = 16000 * 1 + 4000


class WorkerMethod(str, Enum):
    INITIALIZE_MODEL = "initializeModel"
    TRANSCRIBE_AUDIO = "transcribeAudio"
    DISPOSE = "dispose"
    GET_BINDING_INFO = "getBindingInfo"


@dataclass
class TranscribeOptions:
    """Decoding options sent along with ``transcribeAudio``."""

    language: str = "auto"
    initial_prompt: str = ""
    suppress_blank: bool = True
    suppress_non_speech_tokens: bool = True
    no_timestamps: bool = False
    beam_size: int = 5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "language": self.language,
            "initial_prompt": self.initial_prompt,
            "suppress_blank": self.suppress_blank,
            "suppress_non_speech_tokens": self.suppress_non_speech_tokens,
            "no_timestamps": self.no_timestamps,
            "beam_size": self.beam_size,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TranscribeOptions":
        data = data or {}
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass
class WorkerRequest:
    id: int
    method: WorkerMethod
    args: List[Any] = field(default_factory=list)

    def encode(self) -> bytes:
        payload = {"id": self.id, "method": self.method.value, "args": encode_args(self.args)}
        return (json.dumps(payload) + "\n").encode("utf-8")

    @classmethod
    def decode(cls, line: bytes) -> "WorkerRequest":
        message = _loads(line)
        request_id = message.get("id")
        if not isinstance(request_id, int):
            raise ProtocolError(f"Worker request without integer id: {message!r:.120}")
        try:
            method = WorkerMethod(message.get("method"))
        except ValueError as e:
            raise UnknownMethodError(request_id, str(message.get("method"))) from e
        args = message.get("args") or []
        if not isinstance(args, list):
            raise ProtocolError("Worker request args must be a list")
        return cls(id=request_id, method=method, args=decode_args(args))


class UnknownMethodError(ProtocolError):
    def __init__(self, request_id: int, method: str):
        super().__init__(f"Unknown method: {method}")
        self.request_id = request_id


@dataclass
class WorkerResponse:
    id: int
    result: Any = None
    error: Optional[str] = None

    def encode(self) -> bytes:
        payload: Dict[str, Any] = {"id": self.id}
        if self.error is not None:
            payload["error"] = self.error
        else:
            payload["result"] = self.result
        return (json.dumps(payload) + "\n").encode("utf-8")

    @classmethod
    def decode(cls, line: bytes) -> "WorkerResponse":
        message = _loads(line)
        request_id = message.get("id")
        if not isinstance(request_id, int):
            raise ProtocolError(f"Worker response without integer id: {message!r:.120}")
        error = message.get("error")
        return cls(
            id=request_id,
            result=message.get("result"),
            error=str(error) if error is not None else None,
        )


def _loads(line: bytes) -> Dict[str, Any]:
    try:
        message = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(f"Invalid JSON from worker channel: {e}") from e
    if not isinstance(message, dict):
        raise ProtocolError("Worker message must be a JSON object")
    return message

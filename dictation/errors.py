"""Exception hierarchy for the dictation pipeline."""

from typing import Any, Optional


class DictationError(Exception):
    """Base class for all pipeline errors."""


class EngineUnavailableError(DictationError):
    """No speech engine is initialized or configured.

    Fatal for the current transcription attempt only; the session stays
    registered so the next chunk can retry.
    """


class TranscriptionError(DictationError):
    """The underlying speech engine failed to transcribe a chunk."""


class ModelLoadError(DictationError):
    """A VAD or speech model could not be loaded."""


class IntegrityError(DictationError):
    """A model or helper file failed checksum verification."""

    def __init__(self, path: str, expected: str, actual: str):
        super().__init__(
            f"Checksum mismatch for {path}: expected {expected}, got {actual}"
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class FormattingError(DictationError):
    """The LLM formatter could not produce formatted text."""


class ProtocolError(DictationError):
    """A wire message did not have the expected shape."""


class WorkerError(DictationError):
    """The speech worker process reported an error."""


class WorkerCrashedError(WorkerError):
    """The speech worker process exited while calls were pending."""


class HelperError(DictationError):
    """Base class for native helper bridge errors."""


class HelperUnavailableError(HelperError):
    """The native helper process is not running."""


class HelperCrashedError(HelperError):
    """The native helper process exited while a call was pending."""


class RpcTimeoutError(HelperError):
    """A helper RPC call did not receive a response in time."""

    def __init__(
        self,
        method: str,
        request_id: str,
        timeout_ms: int,
        elapsed_ms: float,
        started_at: str,
    ):
        super().__init__(
            f'NativeHelperBridge: RPC call "{method}" (id: {request_id}) timed out '
            f"after {timeout_ms}ms (duration: {elapsed_ms:.0f}ms, started: {started_at})"
        )
        self.method = method
        self.request_id = request_id
        self.timeout_ms = timeout_ms
        self.elapsed_ms = elapsed_ms
        self.started_at = started_at


class RpcError(HelperError):
    """The helper answered a call with an error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data

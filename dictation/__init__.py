"""
Streaming dictation pipeline.

Turns live microphone frames into text: voice activity detection, buffered
Whisper transcription (local worker or cloud API), optional LLM formatting,
vocabulary replacements, and a resilient bridge to the native OS helper.
"""

from typing import Any


def _get_version() -> str:
    """
    Get the package version from installed metadata.

    Returns:
        Version string (e.g., "0.4.0") or "dev" if not installed
    """
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("dictation-pipeline")
    except PackageNotFoundError:
        return "dev"


__version__ = _get_version()

__all__ = [
    "__version__",
    "SessionOrchestrator",
    "NativeHelperBridge",
    "build_pipeline",
    "get_config",
]


def __getattr__(name: str) -> Any:
    """Lazily resolve heavy exports to keep `import dictation` cheap."""
    if name == "SessionOrchestrator":
        from dictation.core.orchestrator import SessionOrchestrator

        return SessionOrchestrator
    elif name == "NativeHelperBridge":
        from dictation.helper.bridge import NativeHelperBridge

        return NativeHelperBridge
    elif name == "build_pipeline":
        from dictation.pipeline import build_pipeline

        return build_pipeline
    elif name == "get_config":
        from dictation.config import get_config

        return get_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

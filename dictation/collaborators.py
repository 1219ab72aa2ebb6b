"""
Narrow interfaces to the collaborators the pipeline consumes, plus
configuration- and file-backed default implementations.
"""

import hashlib
import json
import logging
import threading
from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, Set

from dictation.errors import IntegrityError
from dictation.logging import get_logger

logger = logging.getLogger(__name__)


@dataclass
class VocabularyEntry:
    word: str
    is_replacement: bool = False
    replacement_word: Optional[str] = None


@dataclass
class FormatterConfig:
    enabled: bool = False
    model: Optional[str] = None
    instructions: Optional[str] = None
    timeout: float = 30.0


@dataclass
class OpenAIConfig:
    api_key: Optional[str] = None
    base_url: str = "https://api.openai.com/v1"


class SettingsReader(Protocol):
    def get_formatter_config(self) -> Optional[FormatterConfig]: ...

    def get_openai_config(self) -> Optional[OpenAIConfig]: ...

    def get_dictation_language(self) -> Optional[str]: ...

    def get_vocabulary(self, limit: int) -> List[VocabularyEntry]: ...


class ModelLocator(Protocol):
    def get_best_available_engine_path(self) -> Optional[str]: ...


class PersistenceSink(Protocol):
    def save_transcription(self, text: str, metadata: Dict[str, Any]) -> None: ...


class TelemetrySink(Protocol):
    def record_metric(self, event: Any) -> None: ...


class ConfigSettingsReader:
    """SettingsReader backed by the ``dictation``/``formatter``/``openai`` sections."""

    def __init__(self, config: Any):
        self.config = config

    def get_formatter_config(self) -> Optional[FormatterConfig]:
        cfg = self.config.formatter
        return FormatterConfig(
            enabled=bool(cfg.get("enabled", False)),
            model=cfg.get("model"),
            instructions=cfg.get("instructions"),
            timeout=float(cfg.get("timeout", 30.0)),
        )

    def get_openai_config(self) -> Optional[OpenAIConfig]:
        cfg = self.config.openai
        if not cfg.get("api_key"):
            return None
        return OpenAIConfig(
            api_key=cfg["api_key"],
            base_url=cfg.get("base_url") or "https://api.openai.com/v1",
        )

    def get_dictation_language(self) -> Optional[str]:
        """None means auto-detect."""
        cfg = self.config.dictation
        if cfg.get("auto_detect_language", True):
            return None
        return cfg.get("language") or "en"

    def get_vocabulary(self, limit: int) -> List[VocabularyEntry]:
        cfg = self.config.dictation
        entries = [VocabularyEntry(word=str(w)) for w in cfg.get("vocabulary") or []]
        for word, replacement in (cfg.get("replacements") or {}).items():
            entries.append(
                VocabularyEntry(
                    word=str(word),
                    is_replacement=True,
                    replacement_word="" if replacement is None else str(replacement),
                )
            )
        return entries[:limit]


# Best first; used when no model is explicitly selected
PREFERRED_MODELS: Sequence[str] = (
    "large-v3-turbo",
    "large-v1",
    "medium",
    "small",
    "base",
    "tiny",
)


def sha1_file(path: Path, chunk_size: int = 1 << 20) -> str:
    digest = hashlib.sha1()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def verify_checksum(path: Path, expected_sha1: str) -> None:
    """
    Verify a downloaded model or helper file.

    Raises:
        IntegrityError: If the file's SHA-1 differs from ``expected_sha1``
    """
    actual = sha1_file(path)
    if actual.lower() != expected_sha1.lower():
        logger.error(f"Checksum mismatch for {path}")
        raise IntegrityError(str(path), expected_sha1, actual)


class DirectoryModelLocator:
    """
    Picks the speech model to load.

    Models are CTranslate2 directories under ``models_dir`` named after the
    model (``small``, ``large-v3-turbo``, ...). The selected model wins when
    present; otherwise the best model in PREFERRED_MODELS order is used.
    """

    def __init__(
        self,
        models_dir: Optional[Path] = None,
        selected_model: Optional[str] = None,
        allow_download: bool = False,
        checksums: Optional[Dict[str, str]] = None,
    ):
        self.models_dir = Path(models_dir) if models_dir else None
        self.selected_model = selected_model
        self.allow_download = allow_download
        self.checksums = checksums or {}
        self._verified_paths: Set[Path] = set()

    @classmethod
    def from_config(cls, config: Any) -> "DirectoryModelLocator":
        cfg = config.local_engine
        models_dir = cfg.get("models_dir")
        return cls(
            models_dir=Path(models_dir).expanduser() if models_dir else None,
            selected_model=cfg.get("selected_model"),
            allow_download=bool(cfg.get("allow_download", False)),
            checksums=cfg.get("checksums") or {},
        )

    def _downloaded(self) -> Dict[str, Path]:
        if self.models_dir is None or not self.models_dir.is_dir():
            return {}
        return {p.name: p for p in self.models_dir.iterdir() if p.is_dir()}

    def _verified(self, name: str, path: Path) -> str:
        # Each model is hashed once per locator
        expected = self.checksums.get(name)
        if expected and path not in self._verified_paths:
            verify_checksum(path / "model.bin", expected)
            self._verified_paths.add(path)
        return str(path)

    def get_best_available_engine_path(self) -> Optional[str]:
        downloaded = self._downloaded()

        if self.selected_model and self.selected_model in downloaded:
            return self._verified(self.selected_model, downloaded[self.selected_model])

        for name in PREFERRED_MODELS:
            if name in downloaded:
                return self._verified(name, downloaded[name])

        if self.allow_download and self.selected_model:
            # faster-whisper resolves bare model names from the hub
            return self.selected_model

        return None


class JsonlPersistenceSink:
    """Appends each finished transcription as one JSON line."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def save_transcription(self, text: str, metadata: Dict[str, Any]) -> None:
        record = {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "text": text,
            **metadata,
        }
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
        logger.debug(f"Saved transcription to {self.path}")


class NullPersistenceSink:
    def save_transcription(self, text: str, metadata: Dict[str, Any]) -> None:
        logger.debug(f"Discarding transcription of {len(text)} chars")


def _event_payload(event: Any) -> Dict[str, Any]:
    if is_dataclass(event) and not isinstance(event, type):
        return asdict(event)
    return {"event": event}


class LoggingTelemetrySink:
    """Writes telemetry events to the ``telemetry`` service log."""

    def __init__(self):
        self._logger = get_logger("telemetry")

    def record_metric(self, event: Any) -> None:
        name = getattr(event, "event_name", type(event).__name__)
        self._logger.info(name, extra={"metric": _event_payload(event)})


class InMemoryTelemetrySink:
    """Keeps events in a list (tests, CLI summaries)."""

    def __init__(self):
        self.events: List[Any] = []

    def record_metric(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> List[Any]:
        return [e for e in self.events if isinstance(e, event_type)]

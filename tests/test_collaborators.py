"""Tests for the configuration- and file-backed collaborator implementations."""

import hashlib
import json
import logging

import pytest

from dictation import collaborators
from dictation.collaborators import (
    ConfigSettingsReader,
    DirectoryModelLocator,
    InMemoryTelemetrySink,
    JsonlPersistenceSink,
    LoggingTelemetrySink,
    verify_checksum,
)
from dictation.config import DictationConfig
from dictation.errors import IntegrityError
from dictation.telemetry import NativeHelperCrashed


def _config(**sections) -> DictationConfig:
    cfg = DictationConfig(overrides=sections)
    cfg.config["openai"]["api_key"] = sections.get("openai", {}).get("api_key")
    return cfg


def test_settings_reader_language_auto_detect_is_none() -> None:
    reader = ConfigSettingsReader(_config(dictation={"auto_detect_language": True}))

    assert reader.get_dictation_language() is None


def test_settings_reader_fixed_language() -> None:
    reader = ConfigSettingsReader(
        _config(dictation={"auto_detect_language": False, "language": "de"})
    )

    assert reader.get_dictation_language() == "de"


def test_settings_reader_vocabulary_and_replacements_respect_limit() -> None:
    reader = ConfigSettingsReader(
        _config(
            dictation={
                "vocabulary": ["Amical", "Kubernetes"],
                "replacements": {"he": "she", "gonna": None},
            }
        )
    )

    entries = reader.get_vocabulary(50)
    assert [(e.word, e.is_replacement, e.replacement_word) for e in entries] == [
        ("Amical", False, None),
        ("Kubernetes", False, None),
        ("he", True, "she"),
        ("gonna", True, ""),
    ]
    assert len(reader.get_vocabulary(3)) == 3


def test_settings_reader_openai_and_formatter_config() -> None:
    reader = ConfigSettingsReader(
        _config(
            openai={"api_key": "sk-test", "base_url": "https://proxy.test/v1"},
            formatter={"enabled": True, "model": "gpt-4o", "timeout": 12},
        )
    )

    openai_config = reader.get_openai_config()
    assert openai_config.api_key == "sk-test"
    assert openai_config.base_url == "https://proxy.test/v1"

    formatter_config = reader.get_formatter_config()
    assert formatter_config.enabled is True
    assert formatter_config.model == "gpt-4o"
    assert formatter_config.timeout == 12.0


def test_settings_reader_without_api_key() -> None:
    assert ConfigSettingsReader(_config()).get_openai_config() is None


def _make_model(models_dir, name: str, content: bytes = b"weights") -> None:
    model_dir = models_dir / name
    model_dir.mkdir(parents=True)
    (model_dir / "model.bin").write_bytes(content)


def test_locator_prefers_selected_model(tmp_path) -> None:
    _make_model(tmp_path, "small")
    _make_model(tmp_path, "base")

    locator = DirectoryModelLocator(tmp_path, selected_model="base")

    assert locator.get_best_available_engine_path() == str(tmp_path / "base")


def test_locator_falls_back_to_preferred_order(tmp_path) -> None:
    _make_model(tmp_path, "tiny")
    _make_model(tmp_path, "medium")

    locator = DirectoryModelLocator(tmp_path, selected_model="large-v3-turbo")

    assert locator.get_best_available_engine_path() == str(tmp_path / "medium")


def test_locator_without_models(tmp_path) -> None:
    assert DirectoryModelLocator(tmp_path).get_best_available_engine_path() is None
    assert DirectoryModelLocator(None).get_best_available_engine_path() is None

    downloading = DirectoryModelLocator(tmp_path, selected_model="small", allow_download=True)
    assert downloading.get_best_available_engine_path() == "small"


def test_locator_verifies_checksums(tmp_path) -> None:
    _make_model(tmp_path, "small", b"weights")
    good = hashlib.sha1(b"weights").hexdigest()

    assert DirectoryModelLocator(
        tmp_path, checksums={"small": good}
    ).get_best_available_engine_path() == str(tmp_path / "small")

    with pytest.raises(IntegrityError, match="Checksum mismatch"):
        DirectoryModelLocator(
            tmp_path, checksums={"small": "0" * 40}
        ).get_best_available_engine_path()


def test_locator_hashes_each_model_once(monkeypatch, tmp_path) -> None:
    _make_model(tmp_path, "small", b"weights")
    hashed = []
    real_sha1_file = collaborators.sha1_file

    def counting_sha1_file(path, *args):
        hashed.append(path)
        return real_sha1_file(path, *args)

    monkeypatch.setattr(collaborators, "sha1_file", counting_sha1_file)
    locator = DirectoryModelLocator(
        tmp_path, checksums={"small": hashlib.sha1(b"weights").hexdigest()}
    )

    for _ in range(5):
        assert locator.get_best_available_engine_path() == str(tmp_path / "small")

    assert hashed == [tmp_path / "small" / "model.bin"]


def test_verify_checksum_is_case_insensitive(tmp_path) -> None:
    path = tmp_path / "helper"
    path.write_bytes(b"binary")

    verify_checksum(path, hashlib.sha1(b"binary").hexdigest().upper())


def test_jsonl_persistence_appends_records(tmp_path) -> None:
    path = tmp_path / "history" / "transcriptions.jsonl"
    sink = JsonlPersistenceSink(path)

    sink.save_transcription("first", {"session_id": "a", "language": "en"})
    sink.save_transcription("zweite", {"session_id": "b", "language": "de"})

    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [r["text"] for r in records] == ["first", "zweite"]
    assert records[1]["session_id"] == "b"
    assert "created_at" in records[0]


def _crash_event() -> NativeHelperCrashed:
    return NativeHelperCrashed(
        helper_name="SwiftHelper",
        platform="darwin",
        exit_code=1,
        signal=None,
        restart_attempt=1,
        max_restarts=3,
        will_restart=True,
    )


def test_logging_telemetry_sink_logs_event_payload(caplog) -> None:
    sink = LoggingTelemetrySink()

    with caplog.at_level(logging.INFO, logger="dictation.telemetry"):
        sink.record_metric(_crash_event())

    record = caplog.records[-1]
    assert record.getMessage() == "native_helper_crashed"
    assert record.metric["helper_name"] == "SwiftHelper"
    assert record.service == "telemetry"


def test_in_memory_telemetry_filters_by_type() -> None:
    sink = InMemoryTelemetrySink()
    sink.record_metric(_crash_event())
    sink.record_metric("other")

    assert len(sink.events) == 2
    assert len(sink.of_type(NativeHelperCrashed)) == 1

"""Tests for DictationConfig."""

import pytest

from dictation import config


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DICTATION_OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


def test_defaults_without_config_file() -> None:
    cfg = config.DictationConfig()

    assert cfg.loaded_from is None
    assert cfg.get("vad", "speech_threshold") == 0.1
    assert cfg.get("transcription", "speech_threshold") == 0.2
    assert cfg.get("transcription", "max_silence_ms") == 3000
    assert cfg.get("helper", "timeout_ms") == 5000


def test_yaml_file_is_deep_merged_over_defaults(tmp_path) -> None:
    path = tmp_path / "custom.yaml"
    path.write_text(
        "vad:\n  speech_threshold: 0.3\ndictation:\n  vocabulary: [Amical]\n",
        encoding="utf-8",
    )

    cfg = config.DictationConfig(path)

    assert cfg.loaded_from == path
    assert cfg.vad["speech_threshold"] == 0.3
    assert cfg.vad["redemption_frames"] == 8
    assert cfg.dictation["vocabulary"] == ["Amical"]


def test_user_config_dir_file_is_found(tmp_path) -> None:
    user_dir = config.get_user_config_dir()
    user_dir.mkdir(parents=True)
    (user_dir / "config.yaml").write_text("transcription:\n  engine: cloud\n", encoding="utf-8")

    cfg = config.DictationConfig()

    assert cfg.get("transcription", "engine") == "cloud"


def test_overrides_win_over_file(tmp_path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("logging:\n  level: DEBUG\n", encoding="utf-8")

    cfg = config.DictationConfig(path, overrides={"logging": {"level": "ERROR"}})

    assert cfg.logging["level"] == "ERROR"
    assert cfg.logging["backup_count"] == 5


def test_missing_explicit_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError, match="not found"):
        config.DictationConfig(tmp_path / "nope.yaml")


@pytest.mark.parametrize("content", ["vad: [unclosed\n", "- just\n- a list\n"])
def test_invalid_yaml_raises_runtime_error(tmp_path, content) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text(content, encoding="utf-8")

    with pytest.raises(RuntimeError, match="bad.yaml"):
        config.DictationConfig(path)


def test_api_key_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    assert config.DictationConfig().openai["api_key"] == "sk-env"

    monkeypatch.setenv("DICTATION_OPENAI_API_KEY", "sk-dictation")
    assert config.DictationConfig().openai["api_key"] == "sk-dictation"


def test_get_with_default_and_empty_keys() -> None:
    cfg = config.DictationConfig()

    assert cfg.get("nonexistent", "nested", default="fallback") == "fallback"
    assert cfg.get("local_engine", "models_dir", default="/models") == "/models"
    assert cfg.get("formatter", "enabled") is False
    assert "vad" in cfg.get()


def test_get_rejects_non_string_keys() -> None:
    cfg = config.DictationConfig()

    with pytest.raises(TypeError, match="must be strings"):
        cfg.get("dictation", {})

    with pytest.raises(TypeError, match="must be strings"):
        cfg.get("vad", 1)


def test_get_config_is_cached_until_reload(monkeypatch) -> None:
    monkeypatch.setattr(config, "_config", None)

    first = config.get_config()
    assert config.get_config() is first
    assert config.reload_config() is not first

"""
Configuration management for the dictation pipeline.

Handles loading configuration from YAML files layered over built-in
defaults, and provides typed section access for all pipeline components.

Configuration Priority (highest to lowest):
    1. Explicit path passed to DictationConfig / get_config
    2. User config: ~/.config/Dictation/config.yaml (Linux)
                    or Documents/Dictation/config.yaml (Windows)
    3. Fallback: ./config.yaml (current directory)
    4. Built-in defaults (get_default_config)
"""

import copy
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.yaml"


def get_user_config_dir() -> Path:
    """
    Get the user configuration directory based on platform.

    Returns:
        Path to user config directory:
        - Linux: $XDG_CONFIG_HOME/Dictation/ or ~/.config/Dictation/
        - macOS: ~/Library/Application Support/Dictation/
        - Windows: ~/Documents/Dictation/
    """
    if sys.platform == "win32":
        return Path.home() / "Documents" / "Dictation"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "Dictation"

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / "Dictation"
    return Path.home() / ".config" / "Dictation"


def get_default_config() -> Dict[str, Any]:
    """Get default pipeline configuration."""
    return {
        "audio": {
            "sample_rate": 16000,
            "frame_size": 512,
        },
        "vad": {
            "enabled": True,
            "model_path": None,
            "speech_threshold": 0.1,
            "min_speech_frames": 3,
            "redemption_frames": 8,
            "context_size": 64,
        },
        "transcription": {
            "engine": "local",
            "speech_threshold": 0.2,
            "max_silence_ms": 3000,
            "max_buffer_ms": 30000,
            "ignore_fully_silent_chunks": True,
            "trim_silence": False,
            "preload_model": True,
            "vocabulary_limit": 50,
        },
        "local_engine": {
            "models_dir": None,
            "selected_model": None,
            "allow_download": False,
            "device": "auto",
            "compute_type": "default",
            "beam_size": 5,
            "worker_command": None,
            "checksums": {},
        },
        "dictation": {
            "auto_detect_language": True,
            "language": "en",
            "vocabulary": [],
            "replacements": {},
        },
        "formatter": {
            "enabled": False,
            "model": None,
            "instructions": None,
            "timeout": 30.0,
        },
        "openai": {
            "api_key": None,
            "base_url": "https://api.openai.com/v1",
            "transcription_model": "whisper-1",
            "timeout": 60.0,
        },
        "helper": {
            "enabled": False,
            "command": None,
            "timeout_ms": 5000,
            "max_restarts": 3,
            "restart_delay_ms": 1000,
            "restart_reset_ms": 30000,
            "permission_ttl_seconds": 10.0,
        },
        "storage": {
            "transcriptions_path": None,
        },
        "logging": {
            "level": "INFO",
            "directory": None,
            "max_size_mb": 10,
            "backup_count": 5,
            "structured": False,
            "console_output": True,
        },
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    """Deep merge override into base dict."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


class DictationConfig:
    """
    Pipeline configuration manager.

    Loads the user YAML file (if any) and deep-merges it over the defaults,
    so every key read by the pipeline always has a value.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file. If None, searches in priority order.
            overrides: Values merged last, after the YAML file (used by the CLI
                and tests).
        """
        self.config: Dict[str, Any] = get_default_config()
        self._config_path = Path(config_path) if config_path else None
        self._loaded_from: Optional[Path] = None
        self._load_config()
        if overrides:
            _deep_merge(self.config, copy.deepcopy(overrides))
        self._apply_environment()

    def _find_config_file(self) -> Optional[Path]:
        """Return the first readable config file in priority order."""
        if self._config_path is not None:
            if not self._config_path.is_file():
                raise FileNotFoundError(
                    f"Configuration file not found: {self._config_path}"
                )
            return self._config_path

        candidates = [
            get_user_config_dir() / CONFIG_FILENAME,
            Path.cwd() / CONFIG_FILENAME,
        ]
        for path in candidates:
            if path.exists() and path.is_file():
                try:
                    with path.open("r", encoding="utf-8"):
                        pass
                    return path
                except (PermissionError, OSError):
                    continue
        return None

    def _load_config(self) -> None:
        """Load configuration from file, keeping defaults when none exists."""
        config_file = self._find_config_file()
        if config_file is None:
            logger.debug("No configuration file found, using defaults")
            return

        try:
            with config_file.open("r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(
                f"Could not parse configuration file {config_file}: {e}"
            ) from e

        if not isinstance(loaded, dict):
            raise RuntimeError(
                f"Configuration file {config_file} must contain a mapping, "
                f"got {type(loaded).__name__}"
            )

        _deep_merge(self.config, loaded)
        self._loaded_from = config_file
        logger.info(f"Loaded configuration from: {config_file}")

    def _apply_environment(self) -> None:
        """Fill secrets from the environment when the file leaves them empty."""
        if not self.get("openai", "api_key"):
            api_key = os.environ.get("DICTATION_OPENAI_API_KEY") or os.environ.get(
                "OPENAI_API_KEY"
            )
            if api_key:
                self.config["openai"]["api_key"] = api_key

    @property
    def loaded_from(self) -> Optional[Path]:
        """Return the path of the loaded configuration file."""
        return self._loaded_from

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get a configuration value by nested key path.

        Supports nested key access with multiple arguments:
            config.get("vad", "speech_threshold")        # config["vad"]["speech_threshold"]
            config.get("logging", "level", default="INFO")
            config.get("dictation", default={})

        Args:
            *keys: One or more string configuration keys for nested access
            default: Default value to return if any key in the path is not found

        Returns:
            Configuration value at the specified path, or default if not found

        Raises:
            TypeError: If any key argument is not a string
        """
        if not keys:
            return self.config

        for i, key in enumerate(keys):
            if not isinstance(key, str):
                raise TypeError(
                    f"All configuration keys must be strings, got {type(key).__name__} "
                    f"for keys[{i}]: {repr(key)}. "
                    f"If you want to provide a default value, use the 'default=' keyword argument: "
                    f"cfg.get({', '.join(repr(k) for k in keys[:i] if isinstance(k, str))}, default={repr(key)})"
                )

        value: Any = self.config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    @property
    def audio(self) -> Dict[str, Any]:
        """Get audio format configuration."""
        return self.config.get("audio", {})

    @property
    def vad(self) -> Dict[str, Any]:
        """Get voice activity detector configuration."""
        return self.config.get("vad", {})

    @property
    def transcription(self) -> Dict[str, Any]:
        """Get transcription provider configuration."""
        return self.config.get("transcription", {})

    @property
    def local_engine(self) -> Dict[str, Any]:
        """Get local Whisper engine configuration."""
        return self.config.get("local_engine", {})

    @property
    def dictation(self) -> Dict[str, Any]:
        """Get dictation preferences (language, vocabulary)."""
        return self.config.get("dictation", {})

    @property
    def formatter(self) -> Dict[str, Any]:
        """Get LLM formatter configuration."""
        return self.config.get("formatter", {})

    @property
    def openai(self) -> Dict[str, Any]:
        """Get OpenAI API configuration."""
        return self.config.get("openai", {})

    @property
    def helper(self) -> Dict[str, Any]:
        """Get native helper bridge configuration."""
        return self.config.get("helper", {})

    @property
    def storage(self) -> Dict[str, Any]:
        """Get persistence configuration."""
        return self.config.get("storage", {})

    @property
    def logging(self) -> Dict[str, Any]:
        """Get logging configuration."""
        return self.config.get("logging", {})


# Global config instance
_config: Optional[DictationConfig] = None


def get_config(config_path: Optional[Path] = None) -> DictationConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = DictationConfig(config_path)
    return _config


def reload_config(config_path: Optional[Path] = None) -> DictationConfig:
    """Discard the cached configuration and load it again."""
    global _config
    _config = DictationConfig(config_path)
    return _config

"""
Dependency wiring for the dictation pipeline.

build_pipeline() turns a DictationConfig into a ready-to-use orchestrator
with its provider, VAD, helper bridge and sinks. Nothing here is global;
callers own the returned Pipeline and must close() it.
"""

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dictation.collaborators import (
    ConfigSettingsReader,
    DirectoryModelLocator,
    JsonlPersistenceSink,
    LoggingTelemetrySink,
    NullPersistenceSink,
    PersistenceSink,
    TelemetrySink,
)
from dictation.config import DictationConfig, get_config
from dictation.core.orchestrator import DEFAULT_VOCABULARY_LIMIT, SessionOrchestrator
from dictation.core.providers.base import BufferingTranscriptionProvider
from dictation.core.providers.cloud import create_cloud_provider
from dictation.core.providers.local import create_local_provider
from dictation.core.vad import VoiceActivityDetector, create_vad
from dictation.helper.bridge import NativeHelperBridge
from dictation.logging import get_logger

logger = get_logger("transcription")

ENGINES = ("local", "cloud")


@dataclass
class Pipeline:
    """Everything build_pipeline() wired together."""

    config: DictationConfig
    orchestrator: SessionOrchestrator
    provider: BufferingTranscriptionProvider
    telemetry: TelemetrySink
    persistence: PersistenceSink
    vad: Optional[VoiceActivityDetector] = None
    helper: Optional[NativeHelperBridge] = None

    async def start(self) -> None:
        """Start the helper (if configured) and preload the speech model."""
        if self.helper is not None:
            await self.helper.start()
        await self.orchestrator.preload()

    async def close(self) -> None:
        await self.orchestrator.dispose()
        if self.helper is not None:
            await self.helper.stop()


def create_provider(
    config: DictationConfig,
    settings_reader: ConfigSettingsReader,
    engine: Optional[str] = None,
) -> BufferingTranscriptionProvider:
    engine = engine or config.get("transcription", "engine", default="local")
    if engine == "local":
        return create_local_provider(config, DirectoryModelLocator.from_config(config))
    if engine == "cloud":
        return create_cloud_provider(config, settings_reader)
    raise ValueError(f"Unknown transcription engine: {engine!r} (expected one of {ENGINES})")


def create_helper_bridge(
    config: DictationConfig, telemetry: Optional[TelemetrySink] = None
) -> Optional[NativeHelperBridge]:
    """Build the helper bridge, or None when it is disabled or has no command."""
    cfg = config.helper
    if not cfg.get("enabled", False):
        return None

    command = cfg.get("command")
    if not command:
        logger.warning("Native helper enabled but no command configured")
        return None
    if isinstance(command, str):
        command = shlex.split(command)

    return NativeHelperBridge(
        command,
        telemetry,
        timeout_ms=int(cfg.get("timeout_ms", 5000)),
        max_restarts=int(cfg.get("max_restarts", 3)),
        restart_delay_ms=int(cfg.get("restart_delay_ms", 1000)),
        restart_reset_ms=int(cfg.get("restart_reset_ms", 30000)),
        permission_ttl_seconds=float(cfg.get("permission_ttl_seconds", 10.0)),
    )


def create_persistence(config: DictationConfig) -> PersistenceSink:
    path = config.get("storage", "transcriptions_path")
    if path:
        return JsonlPersistenceSink(Path(path).expanduser())
    return NullPersistenceSink()


def build_pipeline(
    config: Optional[DictationConfig] = None,
    *,
    engine: Optional[str] = None,
    vad_enabled: Optional[bool] = None,
    telemetry: Optional[TelemetrySink] = None,
    persistence: Optional[PersistenceSink] = None,
) -> Pipeline:
    """
    Wire the pipeline from configuration.

    Args:
        config: Configuration; the global one from get_config() when None
        engine: "local" or "cloud", overriding transcription.engine
        vad_enabled: Overrides vad.enabled
        telemetry: Telemetry sink; logs events when None
        persistence: Persistence sink; derived from storage config when None

    Returns:
        Pipeline with a constructed (not yet started) orchestrator
    """
    config = config or get_config()
    settings_reader = ConfigSettingsReader(config)
    telemetry = telemetry or LoggingTelemetrySink()
    persistence = persistence or create_persistence(config)

    provider = create_provider(config, settings_reader, engine)

    if vad_enabled is None:
        vad_enabled = bool(config.get("vad", "enabled", default=True))
    vad = create_vad(config) if vad_enabled else None

    helper = create_helper_bridge(config, telemetry)

    orchestrator = SessionOrchestrator(
        provider,
        settings_reader,
        persistence,
        telemetry,
        vad=vad,
        helper=helper,
        vocabulary_limit=int(
            config.get(
                "transcription", "vocabulary_limit", default=DEFAULT_VOCABULARY_LIMIT
            )
        ),
        preload_model=bool(config.get("transcription", "preload_model", default=True)),
    )

    logger.info(
        f"Pipeline ready (engine: {provider.name}, vad: {vad is not None}, "
        f"helper: {helper is not None})"
    )
    return Pipeline(
        config=config,
        orchestrator=orchestrator,
        provider=provider,
        telemetry=telemetry,
        persistence=persistence,
        vad=vad,
        helper=helper,
    )

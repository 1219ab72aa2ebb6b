"""
Command-line entry point.

    python -m dictation transcribe recording.wav --engine cloud --language de

Streams a 16 kHz audio file through the pipeline frame by frame, as a live
microphone would, and prints the finalized text.
"""

import argparse
import asyncio
import sys
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

from dictation.config import DictationConfig
from dictation.core.audio import FRAME_SIZE, SAMPLE_RATE, iter_frames, load_audio_file
from dictation.errors import DictationError
from dictation.logging import get_logger, setup_logging
from dictation.pipeline import ENGINES, Pipeline, build_pipeline

logger = get_logger("transcription")


def _build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if args.log_level:
        overrides["logging"] = {"level": args.log_level}
    if args.language:
        if args.language == "auto":
            overrides["dictation"] = {"auto_detect_language": True}
        else:
            overrides["dictation"] = {
                "auto_detect_language": False,
                "language": args.language,
            }
    return overrides


async def transcribe_file(
    pipeline: Pipeline, path: Path, session_id: Optional[str] = None
) -> str:
    """
    Stream an audio file through the orchestrator and finalize it.

    Raises:
        ValueError: If the file is not sampled at 16 kHz
    """
    audio, sample_rate = load_audio_file(str(path))
    if sample_rate != SAMPLE_RATE:
        raise ValueError(
            f"{path} is sampled at {sample_rate} Hz; resample to {SAMPLE_RATE} Hz first"
        )

    session_id = session_id or str(uuid.uuid4())
    orchestrator = pipeline.orchestrator
    started = time.monotonic()

    try:
        for frame in iter_frames(audio, FRAME_SIZE):
            await orchestrator.process_chunk(
                session_id, frame, recording_started_at=started
            )
    except BaseException:
        await orchestrator.cancel_session(session_id)
        raise

    return await orchestrator.finalize_session(
        session_id,
        audio_file_path=str(path),
        recording_started_at=started,
        recording_stopped_at=time.monotonic(),
    )


async def _run_transcribe(args: argparse.Namespace, config: DictationConfig) -> int:
    pipeline = build_pipeline(config, engine=args.engine, vad_enabled=not args.no_vad)
    try:
        await pipeline.start()
        text = await transcribe_file(pipeline, Path(args.file))
    finally:
        await pipeline.close()

    print(text)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="dictation", description="Streaming dictation pipeline"
    )
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    transcribe = subparsers.add_parser(
        "transcribe", help="Transcribe a 16 kHz audio file as a dictation session"
    )
    transcribe.add_argument("file", help="Audio file (WAV, FLAC, ...)")
    transcribe.add_argument("--engine", choices=ENGINES, help="Speech engine")
    transcribe.add_argument(
        "--language", help='Language code, or "auto" to detect it'
    )
    transcribe.add_argument(
        "--no-vad", action="store_true", help="Skip voice activity detection"
    )
    args = parser.parse_args(argv)

    try:
        config = DictationConfig(args.config, overrides=_build_overrides(args))
    except (FileNotFoundError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    setup_logging(config.logging)

    if not Path(args.file).is_file():
        print(f"Error: file not found: {args.file}", file=sys.stderr)
        return 2

    try:
        return asyncio.run(_run_transcribe(args, config))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except DictationError as e:
        logger.error(f"Transcription failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

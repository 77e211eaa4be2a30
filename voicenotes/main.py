"""Main entry point for the voicenotes command line tool.

Usage::

    voicenotes run recording.webm --transcriber whispercpp --summarizer ollama
    voicenotes health
    voicenotes health openai-whisper
    voicenotes providers
    voicenotes cleanup
    voicenotes doctor
"""

import argparse
import asyncio
import json
import logging
import mimetypes
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from voicenotes.audio.conversion import AudioConversionService
from voicenotes.config.settings import Settings, load_settings
from voicenotes.core.diagnostics import run_full_diagnostic
from voicenotes.core.errors import ProviderError
from voicenotes.core.registry import ProviderRegistry
from voicenotes.core.schemas import (
    AudioBuffer,
    PipelineConfig,
    ProviderKind,
    SummarizationOptions,
    SummaryStyle,
    TranscriptionOptions,
)
from voicenotes.pipeline.orchestrator import PipelineOrchestrator
from voicenotes.providers.factory import build_registry
from voicenotes.telemetry.session import SessionTelemetry
from voicenotes.telemetry.sinks import build_sinks

logger = logging.getLogger(__name__)


def setup_logging(settings: Settings):
    """Configure logging for the application."""
    log_file = Path(settings.log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        str(log_file),
        maxBytes=settings.log_rotation_max_bytes,
        backupCount=settings.log_rotation_backup_count
    )

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            file_handler,
            logging.StreamHandler(sys.stderr)
        ],
        force=True
    )


def build_orchestrator(settings: Settings) -> PipelineOrchestrator:
    """Wire conversion, telemetry, registry and orchestrator from settings."""
    telemetry = SessionTelemetry(sinks=build_sinks(settings))
    conversion = AudioConversionService(
        temp_dir=settings.audio_temp_dir,
        ffmpeg_path=settings.ffmpeg_path,
        telemetry=telemetry,
    )
    registry = build_registry(settings, conversion, ProviderRegistry())
    return PipelineOrchestrator(settings, registry, conversion, telemetry)


def _print_error(error: ProviderError):
    print(f"Error [{error.code.value}]: {error}", file=sys.stderr)
    if error.hint:
        print(f"Hint: {error.hint}", file=sys.stderr)
    for nested in error.errors:
        print(f"  - {nested.provider_id}: [{nested.code.value}] {nested.message}", file=sys.stderr)


# Subcommand handlers

async def _handle_run(args: argparse.Namespace, settings: Settings) -> int:
    audio_path = Path(args.audio)
    if not audio_path.is_file():
        print(f"Error: audio file not found: {audio_path}", file=sys.stderr)
        return 1

    mime_type = args.mime or mimetypes.guess_type(audio_path.name)[0] or "application/octet-stream"
    buffer = AudioBuffer(data=audio_path.read_bytes(), mime_type=mime_type)

    config = PipelineConfig(
        audio=buffer,
        transcriber_id=args.transcriber or settings.transcriber_provider,
        summarizer_id=args.summarizer or settings.summarizer_provider,
        recording_provider=settings.recording_provider,
        transcription_options=TranscriptionOptions(language=args.language),
        summarization_options=SummarizationOptions(style=SummaryStyle(args.style) if args.style else None),
        probe_health=settings.probe_health and not args.no_probe,
        generate_topic=settings.generate_topic and not args.no_topic,
        on_provider_change=lambda event: print(
            f"Switched {event.domain} provider: {event.old_provider} -> {event.new_provider}", file=sys.stderr
        ),
    )

    orchestrator = build_orchestrator(settings)
    try:
        result = await orchestrator.run_pipeline(config)
    except ProviderError as e:
        _print_error(e)
        return 1
    finally:
        await orchestrator.close()

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print(f"# {result.topic or 'Discussion'}")
        print()
        print(result.summary.summary)
        print()
        print("## Transcript")
        print()
        print(result.transcript.text)
        print()
        print(f"(transcribed by {result.transcription_provider}, summarized by {result.summarization_provider})")
    return 0


async def _handle_health(args: argparse.Namespace, settings: Settings) -> int:
    orchestrator = build_orchestrator(settings)
    try:
        if args.provider_id:
            provider_ids = [args.provider_id]
        else:
            provider_ids = [pid for kind in ProviderKind for pid in orchestrator.registry.list_ids(kind)]

        if not provider_ids:
            print("No providers configured.")
            return 1

        exit_code = 0
        for provider_id in provider_ids:
            try:
                health = await orchestrator.check_health(provider_id)
            except ProviderError as e:
                _print_error(e)
                exit_code = 1
                continue
            status = "OK  " if health.ok else "FAIL"
            version = f" v{health.version}" if health.version else ""
            print(f"{status} {provider_id}{version}: {health.details or ''}")
            if not health.ok:
                exit_code = 1
        return exit_code
    finally:
        await orchestrator.close()


def _handle_providers(settings: Settings) -> int:
    registry = build_registry(settings, AudioConversionService(temp_dir=settings.audio_temp_dir))
    for kind in ProviderKind:
        print(f"{kind.value}s:")
        providers = registry.list_all(kind)
        if not providers:
            print("  (none configured)")
        for provider in providers:
            markers = []
            if provider.id in (settings.transcriber_provider, settings.summarizer_provider):
                markers.append("selected")
            if provider.id in (settings.default_cloud_transcriber, settings.default_cloud_summarizer):
                markers.append("default cloud")
            suffix = f" [{', '.join(markers)}]" if markers else ""
            print(f"  {provider.id:<16} {provider.provider_class.value:<6} {provider.get_provider_name()}{suffix}")
    return 0


def _handle_cleanup(settings: Settings) -> int:
    conversion = AudioConversionService(temp_dir=settings.audio_temp_dir, ffmpeg_path=settings.ffmpeg_path)
    deleted = conversion.cleanup_temp_files()
    print(f"Deleted {deleted} temporary audio file(s) from {conversion.temp_dir}")
    return 0


def _handle_doctor(settings: Settings) -> int:
    report = run_full_diagnostic(settings)
    print(f"Python: {report.python_path} (virtualenv: {'yes' if report.is_venv else 'no'})")
    if not report.issues:
        print("No issues found.")
        return 0
    for issue in report.issues:
        print(issue)
    return 1 if report.has_errors() else 0


# Argument parser

def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the voicenotes CLI."""
    parser = argparse.ArgumentParser(
        prog="voicenotes",
        description="Transcribe and summarize voice recordings with cloud or local providers.",
    )
    parser.add_argument("--env-file", type=Path, default=None, help="Path to a .env file")
    subparsers = parser.add_subparsers(dest="command", help="voicenotes commands")

    run_parser = subparsers.add_parser("run", help="Transcribe and summarize an audio file")
    run_parser.add_argument("audio", help="Audio file to process")
    run_parser.add_argument("--transcriber", help="Transcriber id (default: TRANSCRIBER_PROVIDER)")
    run_parser.add_argument("--summarizer", help="Summarizer id (default: SUMMARIZER_PROVIDER)")
    run_parser.add_argument("--mime", help="MIME type of the audio (guessed from the extension by default)")
    run_parser.add_argument("--language", help="Spoken language (ISO 639-1)")
    run_parser.add_argument("--style", choices=[s.value for s in SummaryStyle], help="Summary style")
    run_parser.add_argument("--no-topic", action="store_true", help="Skip topic generation")
    run_parser.add_argument("--no-probe", action="store_true", help="Skip provider health probes")
    run_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    health_parser = subparsers.add_parser("health", help="Probe one or all providers")
    health_parser.add_argument("provider_id", nargs="?", help="Provider id (all by default)")

    subparsers.add_parser("providers", help="List configured providers")
    subparsers.add_parser("cleanup", help="Delete leftover temporary audio files")
    subparsers.add_parser("doctor", help="Check environment and configuration")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = load_settings(env_path=args.env_file)
    setup_logging(settings)
    logger.info(f"voicenotes {args.command} starting")

    if args.command == "run":
        exit_code = asyncio.run(_handle_run(args, settings))
    elif args.command == "health":
        exit_code = asyncio.run(_handle_health(args, settings))
    elif args.command == "providers":
        exit_code = _handle_providers(settings)
    elif args.command == "cleanup":
        exit_code = _handle_cleanup(settings)
    elif args.command == "doctor":
        exit_code = _handle_doctor(settings)
    else:
        parser.print_help()
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()

"""Application settings and configuration management."""

import os
import shlex
import logging
from pathlib import Path
from typing import List, Mapping, Optional
from pydantic import BaseModel, ConfigDict
from dotenv import load_dotenv
from voicenotes.utils.paths import get_base_path, resolve_path

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    # Provider selection
    transcriber_provider: str = "openai-whisper"
    summarizer_provider: str = "openai-gpt4o"
    recording_provider: str = "recorder"
    default_cloud_transcriber: str = "openai-whisper"
    default_cloud_summarizer: str = "openai-gpt4o"

    # OpenAI
    openai_api_key: Optional[str] = None
    openai_transcription_model: str = "whisper-1"
    openai_summary_model: str = "gpt-4o"
    openai_base_url: Optional[str] = None

    # Summaries
    summary_prompt: Optional[str] = None
    summary_max_tokens: int = 2000
    topic_max_tokens: int = 10
    generate_topic: bool = True

    # whisper.cpp CLI (Local)
    whispercpp_binary_path: Optional[str] = None
    whispercpp_model_path: Optional[str] = None
    whispercpp_extra_args: List[str] = []

    # faster-whisper (Local, separate interpreter)
    fasterwhisper_python_path: Optional[str] = None
    fasterwhisper_model: str = "base"
    fasterwhisper_device: str = "auto"
    fasterwhisper_compute_type: str = "default"

    # whisper.cpp server (Local)
    whisper_server_host: Optional[str] = None
    whisper_server_port: int = 8080

    # Ollama (Local)
    ollama_host: Optional[str] = None
    ollama_port: int = 11434
    ollama_model: str = "llama3.1"

    # Provider Resilience
    provider_timeout_seconds: float = 120.0
    local_timeout_seconds: float = 600.0
    provider_max_retries: int = 2
    retry_initial_wait: float = 1.0
    retry_max_wait: float = 10.0
    probe_health: bool = True

    # Audio Configuration
    audio_temp_dir: Optional[str] = None
    ffmpeg_path: str = "ffmpeg"
    audio_sample_rate: int = 16000
    audio_channels: int = 1

    # Telemetry
    telemetry_enabled: bool = False
    telemetry_dsn: Optional[str] = None
    telemetry_endpoint: Optional[str] = None

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/voicenotes.log"
    log_rotation_max_bytes: int = 10485760
    log_rotation_backup_count: int = 5


_BOOL_KEYS = ["generate_topic", "probe_health", "telemetry_enabled"]

_INT_KEYS = [
    "summary_max_tokens", "topic_max_tokens", "whisper_server_port",
    "ollama_port", "provider_max_retries", "audio_sample_rate",
    "audio_channels", "log_rotation_max_bytes", "log_rotation_backup_count"
]

_FLOAT_KEYS = [
    "provider_timeout_seconds", "local_timeout_seconds",
    "retry_initial_wait", "retry_max_wait"
]

_ARGS_KEYS = ["whispercpp_extra_args"]

_STR_KEYS = [
    "transcriber_provider", "summarizer_provider", "recording_provider",
    "default_cloud_transcriber", "default_cloud_summarizer",
    "openai_api_key", "openai_transcription_model", "openai_summary_model",
    "openai_base_url", "summary_prompt", "whispercpp_binary_path",
    "whispercpp_model_path", "fasterwhisper_python_path", "fasterwhisper_model",
    "fasterwhisper_device", "fasterwhisper_compute_type", "whisper_server_host",
    "ollama_host", "ollama_model", "audio_temp_dir", "ffmpeg_path",
    "telemetry_dsn", "telemetry_endpoint", "log_level", "log_file"
]

_PATH_KEYS = ["whispercpp_model_path", "audio_temp_dir"]

# Bare executable names are left for a PATH lookup
_EXECUTABLE_KEYS = ["whispercpp_binary_path", "fasterwhisper_python_path", "ffmpeg_path"]


def parse_env(env_vars: Mapping[str, str]) -> dict:
    """
    Turn raw environment variables into Settings keyword arguments.

    Unknown keys are ignored. Numbers that do not parse keep their default.

    Args:
        env_vars: Environment mapping (names are matched case-insensitively)

    Returns:
        Dict of parsed settings values
    """
    settings_dict = {}

    for key, value in env_vars.items():
        key_lower = key.lower()

        if key_lower in _BOOL_KEYS:
            settings_dict[key_lower] = value.strip().lower() in ("true", "1", "yes")
        elif key_lower in _INT_KEYS:
            try:
                settings_dict[key_lower] = int(value)
            except ValueError:
                logger.warning(f"Ignoring non-integer value for {key_lower}: {value!r}")
        elif key_lower in _FLOAT_KEYS:
            try:
                settings_dict[key_lower] = float(value)
            except ValueError:
                logger.warning(f"Ignoring non-numeric value for {key_lower}: {value!r}")
        elif key_lower in _ARGS_KEYS:
            settings_dict[key_lower] = shlex.split(value)
        elif key_lower in _STR_KEYS:
            # Empty strings mean "unset"
            if value.strip():
                settings_dict[key_lower] = value.strip()

    return settings_dict


def load_settings(env_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Load settings from .env file and the environment.

    Args:
        env_path: Explicit .env file (defaults to ``<base path>/.env``)
        environ: Environment mapping to read instead of ``os.environ``

    Returns:
        Settings instance
    """
    base_path = get_base_path()
    env_path = env_path or base_path / ".env"

    if env_path.exists():
        load_dotenv(env_path)
        logger.info(f"Loaded .env from: {env_path}")
    else:
        logger.info(f".env file not found at: {env_path}, using defaults and environment variables")

    env_vars = os.environ if environ is None else environ
    settings = Settings(**parse_env(env_vars))

    # Make paths relative to base path (for portable executables)
    for key in _PATH_KEYS:
        value = getattr(settings, key)
        if value:
            setattr(settings, key, resolve_path(value, base_path))
    for key in _EXECUTABLE_KEYS:
        value = getattr(settings, key)
        if value and (os.sep in value or "/" in value):
            setattr(settings, key, resolve_path(value, base_path))

    if settings.whispercpp_model_path and not Path(settings.whispercpp_model_path).exists():
        logger.warning(f"whisper.cpp model not found at: {settings.whispercpp_model_path}")

    # Update log file path to be relative to base path
    if settings.log_file and not Path(settings.log_file).is_absolute():
        settings.log_file = str(base_path / "logs" / Path(settings.log_file).name)

    return settings

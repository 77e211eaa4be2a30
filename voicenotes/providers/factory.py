"""Create and register the providers enabled by the settings."""

from typing import Callable, Dict, Optional
import logging

from voicenotes.audio.conversion import AudioConversionService
from voicenotes.config.settings import Settings
from voicenotes.core.registry import ProviderRegistry
from voicenotes.providers.base import BaseProvider
from voicenotes.providers.faster_whisper import FasterWhisperTranscriber
from voicenotes.providers.ollama_summarizer import OllamaSummarizer
from voicenotes.providers.openai_summarizer import OpenAISummarizer
from voicenotes.providers.openai_transcriber import OpenAITranscriber
from voicenotes.providers.whisper_server import WhisperServerTranscriber
from voicenotes.providers.whispercpp import WhisperCppTranscriber

logger = logging.getLogger(__name__)


def _create_openai_transcriber(settings: Settings, conversion: AudioConversionService) -> Optional[BaseProvider]:
    if not settings.openai_api_key:
        logger.warning("OpenAI API key not configured, skipping openai-whisper")
        return None
    return OpenAITranscriber(
        api_key=settings.openai_api_key,
        model=settings.openai_transcription_model,
        base_url=settings.openai_base_url,
        converter=conversion,
    )


def _create_openai_summarizer(settings: Settings, conversion: AudioConversionService) -> Optional[BaseProvider]:
    if not settings.openai_api_key:
        logger.warning("OpenAI API key not configured, skipping openai-gpt4o")
        return None
    return OpenAISummarizer(
        api_key=settings.openai_api_key,
        model=settings.openai_summary_model,
        default_prompt=settings.summary_prompt,
        max_tokens=settings.summary_max_tokens,
        base_url=settings.openai_base_url,
    )


def _create_whispercpp(settings: Settings, conversion: AudioConversionService) -> Optional[BaseProvider]:
    if not settings.whispercpp_binary_path or not settings.whispercpp_model_path:
        logger.info("whisper.cpp not configured (binary or model path missing), skipping")
        return None
    return WhisperCppTranscriber(
        binary_path=settings.whispercpp_binary_path,
        model_path=settings.whispercpp_model_path,
        extra_args=settings.whispercpp_extra_args,
        timeout_seconds=settings.local_timeout_seconds,
        converter=conversion,
    )


def _create_fasterwhisper(settings: Settings, conversion: AudioConversionService) -> Optional[BaseProvider]:
    if not settings.fasterwhisper_python_path:
        logger.info("faster-whisper not configured (python path missing), skipping")
        return None
    return FasterWhisperTranscriber(
        python_path=settings.fasterwhisper_python_path,
        model_name=settings.fasterwhisper_model,
        device=settings.fasterwhisper_device,
        compute_type=settings.fasterwhisper_compute_type,
        timeout_seconds=settings.local_timeout_seconds,
        converter=conversion,
    )


def _create_whisper_server(settings: Settings, conversion: AudioConversionService) -> Optional[BaseProvider]:
    if not settings.whisper_server_host:
        logger.info("whisper.cpp server not configured (host missing), skipping")
        return None
    return WhisperServerTranscriber(
        host=settings.whisper_server_host,
        port=settings.whisper_server_port,
        timeout_seconds=settings.local_timeout_seconds,
        converter=conversion,
    )


def _create_ollama(settings: Settings, conversion: AudioConversionService) -> Optional[BaseProvider]:
    if not settings.ollama_host:
        logger.info("Ollama not configured (host missing), skipping")
        return None
    return OllamaSummarizer(
        host=settings.ollama_host,
        port=settings.ollama_port,
        model=settings.ollama_model,
        default_prompt=settings.summary_prompt,
        max_tokens=settings.summary_max_tokens,
        timeout_seconds=settings.local_timeout_seconds,
    )


PROVIDER_FACTORIES: Dict[str, Callable[[Settings, AudioConversionService], Optional[BaseProvider]]] = {
    "openai-whisper": _create_openai_transcriber,
    "openai-gpt4o": _create_openai_summarizer,
    "whispercpp": _create_whispercpp,
    "fasterwhisper": _create_fasterwhisper,
    "whisper-server": _create_whisper_server,
    "ollama": _create_ollama,
}


def build_registry(
    settings: Settings,
    conversion: AudioConversionService,
    registry: Optional[ProviderRegistry] = None
) -> ProviderRegistry:
    """
    Create every configured provider and register it.

    Providers whose configuration is absent are skipped with a log message.

    Args:
        settings: Application settings
        conversion: Conversion service handed to transcribers
        registry: Registry to fill (a new one by default)

    Returns:
        The filled registry
    """
    registry = registry or ProviderRegistry()

    for create in PROVIDER_FACTORIES.values():
        provider = create(settings, conversion)
        if provider is None:
            continue
        registry.register(provider)

    counts = registry.count()
    if not any(counts.values()):
        logger.warning("Provider registry is empty. Configure at least one provider in .env")
    for kind, count in counts.items():
        logger.info(f"Registered {count} {kind.value}(s): {registry.list_ids(kind)}")
    return registry

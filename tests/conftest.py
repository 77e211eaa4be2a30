"""Shared pytest fixtures for the voicenotes test suite."""

import io
import wave
from pathlib import Path
from typing import List, Optional

import pytest

from voicenotes.audio.conversion import AudioConversionService
from voicenotes.config.settings import Settings
from voicenotes.core.errors import ProviderError
from voicenotes.core.event_bus import EventBus
from voicenotes.core.registry import ProviderRegistry
from voicenotes.core.retry_policy import RetryPolicy
from voicenotes.core.schemas import (
    ProviderClass,
    ProviderHealth,
    SummarizationOptions,
    SummarizationResult,
    TranscriptionOptions,
    TranscriptionResult,
)
from voicenotes.pipeline.orchestrator import PipelineOrchestrator
from voicenotes.pipeline.presets import TOPIC_PROMPT
from voicenotes.providers.base import Summarizer, Transcriber
from voicenotes.telemetry.session import SessionTelemetry
from voicenotes.telemetry.sinks import MemorySink


def make_wav_bytes(frames: int = 1600, sample_rate: int = 16000, channels: int = 1) -> bytes:
    """Silent 16-bit WAV."""
    out = io.BytesIO()
    with wave.open(out, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(2)
        wf.setframerate(sample_rate)
        wf.writeframes(b"\x00\x00" * frames * channels)
    return out.getvalue()


class FakeTranscriber(Transcriber):
    """Scriptable transcriber: returns ``text`` or raises the queued errors in order."""

    def __init__(
        self,
        provider_id: str = "mock-ok",
        provider_class: ProviderClass = ProviderClass.CLOUD,
        text: str = "hello world",
        errors: Optional[List[Exception]] = None,
        health: Optional[ProviderHealth] = None,
        converter=None
    ):
        super().__init__(converter=converter)
        self.id = provider_id
        self.name = provider_id
        self.provider_class = provider_class
        self.text = text
        self.errors = list(errors or [])
        self.health = health or ProviderHealth(ok=True)
        self.calls: List[object] = []
        self.check_calls = 0

    async def check(self) -> ProviderHealth:
        self.check_calls += 1
        return self.health

    async def transcribe(self, audio_input, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        self.calls.append(audio_input)
        if self.errors:
            raise self.errors.pop(0)
        return TranscriptionResult(text=self.text, lang="en")


class FakeSummarizer(Summarizer):
    """Scriptable summarizer: answers topic prompts with ``topic`` and others with ``summary``."""

    def __init__(
        self,
        provider_id: str = "mock-sum",
        provider_class: ProviderClass = ProviderClass.CLOUD,
        summary: str = "A summary.",
        topic: str = "\"Team Meeting\"",
        errors: Optional[List[Exception]] = None,
        health: Optional[ProviderHealth] = None
    ):
        self.id = provider_id
        self.name = provider_id
        self.provider_class = provider_class
        self.summary = summary
        self.topic = topic
        self.errors = list(errors or [])
        self.health = health or ProviderHealth(ok=True)
        self.calls: List[tuple] = []

    async def check(self) -> ProviderHealth:
        return self.health

    async def summarize(self, text: str, options: Optional[SummarizationOptions] = None) -> SummarizationResult:
        self.calls.append((text, options))
        if self.errors:
            raise self.errors.pop(0)
        if options is not None and options.custom_prompt == TOPIC_PROMPT:
            return SummarizationResult(summary=self.topic, tokens=3)
        return SummarizationResult(summary=self.summary, tokens=42)


class FakeFfmpeg:
    """Stands in for the ffmpeg runner: writes a WAV to the output path and records commands."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.commands: List[List[str]] = []
        self.inputs: List[Optional[bytes]] = []

    async def __call__(self, cmd: List[str], stdin_data: Optional[bytes] = None) -> None:
        self.commands.append(cmd)
        self.inputs.append(stdin_data)
        if self.fail:
            Path(cmd[-1]).write_bytes(b"partial")
            raise RuntimeError("ffmpeg exited with 1: Invalid data found when processing input")
        Path(cmd[-1]).write_bytes(make_wav_bytes())


@pytest.fixture
def settings() -> Settings:
    return Settings(
        transcriber_provider="mock-ok",
        summarizer_provider="mock-sum",
        default_cloud_transcriber="cloud-stt",
        default_cloud_summarizer="cloud-sum",
        provider_timeout_seconds=5.0,
        local_timeout_seconds=5.0,
        provider_max_retries=0,
        retry_initial_wait=0.0,
        retry_max_wait=0.0,
    )


@pytest.fixture
def ffmpeg() -> FakeFfmpeg:
    return FakeFfmpeg()


@pytest.fixture
def memory_sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def telemetry(memory_sink) -> SessionTelemetry:
    return SessionTelemetry(sinks=[memory_sink])


@pytest.fixture
def conversion(tmp_path, ffmpeg, telemetry) -> AudioConversionService:
    return AudioConversionService(temp_dir=str(tmp_path), runner=ffmpeg, telemetry=telemetry)


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def orchestrator(settings, registry, conversion, telemetry, bus) -> PipelineOrchestrator:
    return PipelineOrchestrator(
        settings,
        registry,
        conversion,
        telemetry,
        bus=bus,
        retry_policy=RetryPolicy(max_retries=0, initial_wait=0.0, max_wait=0.0, jitter=False),
    )


@pytest.fixture
def timeout_error() -> ProviderError:
    return ProviderError.connection_timeout("mock-ok", 5.0, "transcription")

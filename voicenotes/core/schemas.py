"""Core data models and schemas for the provider orchestration core."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from voicenotes.core.formats import container_for_mime


class ProviderClass(str, Enum):
    """Where a provider runs."""
    CLOUD = "cloud"
    LOCAL = "local"


class ProviderKind(str, Enum):
    """Capability implemented by a provider."""
    TRANSCRIBER = "transcriber"
    SUMMARIZER = "summarizer"


class ProviderHealth(BaseModel):
    """Result of a provider liveness probe."""
    ok: bool
    details: Optional[str] = None
    version: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list)


class AudioBuffer(BaseModel):
    """In-memory captured audio with its declared MIME type."""
    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "application/octet-stream"
    sample_rate: Optional[int] = Field(None, description="Only meaningful for raw PCM")
    channels: Optional[int] = Field(None, description="Only meaningful for raw PCM")

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def container(self) -> Optional[str]:
        return container_for_mime(self.mime_type)


AudioInput = Union[AudioBuffer, Path, str]


class Segment(BaseModel):
    """Timed transcript segment."""
    model_config = ConfigDict(frozen=True)

    text: str
    start: float = Field(ge=0.0, description="Start time in seconds")
    end: float = Field(ge=0.0, description="End time in seconds")
    confidence: Optional[float] = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "Segment":
        if self.end < self.start:
            raise ValueError(f"segment end ({self.end}) is before start ({self.start})")
        return self


class TranscriptionOptions(BaseModel):
    """Options for a transcription request."""
    language: Optional[str] = Field(None, description="ISO 639-1 language code")
    model: Optional[str] = None
    response_format: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=1.0)
    extra: Dict[str, Any] = Field(default_factory=dict)


class TranscriptionResult(BaseModel):
    """Normalized transcription result."""
    model_config = ConfigDict(frozen=True)

    text: str
    lang: Optional[str] = None
    segments: List[Segment] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("segments")
    @classmethod
    def _segments_ordered(cls, segments: List[Segment]) -> List[Segment]:
        for previous, current in zip(segments, segments[1:]):
            if current.start < previous.end:
                raise ValueError(
                    f"segments overlap or are out of order: [{previous.start}, {previous.end}] "
                    f"then [{current.start}, {current.end}]"
                )
        return segments


class SummaryStyle(str, Enum):
    """Summary style."""
    BRIEF = "brief"
    DETAILED = "detailed"
    BULLET_POINTS = "bullet_points"
    NARRATIVE = "narrative"


class SummarizationOptions(BaseModel):
    """Options for a summarization request."""
    max_length: Optional[int] = Field(None, gt=0, description="Maximum tokens for the summary")
    style: Optional[SummaryStyle] = None
    language: Optional[str] = None
    custom_prompt: Optional[str] = None
    focus_points: List[str] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)


class SummarizationResult(BaseModel):
    """Normalized summarization result."""
    model_config = ConfigDict(frozen=True)

    summary: str
    tokens: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ConversionOptions(BaseModel):
    """Options for audio normalization."""
    output_format: Optional[str] = None
    sample_rate: int = Field(default=16000, gt=0)
    channels: int = Field(default=1, ge=1, le=2)


class ConversionResult(BaseModel):
    """Output of one audio conversion."""
    model_config = ConfigDict(frozen=True)

    file_path: Path
    format: str
    size: int = Field(ge=0)
    duration: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StageType(str, Enum):
    """Pipeline stage events."""
    RECORDING_START = "recording_start"
    RECORDING_STOP = "recording_stop"
    RECORDING_ERROR = "recording_error"
    TRANSCRIPTION_START = "transcription_start"
    TRANSCRIPTION_SUCCESS = "transcription_success"
    TRANSCRIPTION_ERROR = "transcription_error"
    SUMMARIZATION_START = "summarization_start"
    SUMMARIZATION_SUCCESS = "summarization_success"
    SUMMARIZATION_ERROR = "summarization_error"

    @property
    def family(self) -> str:
        """Stage family, e.g. ``transcription``."""
        return self.value.rsplit("_", 1)[0]

    @property
    def is_start(self) -> bool:
        return self.value.endswith("_start")


class Stage(BaseModel):
    """One event within a pipeline session."""
    model_config = ConfigDict(frozen=True)

    type: StageType
    timestamp: float = Field(description="Epoch milliseconds")
    provider: str
    error: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)


class PipelineSession(BaseModel):
    """Correlated record of one record -> transcribe -> summarize operation."""
    id: str
    recording_provider: str
    transcription_provider: str
    summarization_provider: str
    start_time: float = Field(description="Epoch milliseconds")
    stages: List[Stage] = Field(default_factory=list)
    abandoned: bool = False

    def provider_for(self, stage_type: StageType) -> str:
        """Provider configured for a stage family."""
        family = stage_type.family
        if family == "recording":
            return self.recording_provider
        if family == "transcription":
            return self.transcription_provider
        return self.summarization_provider


class PipelineState(str, Enum):
    """Orchestration state machine."""
    IDLE = "idle"
    RESOLVING = "resolving"
    PROBING_HEALTH = "probing_health"
    TRANSCRIBING = "transcribing"
    SUMMARIZING = "summarizing"
    COMPLETE = "complete"
    ERRORED = "errored"


class PipelineConfig(BaseModel):
    """Input for one end-to-end pipeline run."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    audio: AudioInput
    transcriber_id: str
    summarizer_id: str
    recording_provider: str = "recorder"
    transcription_options: Optional[TranscriptionOptions] = None
    summarization_options: Optional[SummarizationOptions] = None
    probe_health: bool = True
    generate_topic: bool = True
    on_provider_change: Optional[Callable[..., Any]] = None


class PipelineResult(BaseModel):
    """Output of one end-to-end pipeline run."""
    transcript: TranscriptionResult
    summary: SummarizationResult
    topic: Optional[str] = None
    session_id: str
    transcription_provider: str
    summarization_provider: str


class ProviderChangeEvent(BaseModel):
    """Event when the provider in use changes due to fallback."""
    domain: str  # "transcription", "summarization"
    old_provider: Optional[str]
    new_provider: str
    reason: str
    timestamp: datetime = Field(default_factory=datetime.now)



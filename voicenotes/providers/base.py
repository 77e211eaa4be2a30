"""Base classes and interfaces for transcription and summarization providers."""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Iterable, List, Optional, Tuple
import logging

from voicenotes.core.errors import ProviderError
from voicenotes.core.formats import accepted_formats
from voicenotes.core.schemas import (
    AudioBuffer,
    AudioInput,
    ConversionOptions,
    ProviderClass,
    ProviderHealth,
    ProviderKind,
    Segment,
    SummarizationOptions,
    SummarizationResult,
    TranscriptionOptions,
    TranscriptionResult,
)

if TYPE_CHECKING:
    from voicenotes.audio.conversion import AudioConversionService

logger = logging.getLogger(__name__)


class BaseProvider(ABC):
    """Identity and liveness probe shared by every provider."""

    id: str = ""
    name: str = ""
    provider_class: ProviderClass = ProviderClass.CLOUD
    kind: ProviderKind

    @abstractmethod
    async def check(self) -> ProviderHealth:
        """Probe the provider. Must have no side effects besides the probe."""
        pass

    @property
    def is_local(self) -> bool:
        return self.provider_class == ProviderClass.LOCAL

    def get_provider_name(self) -> str:
        """Get the display name of this provider."""
        return self.name or self.id

    async def close(self):
        """Clean up resources."""
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r} class={self.provider_class.value}>"


class Transcriber(BaseProvider):
    """Abstract base class for transcription providers."""

    kind = ProviderKind.TRANSCRIBER

    def __init__(self, converter: Optional["AudioConversionService"] = None):
        self.converter = converter

    @property
    def accepted_formats(self) -> List[str]:
        """Input formats this provider reads directly."""
        return accepted_formats(self.id)

    @abstractmethod
    async def transcribe(
        self,
        audio_input: AudioInput,
        options: Optional[TranscriptionOptions] = None
    ) -> TranscriptionResult:
        """
        Transcribe audio.

        Args:
            audio_input: Path to audio on disk or an in-memory AudioBuffer
            options: Language, model and provider-specific options

        Returns:
            TranscriptionResult

        Raises:
            ProviderError: For every failure
        """
        pass

    @asynccontextmanager
    async def _materialize(self, audio_input: AudioInput) -> AsyncIterator[Path]:
        """
        Yield a readable path for ``audio_input`` in an accepted format.

        Buffers whose container is not accepted are converted through the
        audio conversion service. Temporary files are removed on exit.
        """
        if isinstance(audio_input, AudioBuffer):
            if self.converter is None:
                raise ProviderError.config_missing("audio conversion service", provider_id=self.id)

            result = await self.converter.convert(
                audio_input, self.id, ConversionOptions(output_format=self._target_format(audio_input))
            )
            try:
                yield result.file_path
            finally:
                self.converter.remove(result)
            return

        path = Path(audio_input)
        if not path.is_file():
            raise ProviderError.file_not_found(str(path), provider_id=self.id)

        suffix = path.suffix.lstrip(".").lower()
        if suffix and suffix not in self.accepted_formats:
            if self.converter is None:
                raise ProviderError.unsupported_format(suffix, provider_id=self.id)
            buffer = AudioBuffer(data=path.read_bytes(), mime_type=f"audio/{suffix}")
            async with self._materialize(buffer) as converted:
                yield converted
            return

        yield path

    def _target_format(self, buffer: AudioBuffer) -> Optional[str]:
        """Keep the buffer's container when it is accepted and writable as-is."""
        container = buffer.container
        if container in self.accepted_formats and self.converter and self.converter.is_format_supported(container):
            return container
        return None


class Summarizer(BaseProvider):
    """Abstract base class for summarization providers."""

    kind = ProviderKind.SUMMARIZER

    @abstractmethod
    async def summarize(
        self,
        text: str,
        options: Optional[SummarizationOptions] = None
    ) -> SummarizationResult:
        """
        Summarize text.

        Args:
            text: Text to summarize
            options: Length, style, language, custom prompt and focus points

        Returns:
            SummarizationResult

        Raises:
            ProviderError: For every failure
        """
        pass


def build_segments(raw_segments: Iterable[Tuple[str, float, float, Optional[float]]]) -> List[Segment]:
    """
    Build ordered, non-overlapping segments from backend output.

    Backends occasionally report a segment starting a few milliseconds before
    the previous one ends; such starts are moved up to the previous end.

    Args:
        raw_segments: (text, start, end, confidence) tuples in seconds

    Returns:
        List of Segment
    """
    segments: List[Segment] = []
    previous_end = 0.0
    for text, start, end, confidence in sorted(raw_segments, key=lambda s: float(s[1] or 0.0)):
        start = max(float(start or 0.0), previous_end)
        end = max(float(end or 0.0), start)
        segments.append(Segment(text=text.strip(), start=start, end=end, confidence=confidence))
        previous_end = end
    return segments

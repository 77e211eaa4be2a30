"""OpenAI Whisper transcription provider."""

import time
from pathlib import Path
from typing import Any, Optional
import logging

import openai
from openai import AsyncOpenAI

from voicenotes.core.errors import ProviderError
from voicenotes.core.formats import extension_for_mime
from voicenotes.core.schemas import (
    AudioBuffer,
    AudioInput,
    ProviderClass,
    ProviderHealth,
    TranscriptionOptions,
    TranscriptionResult,
)
from voicenotes.providers.base import Transcriber, build_segments
from voicenotes.providers.openai_errors import map_openai_error

logger = logging.getLogger(__name__)

MB = 1024 * 1024


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


class OpenAITranscriber(Transcriber):
    """Cloud transcription through the OpenAI audio transcriptions API."""

    id = "openai-whisper"
    name = "OpenAI Whisper"
    provider_class = ProviderClass.CLOUD

    # OpenAI Whisper rejects uploads above 25MB
    MAX_FILE_SIZE = 25 * MB
    RECOMMENDED_MAX_SIZE = 20 * MB

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "whisper-1",
        base_url: Optional[str] = None,
        converter=None,
        client: Optional[AsyncOpenAI] = None
    ):
        super().__init__(converter=converter)
        self.api_key = api_key
        self.model = model
        self.client = client
        if self.client is None and api_key:
            self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def check(self) -> ProviderHealth:
        if self.client is None:
            return ProviderHealth(ok=False, details="OpenAI API key missing")

        try:
            await self.client.models.list()
        except openai.AuthenticationError:
            return ProviderHealth(ok=False, details="Invalid OpenAI API key")
        except openai.APIStatusError as e:
            return ProviderHealth(ok=False, details=f"Connection error: {e.status_code}")
        except openai.APIError as e:
            return ProviderHealth(ok=False, details=f"Connection error: {e}")

        return ProviderHealth(
            ok=True,
            details="OpenAI Whisper available",
            capabilities=["transcription", "multi-language", "segments"],
        )

    def check_file_size(self, size: int) -> None:
        """
        Pre-flight upload size check.

        Raises:
            ProviderError: FILE_TOO_LARGE above the hard limit
        """
        if size > self.MAX_FILE_SIZE:
            raise ProviderError.file_too_large(size, self.MAX_FILE_SIZE, provider_id=self.id)
        if size > self.RECOMMENDED_MAX_SIZE:
            logger.warning(
                f"Large file upload ({size / MB:.1f}MB), this may take longer to process. "
                "For faster processing, consider shorter recordings."
            )

    async def transcribe(
        self,
        audio_input: AudioInput,
        options: Optional[TranscriptionOptions] = None
    ) -> TranscriptionResult:
        if self.client is None:
            raise ProviderError.auth_missing(self.id, "openai_api_key")

        options = options or TranscriptionOptions()

        # Buffers in a container OpenAI reads are uploaded as-is
        if isinstance(audio_input, AudioBuffer) and audio_input.container in self.accepted_formats:
            filename = f"recording.{extension_for_mime(audio_input.mime_type)}"
            return await self._upload((filename, audio_input.data, audio_input.mime_type.split(";")[0]),
                                      audio_input.size, options)

        async with self._materialize(audio_input) as path:
            data = Path(path).read_bytes()
            return await self._upload((Path(path).name, data), len(data), options)

    async def _upload(self, file: tuple, size: int, options: TranscriptionOptions) -> TranscriptionResult:
        self.check_file_size(size)

        model = options.model or self.model
        response_format = options.response_format or "verbose_json"
        kwargs = {
            "model": model,
            "file": file,
            "response_format": response_format,
        }
        if options.language:
            kwargs["language"] = options.language
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        kwargs.update(options.extra)

        start_time = time.monotonic()
        try:
            response = await self.client.audio.transcriptions.create(**kwargs)
        except openai.OpenAIError as e:
            logger.warning(f"OpenAI transcription failed: {e}")
            raise map_openai_error(e, self.id, "OpenAI transcription", size_mb=size / MB) from e

        processing_time = int((time.monotonic() - start_time) * 1000)

        if isinstance(response, str):
            # text, srt and vtt formats come back as plain strings
            text, language, duration, raw_segments = response, options.language, None, []
        else:
            text = _field(response, "text", "") or ""
            language = _field(response, "language") or options.language
            duration = _field(response, "duration")
            raw_segments = _field(response, "segments") or []

        segments = build_segments(
            (_field(s, "text", ""), _field(s, "start", 0.0), _field(s, "end", 0.0), _field(s, "avg_logprob"))
            for s in raw_segments
        )

        logger.info(f"OpenAI transcription completed: {size} bytes -> {len(text)} chars in {processing_time}ms")
        return TranscriptionResult(
            text=text,
            lang=language,
            segments=segments,
            metadata={
                "duration": duration,
                "model": model,
                "processing_time": processing_time,
            },
        )

    async def close(self):
        if self.client is not None:
            await self.client.close()

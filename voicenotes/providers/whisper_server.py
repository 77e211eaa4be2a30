"""whisper.cpp HTTP server transcription provider (Local)."""

import asyncio
import time
from pathlib import Path
from typing import Optional
import logging

import aiohttp

from voicenotes.core.errors import ProviderError
from voicenotes.core.schemas import (
    AudioInput,
    ProviderClass,
    ProviderHealth,
    TranscriptionOptions,
    TranscriptionResult,
)
from voicenotes.providers.base import Transcriber, build_segments
from voicenotes.providers.http_errors import error_for_status, map_aiohttp_error

logger = logging.getLogger(__name__)


class WhisperServerTranscriber(Transcriber):
    """Posts audio to a running whisper.cpp server's ``/inference`` endpoint."""

    id = "whisper-server"
    name = "Whisper.cpp Server (Local)"
    provider_class = ProviderClass.LOCAL

    def __init__(
        self,
        host: str,
        port: int = 8080,
        timeout_seconds: Optional[float] = 600.0,
        check_timeout_seconds: float = 5.0,
        converter=None
    ):
        super().__init__(converter=converter)
        host = host.rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"http://{host}"
        self.base_url = f"{host}:{port}"
        self.timeout_seconds = timeout_seconds
        self.check_timeout_seconds = check_timeout_seconds

    async def check(self) -> ProviderHealth:
        timeout = aiohttp.ClientTimeout(total=self.check_timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(f"{self.base_url}/") as response:
                    if response.status >= 400:
                        return ProviderHealth(ok=False, details=f"whisper.cpp server returned {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return ProviderHealth(ok=False, details=f"whisper.cpp server not reachable at {self.base_url}: {e}")

        return ProviderHealth(
            ok=True,
            details=f"whisper.cpp server at {self.base_url}",
            capabilities=["transcription", "multi-language", "segments"],
        )

    async def transcribe(
        self,
        audio_input: AudioInput,
        options: Optional[TranscriptionOptions] = None
    ) -> TranscriptionResult:
        options = options or TranscriptionOptions()
        operation = "whisper.cpp server transcription"
        start_time = time.monotonic()

        async with self._materialize(audio_input) as audio_path:
            form = aiohttp.FormData()
            form.add_field("file", Path(audio_path).read_bytes(),
                           filename=Path(audio_path).name, content_type="audio/wav")
            form.add_field("response_format", options.response_format or "verbose_json")
            form.add_field("language", options.language or "auto")
            if options.temperature is not None:
                form.add_field("temperature", str(options.temperature))

            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            try:
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.post(f"{self.base_url}/inference", data=form) as response:
                        if response.status >= 400:
                            raise error_for_status(response.status, await response.text(), self.id, operation)
                        payload = await response.json(content_type=None)
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                logger.warning(f"whisper.cpp server request failed: {e}")
                raise map_aiohttp_error(e, self.id, operation, self.timeout_seconds) from e

        if isinstance(payload, dict) and payload.get("error"):
            raise ProviderError.processing_failed(operation, provider_id=self.id,
                                                  metadata={"server_error": payload["error"]})

        segments = build_segments(
            (s.get("text", ""), s.get("start", 0.0), s.get("end", 0.0), s.get("avg_logprob"))
            for s in payload.get("segments", [])
        )
        text = (payload.get("text") or " ".join(s.text for s in segments)).strip()
        processing_time = int((time.monotonic() - start_time) * 1000)
        logger.info(f"whisper.cpp server transcription completed: {len(text)} chars in {processing_time}ms")

        return TranscriptionResult(
            text=text,
            lang=payload.get("language") or options.language,
            segments=segments,
            metadata={
                "duration": payload.get("duration"),
                "model": "whisper.cpp-server",
                "processing_time": processing_time,
            },
        )

"""faster-whisper transcription provider (Local, separate Python interpreter)."""

import json
import time
from typing import Optional
import logging

from voicenotes.core.errors import ProviderError
from voicenotes.core.schemas import (
    AudioInput,
    ProviderClass,
    ProviderHealth,
    TranscriptionOptions,
    TranscriptionResult,
)
from voicenotes.providers.base import Transcriber, build_segments
from voicenotes.providers.local_process import run_process

logger = logging.getLogger(__name__)

# Executed by the configured interpreter, which has faster-whisper installed
TRANSCRIBE_SCRIPT = """
import json, sys
from faster_whisper import WhisperModel

audio_path, model_name, device, compute_type, language, beam_size = sys.argv[1:7]
model = WhisperModel(model_name, device=device, compute_type=compute_type)
segments, info = model.transcribe(audio_path, language=language or None, beam_size=int(beam_size))
out = {
    "language": info.language,
    "duration": info.duration,
    "segments": [
        {"start": s.start, "end": s.end, "text": s.text, "avg_logprob": s.avg_logprob}
        for s in segments
    ],
}
sys.stdout.write(json.dumps(out))
"""

VERSION_SCRIPT = "import faster_whisper; print(faster_whisper.__version__)"


class FasterWhisperTranscriber(Transcriber):
    """Runs faster-whisper in an external interpreter and reads JSON from stdout."""

    id = "fasterwhisper"
    name = "FasterWhisper (Local)"
    provider_class = ProviderClass.LOCAL

    def __init__(
        self,
        python_path: str,
        model_name: str = "base",
        device: str = "auto",
        compute_type: str = "default",
        beam_size: int = 5,
        timeout_seconds: Optional[float] = 600.0,
        check_timeout_seconds: float = 30.0,
        converter=None
    ):
        super().__init__(converter=converter)
        self.python_path = python_path
        self.model_name = model_name
        self.device = device
        self.compute_type = compute_type
        self.beam_size = beam_size
        self.timeout_seconds = timeout_seconds
        self.check_timeout_seconds = check_timeout_seconds

    async def check(self) -> ProviderHealth:
        if not self.python_path or not self.model_name:
            return ProviderHealth(ok=False, details="FasterWhisper configuration missing (python path or model name)")

        try:
            stdout, _ = await run_process(
                [self.python_path, "-c", VERSION_SCRIPT], self.id, self.check_timeout_seconds, "health check"
            )
        except ProviderError as e:
            return ProviderHealth(ok=False, details=f"faster-whisper not usable: {e.message}")

        version = stdout.decode(errors="replace").strip() or None
        return ProviderHealth(
            ok=True,
            details=f"faster-whisper {version} ready (model {self.model_name})",
            version=version,
            capabilities=["transcription", "multi-language", "segments"],
        )

    async def transcribe(
        self,
        audio_input: AudioInput,
        options: Optional[TranscriptionOptions] = None
    ) -> TranscriptionResult:
        if not self.python_path:
            raise ProviderError.config_missing("fasterwhisper_python_path", provider_id=self.id)

        options = options or TranscriptionOptions()
        model_name = options.model or self.model_name
        start_time = time.monotonic()

        async with self._materialize(audio_input) as audio_path:
            cmd = [
                self.python_path, "-c", TRANSCRIBE_SCRIPT,
                str(audio_path), model_name, self.device, self.compute_type,
                options.language or "", str(options.extra.get("beam_size", self.beam_size)),
            ]
            stdout, _ = await run_process(cmd, self.id, self.timeout_seconds, "faster-whisper transcription")

        try:
            payload = json.loads(stdout.decode(errors="replace"))
        except json.JSONDecodeError as e:
            raise ProviderError.processing_failed(
                "faster-whisper output parsing",
                provider_id=self.id,
                cause=e,
                metadata={"stdout": stdout[:500].decode(errors="replace")},
            ) from e

        segments = build_segments(
            (s.get("text", ""), s.get("start", 0.0), s.get("end", 0.0), s.get("avg_logprob"))
            for s in payload.get("segments", [])
        )
        text = " ".join(s.text for s in segments if s.text)
        processing_time = int((time.monotonic() - start_time) * 1000)
        logger.info(f"faster-whisper transcription completed: {len(text)} chars in {processing_time}ms")

        return TranscriptionResult(
            text=text,
            lang=payload.get("language") or options.language,
            segments=segments,
            metadata={
                "duration": payload.get("duration"),
                "model": model_name,
                "processing_time": processing_time,
            },
        )

"""whisper.cpp CLI transcription provider (Local)."""

import json
import shutil
import tempfile
import time
from pathlib import Path
from typing import List, Optional
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


def parse_whispercpp_json(payload: dict, fallback_language: Optional[str] = None) -> TranscriptionResult:
    """
    Parse the ``-oj`` JSON output of whisper.cpp.

    Segment offsets are reported in milliseconds.
    """
    items = payload.get("transcription") or []
    segments = build_segments(
        (
            item.get("text", ""),
            (item.get("offsets") or {}).get("from", 0) / 1000.0,
            (item.get("offsets") or {}).get("to", 0) / 1000.0,
            None,
        )
        for item in items
    )
    text = " ".join(s.text for s in segments if s.text)
    language = (payload.get("result") or {}).get("language") or fallback_language
    model_type = (payload.get("model") or {}).get("type")
    return TranscriptionResult(
        text=text,
        lang=language,
        segments=segments,
        metadata={
            "duration": segments[-1].end if segments else 0.0,
            "model": model_type,
        },
    )


class WhisperCppTranscriber(Transcriber):
    """Runs the whisper.cpp command line binary on a local audio file."""

    id = "whispercpp"
    name = "Whisper.cpp (Local)"
    provider_class = ProviderClass.LOCAL

    def __init__(
        self,
        binary_path: str,
        model_path: str,
        extra_args: Optional[List[str]] = None,
        timeout_seconds: Optional[float] = 600.0,
        converter=None
    ):
        """
        Initialize whisper.cpp provider.

        Args:
            binary_path: whisper.cpp CLI executable (``whisper-cli`` or ``main``)
            model_path: ggml model file
            extra_args: Additional CLI arguments
            timeout_seconds: Kill the process after this many seconds
            converter: Audio conversion service for buffers and unsupported files
        """
        super().__init__(converter=converter)
        self.binary_path = binary_path
        self.model_path = model_path
        self.extra_args = list(extra_args or [])
        self.timeout_seconds = timeout_seconds

    def _resolve_binary(self) -> Optional[str]:
        if not self.binary_path:
            return None
        if Path(self.binary_path).is_file():
            return self.binary_path
        return shutil.which(self.binary_path)

    async def check(self) -> ProviderHealth:
        if not self.binary_path or not self.model_path:
            return ProviderHealth(ok=False, details="whisper.cpp configuration missing (binary path or model path)")

        binary = self._resolve_binary()
        if binary is None:
            return ProviderHealth(ok=False, details=f"whisper.cpp binary not found: {self.binary_path}")
        if not Path(self.model_path).is_file():
            return ProviderHealth(ok=False, details=f"whisper.cpp model not found: {self.model_path}")

        return ProviderHealth(
            ok=True,
            details=f"whisper.cpp ready ({Path(self.model_path).name})",
            capabilities=["transcription", "multi-language", "segments"],
        )

    def build_command(self, audio_path: Path, output_base: Path, options: TranscriptionOptions) -> List[str]:
        cmd = [
            self._resolve_binary() or self.binary_path,
            "-m", self.model_path,
            "-f", str(audio_path),
            "-oj",
            "-of", str(output_base),
            "-l", options.language or "auto",
        ]
        cmd.extend(self.extra_args)
        cmd.extend(str(a) for a in options.extra.get("args", []))
        return cmd

    async def transcribe(
        self,
        audio_input: AudioInput,
        options: Optional[TranscriptionOptions] = None
    ) -> TranscriptionResult:
        if not self.binary_path:
            raise ProviderError.config_missing("whispercpp_binary_path", provider_id=self.id)
        if not self.model_path:
            raise ProviderError.config_missing("whispercpp_model_path", provider_id=self.id)
        if not Path(self.model_path).is_file():
            raise ProviderError.config_invalid(
                f"whisper.cpp model not found: {self.model_path}",
                hint="Download a ggml model and set WHISPERCPP_MODEL_PATH.",
                provider_id=self.id,
            )

        options = options or TranscriptionOptions()
        start_time = time.monotonic()

        async with self._materialize(audio_input) as audio_path:
            with tempfile.TemporaryDirectory(prefix="whispercpp_") as out_dir:
                output_base = Path(out_dir) / "transcript"
                cmd = self.build_command(audio_path, output_base, options)
                await run_process(cmd, self.id, self.timeout_seconds, "whisper.cpp transcription")

                output_file = output_base.with_suffix(".json")
                if not output_file.is_file():
                    raise ProviderError.processing_failed(
                        "whisper.cpp transcription",
                        provider_id=self.id,
                        metadata={"expected_output": str(output_file)},
                        hint="whisper.cpp did not write its JSON output. Check that the binary supports -oj.",
                    )
                try:
                    payload = json.loads(output_file.read_text(encoding="utf-8", errors="replace"))
                except json.JSONDecodeError as e:
                    raise ProviderError.processing_failed(
                        "whisper.cpp output parsing", provider_id=self.id, cause=e
                    ) from e

        result = parse_whispercpp_json(payload, fallback_language=options.language)
        processing_time = int((time.monotonic() - start_time) * 1000)
        logger.info(f"whisper.cpp transcription completed: {len(result.text)} chars in {processing_time}ms")

        return result.model_copy(update={
            "metadata": {**result.metadata, "model": result.metadata.get("model") or Path(self.model_path).name,
                         "processing_time": processing_time},
        })

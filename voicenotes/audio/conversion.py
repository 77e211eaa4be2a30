"""Audio normalization: turn in-memory buffers into files local providers accept."""

import asyncio
import io
import os
import re
import secrets
import shutil
import tempfile
import time
import wave
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional
import logging

import numpy as np

from voicenotes.core.errors import ProviderError
from voicenotes.core.formats import SUPPORTED_OUTPUT_FORMATS, preferred_format
from voicenotes.core.schemas import AudioBuffer, ConversionOptions, ConversionResult

if TYPE_CHECKING:
    from voicenotes.telemetry.session import SessionTelemetry

logger = logging.getLogger(__name__)

# Runs an ffmpeg command; the optional bytes are fed on stdin
FfmpegRunner = Callable[[List[str], Optional[bytes]], Awaitable[None]]

_CODECS = {
    "wav": "pcm_s16le",
    "mp3": "libmp3lame",
    "ogg": "libvorbis",
    "flac": "flac",
}


async def run_ffmpeg(cmd: List[str], stdin_data: Optional[bytes] = None) -> None:
    """Run an ffmpeg command, raising RuntimeError on a non-zero exit."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise RuntimeError(f"ffmpeg executable not found: {cmd[0]}") from e

    _, stderr = await proc.communicate(input=stdin_data)
    if proc.returncode != 0:
        raise RuntimeError(f"ffmpeg exited with {proc.returncode}: {stderr.decode(errors='replace')[:500]}")


def _mime_params(mime_type: str) -> dict:
    params = {}
    for part in mime_type.split(";")[1:]:
        if "=" in part:
            key, value = part.split("=", 1)
            params[key.strip().lower()] = value.strip()
    return params


class AudioConversionService:
    """Converts audio buffers into temporary files in a provider's preferred format."""

    TEMP_FILE_PATTERN = re.compile(r"^audio_\d+_[a-z0-9]+\.(wav|mp3|ogg|flac)$")

    def __init__(
        self,
        temp_dir: Optional[str] = None,
        ffmpeg_path: str = "ffmpeg",
        runner: Optional[FfmpegRunner] = None,
        telemetry: Optional["SessionTelemetry"] = None
    ):
        """
        Initialize conversion service.

        Args:
            temp_dir: Directory for converted files (defaults to the OS temp dir)
            ffmpeg_path: ffmpeg executable
            runner: Override for running ffmpeg commands
            telemetry: Optional telemetry for conversion events
        """
        self.temp_dir = Path(temp_dir) if temp_dir else Path(tempfile.gettempdir())
        self.ffmpeg_path = ffmpeg_path
        self._runner = runner or run_ffmpeg
        self.telemetry = telemetry

    # Format negotiation

    def supported_formats(self) -> List[str]:
        return list(SUPPORTED_OUTPUT_FORMATS)

    def is_format_supported(self, fmt: Optional[str]) -> bool:
        return bool(fmt) and fmt.lower() in SUPPORTED_OUTPUT_FORMATS

    def preferred_format(self, provider_id: str, requested: Optional[str] = None) -> str:
        """
        Determine the output format for a provider.

        Args:
            provider_id: Target provider
            requested: Explicit override, honored when supported

        Returns:
            Output format tag
        """
        if requested and self.is_format_supported(requested):
            return requested.lower()
        return preferred_format(provider_id)

    def is_ffmpeg_available(self) -> bool:
        return shutil.which(self.ffmpeg_path) is not None

    # Conversion

    async def convert(
        self,
        buffer: AudioBuffer,
        provider_id: str,
        options: Optional[ConversionOptions] = None
    ) -> ConversionResult:
        """
        Convert an audio buffer to a temporary file for a provider.

        Args:
            buffer: Captured audio
            provider_id: Provider the file is meant for
            options: Output format, sample rate and channels

        Returns:
            ConversionResult pointing at the temporary file

        Raises:
            ProviderError: PROCESSING_FAILED with diagnostic metadata
        """
        options = options or ConversionOptions()
        start_time = time.monotonic()
        output_format = self.preferred_format(provider_id, options.output_format)
        file_path = self.temp_dir / self.generate_unique_file_name(output_format)

        logger.info(
            f"Converting audio for {provider_id}: {buffer.mime_type} ({buffer.size} bytes) -> {output_format}"
        )
        self._emit("Audio conversion started", "info", {
            "provider_id": provider_id,
            "original_format": buffer.mime_type,
            "target_format": output_format,
            "original_size": buffer.size,
        })

        try:
            if buffer.size == 0:
                raise ValueError("audio buffer is empty")

            self.temp_dir.mkdir(parents=True, exist_ok=True)

            converter = self._select_converter(buffer, output_format)
            await converter(buffer, file_path, output_format, options)

            size = file_path.stat().st_size
        except Exception as e:
            conversion_time = int((time.monotonic() - start_time) * 1000)
            self._discard(file_path)
            logger.error(f"Audio conversion failed for {provider_id} after {conversion_time}ms: {e}")
            self._emit("Audio conversion error", "error", {
                "provider_id": provider_id,
                "original_format": buffer.mime_type,
                "conversion_time_ms": conversion_time,
                "error": str(e),
            })
            raise ProviderError.processing_failed(
                "audio conversion",
                provider_id=provider_id,
                cause=e,
                metadata={
                    "original_format": buffer.mime_type,
                    "original_size": buffer.size,
                    "target_format": output_format,
                    "conversion_time_ms": conversion_time,
                },
                hint="Make sure ffmpeg is installed and the recording is not corrupted.",
            ) from e

        conversion_time = int((time.monotonic() - start_time) * 1000)
        result = ConversionResult(
            file_path=file_path,
            format=output_format,
            size=size,
            duration=self._wav_duration(file_path) if output_format == "wav" else None,
            metadata={
                "original_format": buffer.mime_type,
                "original_size": buffer.size,
                "conversion_time": conversion_time,
            },
        )

        logger.info(f"Audio conversion done: {file_path.name} ({size} bytes, {conversion_time}ms)")
        self._emit("Audio conversion successful", "info", {
            "provider_id": provider_id,
            "file_path": str(file_path),
            "format": output_format,
            "size": size,
            "conversion_time_ms": conversion_time,
        })
        return result

    def _select_converter(self, buffer: AudioBuffer, output_format: str):
        """Dispatch on the buffer's declared MIME type."""
        mime = buffer.mime_type.lower()
        container = buffer.container

        if container == output_format:
            return self._convert_passthrough
        if container == "pcm":
            return self._convert_pcm
        if container == "webm":
            return self._convert_webm
        if container == "ogg":
            return self._convert_ogg
        if "mp4" in mime or "aac" in mime or "m4a" in mime:
            return self._convert_mp4
        return self._convert_generic

    async def _convert_passthrough(self, buffer: AudioBuffer, file_path: Path,
                                   output_format: str, options: ConversionOptions):
        self._write_file(file_path, buffer.data)

    async def _convert_webm(self, buffer: AudioBuffer, file_path: Path,
                            output_format: str, options: ConversionOptions):
        # WebM/Opus streams decode fine from a pipe
        cmd = self._ffmpeg_cmd("pipe:0", file_path, output_format, options, input_format="webm")
        await self._runner(cmd, buffer.data)

    async def _convert_ogg(self, buffer: AudioBuffer, file_path: Path,
                           output_format: str, options: ConversionOptions):
        # Ogg/Opus from Firefox recorders; the Matroska demuxer rejects it
        cmd = self._ffmpeg_cmd("pipe:0", file_path, output_format, options, input_format="ogg")
        await self._runner(cmd, buffer.data)

    async def _convert_mp4(self, buffer: AudioBuffer, file_path: Path,
                           output_format: str, options: ConversionOptions):
        # MP4 may keep its moov atom at the end, so ffmpeg needs a seekable input
        source = file_path.with_name(f"{file_path.stem}_src.mp4")
        self._write_file(source, buffer.data)
        try:
            cmd = self._ffmpeg_cmd(str(source), file_path, output_format, options)
            await self._runner(cmd, None)
        finally:
            self._discard(source)

    async def _convert_generic(self, buffer: AudioBuffer, file_path: Path,
                               output_format: str, options: ConversionOptions):
        cmd = self._ffmpeg_cmd("pipe:0", file_path, output_format, options)
        await self._runner(cmd, buffer.data)

    async def _convert_pcm(self, buffer: AudioBuffer, file_path: Path,
                           output_format: str, options: ConversionOptions):
        wav_bytes = self.pcm_to_wav(buffer, options.sample_rate, options.channels)
        if output_format == "wav":
            self._write_file(file_path, wav_bytes)
            return
        cmd = self._ffmpeg_cmd("pipe:0", file_path, output_format, options, input_format="wav")
        await self._runner(cmd, wav_bytes)

    def _ffmpeg_cmd(
        self,
        source: str,
        file_path: Path,
        output_format: str,
        options: ConversionOptions,
        input_format: Optional[str] = None
    ) -> List[str]:
        cmd = [self.ffmpeg_path, "-hide_banner", "-loglevel", "error", "-y"]
        if input_format:
            cmd += ["-f", input_format]
        cmd += [
            "-i", source,
            "-vn",
            "-acodec", _CODECS[output_format],
            "-ar", str(options.sample_rate),
            "-ac", str(options.channels),
            str(file_path),
        ]
        return cmd

    @staticmethod
    def pcm_to_wav(buffer: AudioBuffer, sample_rate: int = 16000, channels: int = 1) -> bytes:
        """
        Encode raw PCM as 16-bit WAV, downmixing and resampling as needed.

        ``audio/l16`` is big-endian 16-bit, ``audio/f32`` is float32 and any
        other PCM type is little-endian 16-bit. Rate and channels come from the
        buffer fields or the MIME parameters (``rate=``, ``channels=``).
        """
        mime = buffer.mime_type.lower()
        params = _mime_params(mime)
        source_rate = buffer.sample_rate or int(params.get("rate", sample_rate))
        source_channels = buffer.channels or int(params.get("channels", 1))

        if "f32" in mime or "float" in mime:
            samples = np.frombuffer(buffer.data, dtype="<f4")
            samples = np.clip(samples, -1.0, 1.0) * 32767.0
        elif "l16" in mime:
            samples = np.frombuffer(buffer.data, dtype=">i2").astype(np.float64)
        else:
            samples = np.frombuffer(buffer.data, dtype="<i2").astype(np.float64)

        frame_count = len(samples) // source_channels
        if frame_count == 0:
            raise ValueError("PCM buffer holds no complete frame")
        frames = samples[:frame_count * source_channels].reshape(frame_count, source_channels)

        if source_channels != channels:
            mono = frames.mean(axis=1)
            frames = np.repeat(mono[:, None], channels, axis=1)

        if source_rate != sample_rate:
            duration = frame_count / source_rate
            target_count = max(1, int(round(duration * sample_rate)))
            source_times = np.arange(frame_count) / source_rate
            target_times = np.arange(target_count) / sample_rate
            frames = np.stack(
                [np.interp(target_times, source_times, frames[:, c]) for c in range(channels)],
                axis=1,
            )

        pcm = np.clip(np.round(frames), -32768, 32767).astype("<i2")

        out = io.BytesIO()
        with wave.open(out, "wb") as wf:
            wf.setnchannels(channels)
            wf.setsampwidth(2)
            wf.setframerate(sample_rate)
            wf.writeframes(pcm.tobytes())
        return out.getvalue()

    @staticmethod
    def _write_file(file_path: Path, data: bytes):
        # "x" mode refuses to overwrite another conversion's output
        with open(file_path, "xb") as f:
            f.write(data)

    @staticmethod
    def _wav_duration(file_path: Path) -> Optional[float]:
        try:
            with wave.open(str(file_path), "rb") as wf:
                rate = wf.getframerate()
                return wf.getnframes() / rate if rate else None
        except (wave.Error, EOFError) as e:
            logger.debug(f"Could not read WAV duration of {file_path.name}: {e}")
            return None

    @staticmethod
    def generate_unique_file_name(fmt: str) -> str:
        """Timestamp plus random token, so concurrent conversions never collide."""
        return f"audio_{int(time.time() * 1000)}_{secrets.token_hex(6)}.{fmt}"

    # Cleanup

    def remove(self, result: ConversionResult) -> bool:
        """Delete one conversion's output file."""
        return self._discard(Path(result.file_path))

    @staticmethod
    def _discard(file_path: Path) -> bool:
        try:
            file_path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Could not delete temporary file {file_path}: {e}")
            return False

    def cleanup_temp_files(self) -> int:
        """
        Delete temporary files produced by this service.

        Only files matching the ``audio_<ms>_<token>.<fmt>`` naming convention
        are touched. Individual delete failures are logged and skipped.

        Returns:
            Number of files deleted
        """
        if not self.temp_dir.is_dir():
            return 0

        deleted = 0
        matched = 0
        for entry in os.scandir(self.temp_dir):
            if not entry.is_file() or not self.TEMP_FILE_PATTERN.match(entry.name):
                continue
            matched += 1
            try:
                os.unlink(entry.path)
                deleted += 1
            except OSError as e:
                logger.warning(f"Could not delete temporary file {entry.name}: {e}")

        logger.info(f"Temp cleanup finished: {deleted}/{matched} converted audio files deleted")
        return deleted

    def _emit(self, message: str, level: str, context: dict):
        if self.telemetry is not None:
            self.telemetry.track_event(message, level, context)

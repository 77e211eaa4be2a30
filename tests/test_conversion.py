"""Unit tests for the audio conversion service."""

import io
import os
import wave
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest

from voicenotes.audio.conversion import AudioConversionService
from voicenotes.core.errors import ProviderError, ProviderErrorCode
from voicenotes.core.schemas import AudioBuffer, ConversionOptions

from tests.conftest import FakeFfmpeg, make_wav_bytes


def _read_wav(data: bytes):
    with wave.open(io.BytesIO(data), "rb") as wf:
        frames = np.frombuffer(wf.readframes(wf.getnframes()), dtype="<i2")
        return wf.getframerate(), wf.getnchannels(), frames


class TestFormatNegotiation:
    def test_preferred_format_per_provider(self, conversion: AudioConversionService) -> None:
        assert conversion.preferred_format("whispercpp") == "wav"
        assert conversion.preferred_format("unknown-provider") == "wav"

    def test_supported_override_wins(self, conversion: AudioConversionService) -> None:
        assert conversion.preferred_format("whispercpp", "FLAC") == "flac"
        assert conversion.preferred_format("whispercpp", "aiff") == "wav"

    def test_supported_formats(self, conversion: AudioConversionService) -> None:
        assert conversion.supported_formats() == ["wav", "mp3", "ogg", "flac"]
        assert conversion.is_format_supported("mp3")
        assert not conversion.is_format_supported("webm")
        assert not conversion.is_format_supported(None)


class TestConvert:
    @pytest.mark.asyncio
    async def test_wav_passes_through_unchanged(self, conversion, ffmpeg, tmp_path) -> None:
        data = make_wav_bytes(frames=16000)
        result = await conversion.convert(AudioBuffer(data=data, mime_type="audio/wav"), "whispercpp")

        assert ffmpeg.commands == []
        assert result.format == "wav"
        assert result.file_path.parent == tmp_path
        assert result.file_path.read_bytes() == data
        assert result.size == len(data)
        assert result.duration == pytest.approx(1.0)
        assert result.metadata["original_format"] == "audio/wav"
        assert result.metadata["original_size"] == len(data)
        assert "conversion_time" in result.metadata
        assert AudioConversionService.TEMP_FILE_PATTERN.match(result.file_path.name)

    @pytest.mark.asyncio
    async def test_webm_is_piped_to_ffmpeg(self, conversion, ffmpeg) -> None:
        buffer = AudioBuffer(data=b"\x1aE\xdf\xa3webm", mime_type="audio/webm;codecs=opus")
        result = await conversion.convert(buffer, "whispercpp", ConversionOptions(sample_rate=16000, channels=1))

        cmd = ffmpeg.commands[0]
        assert cmd[cmd.index("-f") + 1] == "webm"
        assert cmd[cmd.index("-i") + 1] == "pipe:0"
        assert cmd[cmd.index("-acodec") + 1] == "pcm_s16le"
        assert cmd[cmd.index("-ar") + 1] == "16000"
        assert cmd[cmd.index("-ac") + 1] == "1"
        assert cmd[-1] == str(result.file_path)
        assert ffmpeg.inputs[0] == buffer.data
        assert result.file_path.exists()

    @pytest.mark.asyncio
    async def test_mp4_uses_seekable_temp_input(self, conversion, ffmpeg, tmp_path) -> None:
        buffer = AudioBuffer(data=b"\x00\x00\x00\x18ftypmp42", mime_type="audio/mp4")
        result = await conversion.convert(buffer, "fasterwhisper")

        cmd = ffmpeg.commands[0]
        source = cmd[cmd.index("-i") + 1]
        assert source.endswith("_src.mp4")
        assert "-f" not in cmd
        assert ffmpeg.inputs[0] is None
        assert not Path(source).exists()
        assert sorted(p.name for p in tmp_path.iterdir()) == [result.file_path.name]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mime_type", ["audio/ogg;codecs=opus", "audio/opus"])
    async def test_ogg_opus_uses_ogg_demuxer(self, conversion, ffmpeg, mime_type) -> None:
        buffer = AudioBuffer(data=b"OggS\x00\x02opus", mime_type=mime_type)
        result = await conversion.convert(buffer, "whispercpp")

        cmd = ffmpeg.commands[0]
        assert cmd[cmd.index("-f") + 1] == "ogg"
        assert "webm" not in cmd
        assert cmd[cmd.index("-i") + 1] == "pipe:0"
        assert cmd[-1] == str(result.file_path)
        assert ffmpeg.inputs[0] == buffer.data

    @pytest.mark.asyncio
    async def test_missing_temp_dir_is_created(self, tmp_path, ffmpeg) -> None:
        temp_dir = tmp_path / "voicenotes_tmp" / "audio"
        conversion = AudioConversionService(temp_dir=str(temp_dir), runner=ffmpeg)

        result = await conversion.convert(AudioBuffer(data=make_wav_bytes(), mime_type="audio/wav"), "whispercpp")

        assert temp_dir.is_dir()
        assert result.file_path.parent == temp_dir
        assert result.file_path.exists()

    @pytest.mark.asyncio
    async def test_other_containers_use_generic_conversion(self, conversion, ffmpeg) -> None:
        await conversion.convert(AudioBuffer(data=b"ID3mp3", mime_type="audio/mpeg"), "whisper-server")

        cmd = ffmpeg.commands[0]
        assert "-f" not in cmd
        assert cmd[cmd.index("-i") + 1] == "pipe:0"

    @pytest.mark.asyncio
    async def test_requested_output_format_sets_codec(self, conversion, ffmpeg) -> None:
        result = await conversion.convert(
            AudioBuffer(data=b"webm", mime_type="audio/webm"), "whispercpp", ConversionOptions(output_format="flac")
        )

        cmd = ffmpeg.commands[0]
        assert cmd[cmd.index("-acodec") + 1] == "flac"
        assert result.file_path.suffix == ".flac"
        assert result.duration is None

    @pytest.mark.asyncio
    async def test_failure_leaves_no_file_behind(self, tmp_path, telemetry, memory_sink) -> None:
        conversion = AudioConversionService(temp_dir=str(tmp_path), runner=FakeFfmpeg(fail=True), telemetry=telemetry)

        with pytest.raises(ProviderError) as exc_info:
            await conversion.convert(AudioBuffer(data=b"garbage", mime_type="audio/webm"), "whispercpp")

        error = exc_info.value
        assert error.code == ProviderErrorCode.PROCESSING_FAILED
        assert error.provider_id == "whispercpp"
        assert error.metadata["original_format"] == "audio/webm"
        assert error.metadata["original_size"] == 7
        assert "conversion_time_ms" in error.metadata
        assert "ffmpeg" in error.hint
        assert list(tmp_path.iterdir()) == []

        assert len(memory_sink.of_type("Audio conversion started")) == 1
        assert len(memory_sink.of_type("Audio conversion error")) == 1
        assert memory_sink.of_type("Audio conversion successful") == []

    @pytest.mark.asyncio
    async def test_empty_buffer_is_rejected(self, conversion, ffmpeg) -> None:
        with pytest.raises(ProviderError) as exc_info:
            await conversion.convert(AudioBuffer(data=b"", mime_type="audio/webm"), "whispercpp")

        assert exc_info.value.code == ProviderErrorCode.PROCESSING_FAILED
        assert ffmpeg.commands == []

    @pytest.mark.asyncio
    async def test_success_emits_conversion_events(self, conversion, memory_sink) -> None:
        await conversion.convert(AudioBuffer(data=b"webm", mime_type="audio/webm"), "whispercpp")

        started = memory_sink.of_type("Audio conversion started")[0]
        assert started["target_format"] == "wav"
        assert started["original_size"] == 4
        assert memory_sink.of_type("Audio conversion successful")[0]["format"] == "wav"

    @pytest.mark.asyncio
    async def test_concurrent_conversions_get_distinct_files(self, conversion) -> None:
        buffer = AudioBuffer(data=make_wav_bytes(), mime_type="audio/wav")
        first = await conversion.convert(buffer, "whispercpp")
        second = await conversion.convert(buffer, "whispercpp")

        assert first.file_path != second.file_path


class TestPcm:
    @pytest.mark.asyncio
    async def test_pcm_is_encoded_without_ffmpeg(self, conversion, ffmpeg) -> None:
        samples = np.array([0, 1000, -1000, 32767], dtype="<i2")
        buffer = AudioBuffer(data=samples.tobytes(), mime_type="audio/pcm", sample_rate=16000, channels=1)

        result = await conversion.convert(buffer, "whispercpp")

        assert ffmpeg.commands == []
        rate, channels, frames = _read_wav(result.file_path.read_bytes())
        assert (rate, channels) == (16000, 1)
        assert frames.tolist() == [0, 1000, -1000, 32767]

    def test_stereo_is_downmixed(self) -> None:
        samples = np.array([100, 300, -200, 0], dtype="<i2")
        buffer = AudioBuffer(data=samples.tobytes(), mime_type="audio/pcm", sample_rate=16000, channels=2)

        rate, channels, frames = _read_wav(AudioConversionService.pcm_to_wav(buffer, 16000, 1))

        assert channels == 1
        assert frames.tolist() == [200, -100]

    def test_resampled_to_target_rate(self) -> None:
        samples = np.zeros(48000, dtype="<i2")
        buffer = AudioBuffer(data=samples.tobytes(), mime_type="audio/pcm;rate=48000")

        rate, _, frames = _read_wav(AudioConversionService.pcm_to_wav(buffer, 16000, 1))

        assert rate == 16000
        assert len(frames) == 16000

    def test_l16_is_big_endian(self) -> None:
        samples = np.array([256, -2], dtype=">i2")
        buffer = AudioBuffer(data=samples.tobytes(), mime_type="audio/L16;rate=16000")

        _, _, frames = _read_wav(AudioConversionService.pcm_to_wav(buffer, 16000, 1))

        assert frames.tolist() == [256, -2]

    def test_float32_is_scaled(self) -> None:
        samples = np.array([0.0, 1.0, -1.0, 2.0], dtype="<f4")
        buffer = AudioBuffer(data=samples.tobytes(), mime_type="audio/f32", sample_rate=16000, channels=1)

        _, _, frames = _read_wav(AudioConversionService.pcm_to_wav(buffer, 16000, 1))

        assert frames.tolist() == [0, 32767, -32767, 32767]

    def test_incomplete_frame_rejected(self) -> None:
        buffer = AudioBuffer(data=b"\x01", mime_type="audio/pcm")
        with pytest.raises(ValueError):
            AudioConversionService.pcm_to_wav(buffer, 16000, 1)


class TestCleanup:
    @pytest.mark.asyncio
    async def test_remove_deletes_once(self, conversion) -> None:
        result = await conversion.convert(AudioBuffer(data=make_wav_bytes(), mime_type="audio/wav"), "whispercpp")

        assert conversion.remove(result) is True
        assert not result.file_path.exists()
        assert conversion.remove(result) is False

    def test_cleanup_only_touches_matching_files(self, conversion, tmp_path) -> None:
        (tmp_path / "audio_1700000000000_abc123def456.wav").write_bytes(b"x")
        (tmp_path / "audio_1700000000001_0a1b2c.flac").write_bytes(b"x")
        (tmp_path / "notes.wav").write_bytes(b"keep")
        (tmp_path / "audio_latest.wav").write_bytes(b"keep")
        (tmp_path / "audio_1700000000000_abc.webm").write_bytes(b"keep")

        assert conversion.cleanup_temp_files() == 2
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "audio_1700000000000_abc.webm",
            "audio_latest.wav",
            "notes.wav",
        ]

    def test_cleanup_continues_past_delete_failures(self, conversion, tmp_path) -> None:
        names = [
            "audio_1700000000000_aaa111.wav",
            "audio_1700000000001_bbb222.wav",
            "audio_1700000000002_ccc333.flac",
        ]
        for name in names:
            (tmp_path / name).write_bytes(b"x")
        locked = str(tmp_path / names[1])
        real_unlink = os.unlink

        def flaky_unlink(path, *args, **kwargs):
            if str(path) == locked:
                raise PermissionError(13, "Permission denied", path)
            return real_unlink(path, *args, **kwargs)

        with patch("voicenotes.audio.conversion.os.unlink", side_effect=flaky_unlink):
            deleted = conversion.cleanup_temp_files()

        assert deleted == 2
        assert [p.name for p in tmp_path.iterdir()] == [names[1]]

    def test_cleanup_missing_directory(self, tmp_path) -> None:
        conversion = AudioConversionService(temp_dir=str(tmp_path / "missing"))
        assert conversion.cleanup_temp_files() == 0

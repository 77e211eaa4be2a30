"""Unit tests for the OpenAI providers and OpenAI error mapping."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from voicenotes.core.errors import ProviderError, ProviderErrorCode
from voicenotes.core.schemas import AudioBuffer, SummarizationOptions, SummaryStyle, TranscriptionOptions
from voicenotes.providers.openai_errors import map_openai_error
from voicenotes.providers.openai_summarizer import OpenAISummarizer
from voicenotes.providers.openai_transcriber import OpenAITranscriber

from tests.conftest import make_wav_bytes

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")


def _status_error(cls, status: int, body=None, headers=None):
    response = httpx.Response(status, request=_REQUEST, headers=headers or {})
    return cls(f"Error code: {status}", response=response, body=body)


def _mock_client() -> MagicMock:
    client = MagicMock()
    client.models.list = AsyncMock(return_value=[])
    client.audio.transcriptions.create = AsyncMock()
    client.chat.completions.create = AsyncMock()
    client.close = AsyncMock()
    return client


class TestMapOpenAIError:
    def test_timeout(self) -> None:
        error = map_openai_error(openai.APITimeoutError(request=_REQUEST), "openai-whisper", "transcription")
        assert error.code == ProviderErrorCode.CONNECTION_TIMEOUT

    def test_connection(self) -> None:
        error = map_openai_error(openai.APIConnectionError(request=_REQUEST), "openai-whisper", "transcription")
        assert error.code == ProviderErrorCode.CONNECTION_FAILED

    def test_authentication(self) -> None:
        error = map_openai_error(_status_error(openai.AuthenticationError, 401), "openai-gpt4o", "summary")
        assert error.code == ProviderErrorCode.AUTH_INVALID
        assert "OPENAI_API_KEY" in error.hint

    def test_rate_limit_with_retry_after(self) -> None:
        exc = _status_error(openai.RateLimitError, 429, headers={"retry-after": "7"})
        error = map_openai_error(exc, "openai-gpt4o", "summary")
        assert error.code == ProviderErrorCode.RATE_LIMITED
        assert error.metadata["retry_after"] == 7.0

    def test_quota(self) -> None:
        exc = _status_error(openai.RateLimitError, 429, body={"code": "insufficient_quota", "message": "quota"})
        assert map_openai_error(exc, "openai-gpt4o", "summary").code == ProviderErrorCode.QUOTA_EXCEEDED

    @pytest.mark.parametrize("status,code", [
        (413, ProviderErrorCode.FILE_TOO_LARGE),
        (400, ProviderErrorCode.FILE_INVALID),
        (503, ProviderErrorCode.PROVIDER_UNAVAILABLE),
        (418, ProviderErrorCode.PROCESSING_FAILED),
    ])
    def test_status_codes(self, status, code) -> None:
        error = map_openai_error(_status_error(openai.APIStatusError, status), "openai-whisper", "upload", size_mb=3.25)
        assert error.code == code
        assert error.metadata["http_status"] == status

    def test_file_too_large_reports_size(self) -> None:
        error = map_openai_error(_status_error(openai.APIStatusError, 413), "openai-whisper", "upload", size_mb=26.04)
        assert "26.0MB" in error.message
        assert error.metadata["file_size_mb"] == 26.0


class TestOpenAITranscriber:
    @pytest.mark.asyncio
    async def test_check_without_key(self) -> None:
        health = await OpenAITranscriber().check()
        assert health.ok is False
        assert "missing" in health.details

    @pytest.mark.asyncio
    async def test_check_with_invalid_key(self) -> None:
        client = _mock_client()
        client.models.list.side_effect = _status_error(openai.AuthenticationError, 401)

        health = await OpenAITranscriber(client=client).check()

        assert health.ok is False
        assert health.details == "Invalid OpenAI API key"

    @pytest.mark.asyncio
    async def test_check_ok(self) -> None:
        health = await OpenAITranscriber(client=_mock_client()).check()
        assert health.ok is True
        assert "segments" in health.capabilities

    @pytest.mark.asyncio
    async def test_transcribe_without_key(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            await OpenAITranscriber().transcribe(AudioBuffer(data=b"x", mime_type="audio/webm"))
        assert exc_info.value.code == ProviderErrorCode.AUTH_MISSING

    @pytest.mark.asyncio
    async def test_webm_buffer_is_uploaded_directly(self) -> None:
        client = _mock_client()
        client.audio.transcriptions.create.return_value = SimpleNamespace(
            text="Hello there. General Kenobi.",
            language="english",
            duration=3.5,
            segments=[
                SimpleNamespace(text=" General Kenobi.", start=1.2, end=3.5, avg_logprob=-0.2),
                SimpleNamespace(text=" Hello there.", start=0.0, end=1.3, avg_logprob=-0.1),
            ],
        )
        transcriber = OpenAITranscriber(client=client)

        result = await transcriber.transcribe(
            AudioBuffer(data=b"webm-data", mime_type="audio/webm;codecs=opus"),
            TranscriptionOptions(language="en"),
        )

        kwargs = client.audio.transcriptions.create.call_args.kwargs
        assert kwargs["file"] == ("recording.webm", b"webm-data", "audio/webm")
        assert kwargs["model"] == "whisper-1"
        assert kwargs["response_format"] == "verbose_json"
        assert kwargs["language"] == "en"

        assert result.text == "Hello there. General Kenobi."
        assert result.lang == "english"
        assert [s.text for s in result.segments] == ["Hello there.", "General Kenobi."]
        assert result.segments[1].start == 1.3
        assert result.metadata["duration"] == 3.5
        assert result.metadata["model"] == "whisper-1"

    @pytest.mark.asyncio
    async def test_path_is_read_and_uploaded(self, tmp_path) -> None:
        audio = tmp_path / "memo.wav"
        audio.write_bytes(make_wav_bytes())
        client = _mock_client()
        client.audio.transcriptions.create.return_value = "plain text"

        result = await OpenAITranscriber(client=client).transcribe(audio, TranscriptionOptions(response_format="text"))

        file_arg = client.audio.transcriptions.create.call_args.kwargs["file"]
        assert file_arg[0] == "memo.wav"
        assert result.text == "plain text"
        assert result.segments == []

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ProviderError) as exc_info:
            await OpenAITranscriber(client=_mock_client()).transcribe(tmp_path / "missing.wav")
        assert exc_info.value.code == ProviderErrorCode.FILE_NOT_FOUND

    @pytest.mark.asyncio
    async def test_oversized_upload_rejected_before_request(self) -> None:
        client = _mock_client()
        transcriber = OpenAITranscriber(client=client)
        big = AudioBuffer(data=b"\x00" * (OpenAITranscriber.MAX_FILE_SIZE + 1), mime_type="audio/webm")

        with pytest.raises(ProviderError) as exc_info:
            await transcriber.transcribe(big)

        assert exc_info.value.code == ProviderErrorCode.FILE_TOO_LARGE
        client.audio.transcriptions.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sdk_errors_are_mapped(self) -> None:
        client = _mock_client()
        client.audio.transcriptions.create.side_effect = _status_error(openai.RateLimitError, 429)

        with pytest.raises(ProviderError) as exc_info:
            await OpenAITranscriber(client=client).transcribe(AudioBuffer(data=b"x", mime_type="audio/mp4"))

        assert exc_info.value.code == ProviderErrorCode.RATE_LIMITED
        assert exc_info.value.provider_id == "openai-whisper"


class TestOpenAISummarizer:
    @staticmethod
    def _completion(content, total_tokens=120):
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
            usage=SimpleNamespace(total_tokens=total_tokens),
        )

    @pytest.mark.asyncio
    async def test_summarize(self) -> None:
        client = _mock_client()
        client.chat.completions.create.return_value = self._completion("Short summary")
        summarizer = OpenAISummarizer(client=client, max_tokens=1500)

        result = await summarizer.summarize("a long transcript", SummarizationOptions(style=SummaryStyle.DETAILED))

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["max_tokens"] == 1500
        assert kwargs["temperature"] == 0.3
        assert kwargs["messages"][0]["role"] == "user"
        assert kwargs["messages"][0]["content"].endswith("**Transcript:**\na long transcript")

        assert result.summary == "Short summary"
        assert result.tokens == 120
        assert result.metadata["original_length"] == len("a long transcript")
        assert result.metadata["model"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_empty_response_fails(self) -> None:
        client = _mock_client()
        client.chat.completions.create.return_value = self._completion("  ")

        with pytest.raises(ProviderError) as exc_info:
            await OpenAISummarizer(client=client).summarize("text")

        assert exc_info.value.code == ProviderErrorCode.PROCESSING_FAILED

    @pytest.mark.asyncio
    async def test_sdk_errors_are_mapped(self) -> None:
        client = _mock_client()
        client.chat.completions.create.side_effect = _status_error(openai.InternalServerError, 502)

        with pytest.raises(ProviderError) as exc_info:
            await OpenAISummarizer(client=client).summarize("text")

        assert exc_info.value.code == ProviderErrorCode.PROVIDER_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        client = _mock_client()
        await OpenAISummarizer(client=client).close()
        client.close.assert_awaited_once()

"""Unit tests for the provider error taxonomy."""

import pytest

from voicenotes.core.errors import DEFAULT_HINTS, ProviderError, ProviderErrorCode, wrap_exception


class TestProviderError:
    def test_every_code_has_a_default_hint(self) -> None:
        for code in ProviderErrorCode:
            error = ProviderError(code, "boom")
            assert error.hint, code
            assert error.hint == DEFAULT_HINTS[code]

    def test_explicit_hint_wins(self) -> None:
        error = ProviderError(ProviderErrorCode.INTERNAL_ERROR, "boom", hint="do this")
        assert error.hint == "do this"

    def test_str_includes_provider_id(self) -> None:
        error = ProviderError.rate_limited("openai-whisper", retry_after=3)
        assert str(error).startswith("[openai-whisper] ")
        assert error.metadata["retry_after"] == 3

    def test_classification(self) -> None:
        assert ProviderError.config_missing("openai_api_key").is_configuration_error
        assert ProviderError.provider_not_found("x", "transcriber").is_configuration_error
        assert ProviderError.provider_already_registered("x").is_configuration_error
        assert ProviderError.invalid_provider_type("x", "weird").is_configuration_error
        assert not ProviderError.connection_failed("x").is_configuration_error

        assert ProviderError.rate_limited("x").is_retryable
        assert ProviderError.connection_timeout("x", 10).is_retryable
        assert not ProviderError.auth_invalid("x").is_retryable
        assert not ProviderError.processing_failed("op", "x").is_retryable

    def test_unsupported_format_lists_accepted_formats(self) -> None:
        error = ProviderError.unsupported_format("webm", provider_id="whisper-server")
        assert error.code == ProviderErrorCode.UNSUPPORTED_FORMAT
        assert error.metadata["supported_formats"] == ["wav"]
        assert error.metadata["conversion_available"] is True
        assert "WAV" in error.hint
        assert "convert" in error.hint

    def test_unsupported_format_without_conversion(self) -> None:
        error = ProviderError.unsupported_format("aiff", provider_id="whispercpp", conversion_available=False)
        assert error.metadata["conversion_available"] is False
        assert "convert" not in error.hint

    def test_file_too_large_reports_sizes(self) -> None:
        error = ProviderError.file_too_large(30 * 1024 * 1024, 25 * 1024 * 1024, provider_id="openai-whisper")
        assert error.code == ProviderErrorCode.FILE_TOO_LARGE
        assert "30.0MB" in error.message
        assert error.metadata["limit_bytes"] == 25 * 1024 * 1024

    def test_provider_unavailable_uses_details_as_hint(self) -> None:
        error = ProviderError.provider_unavailable("whispercpp", "model not found")
        assert error.hint == "model not found"

    def test_cause_is_chained(self) -> None:
        cause = OSError("disk full")
        error = ProviderError.processing_failed("audio conversion", "whispercpp", cause=cause)
        assert error.__cause__ is cause
        assert "disk full" in error.message

    def test_fallback_failed_aggregates_both_errors(self) -> None:
        primary = ProviderError.connection_timeout("whispercpp", 600, "transcription")
        fallback = ProviderError.auth_invalid("openai-whisper")

        error = ProviderError.fallback_failed("transcription", primary, fallback)

        assert error.errors == (primary, fallback)
        assert error.code == ProviderErrorCode.AUTH_INVALID
        assert "whispercpp" in error.message
        assert "openai-whisper" in error.message
        assert error.provider_ids == ("openai-whisper", "whispercpp")
        assert error.metadata["provider_ids"] == ["whispercpp", "openai-whisper"]
        assert [e["code"] for e in error.metadata["errors"]] == ["CONNECTION_TIMEOUT", "AUTH_INVALID"]

    def test_to_dict_includes_chain(self) -> None:
        primary = ProviderError.rate_limited("a")
        fallback = ProviderError.rate_limited("b")
        data = ProviderError.fallback_failed("summarization", primary, fallback).to_dict()
        assert data["code"] == "RATE_LIMITED"
        assert len(data["errors"]) == 2
        assert data["hint"]

    def test_wrap_exception(self) -> None:
        typed = ProviderError.rate_limited("a")
        assert wrap_exception(typed, "op") is typed

        wrapped = wrap_exception(KeyError("segments"), "transcription", "whispercpp")
        assert wrapped.code == ProviderErrorCode.INTERNAL_ERROR
        assert wrapped.provider_id == "whispercpp"
        assert wrapped.metadata["exception_type"] == "KeyError"

    def test_raises_like_an_exception(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            raise ProviderError.file_not_found("/tmp/missing.wav")
        assert exc_info.value.code == ProviderErrorCode.FILE_NOT_FOUND

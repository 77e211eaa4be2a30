"""Translate OpenAI SDK exceptions into ProviderErrors."""

from typing import Optional

import openai

from voicenotes.core.errors import ProviderError, ProviderErrorCode


def _retry_after(exc: openai.APIStatusError) -> Optional[float]:
    response = getattr(exc, "response", None)
    value = response.headers.get("retry-after") if response is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def map_openai_error(exc: Exception, provider_id: str, operation: str, size_mb: Optional[float] = None) -> ProviderError:
    """
    Map an OpenAI SDK exception to the most specific ProviderError.

    Args:
        exc: Exception raised by the SDK
        provider_id: Provider that made the call
        operation: Operation name used in messages
        size_mb: Upload size, reported on size and format errors

    Returns:
        ProviderError
    """
    if isinstance(exc, ProviderError):
        return exc

    # APITimeoutError subclasses APIConnectionError
    if isinstance(exc, openai.APITimeoutError):
        return ProviderError(
            ProviderErrorCode.CONNECTION_TIMEOUT,
            f"OpenAI request timed out during {operation}",
            provider_id=provider_id,
            cause=exc,
        )
    if isinstance(exc, openai.APIConnectionError):
        return ProviderError.connection_failed(provider_id, cause=exc)

    if isinstance(exc, openai.AuthenticationError):
        return ProviderError.auth_invalid(provider_id, hint="Check OPENAI_API_KEY in your .env file.")

    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota":
            return ProviderError.quota_exceeded(provider_id, limit="OpenAI account quota")
        return ProviderError.rate_limited(provider_id, retry_after=_retry_after(exc))

    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        size_text = f" ({size_mb:.1f}MB)" if size_mb is not None else ""
        metadata = {"http_status": status, "operation": operation}
        if size_mb is not None:
            metadata["file_size_mb"] = round(size_mb, 1)

        if status == 401:
            return ProviderError.auth_invalid(provider_id, hint="Check OPENAI_API_KEY in your .env file.")
        if status == 413:
            return ProviderError(
                ProviderErrorCode.FILE_TOO_LARGE,
                f"Audio file is too large to transcribe{size_text}",
                hint="Record shorter segments (under 10 minutes) or break long recordings into smaller parts.",
                metadata=metadata,
                provider_id=provider_id,
                cause=exc,
            )
        if status == 400:
            return ProviderError(
                ProviderErrorCode.FILE_INVALID,
                f"OpenAI rejected the request during {operation}: {exc.message}",
                hint="The audio format may not be supported or the file may be corrupted. Try re-recording.",
                metadata=metadata,
                provider_id=provider_id,
                cause=exc,
            )
        if status >= 500:
            return ProviderError(
                ProviderErrorCode.PROVIDER_UNAVAILABLE,
                f"OpenAI service is temporarily unavailable ({status})",
                hint="Please try again in a few minutes.",
                metadata=metadata,
                provider_id=provider_id,
                cause=exc,
            )
        return ProviderError.processing_failed(operation, provider_id=provider_id, cause=exc, metadata=metadata)

    return ProviderError.processing_failed(operation, provider_id=provider_id, cause=exc)

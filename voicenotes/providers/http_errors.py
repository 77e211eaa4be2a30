"""Translate aiohttp failures and HTTP statuses into ProviderErrors."""

import asyncio
from typing import Optional

import aiohttp

from voicenotes.core.errors import ProviderError, ProviderErrorCode


def map_aiohttp_error(exc: Exception, provider_id: str, operation: str,
                      timeout_seconds: Optional[float] = None) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return ProviderError.connection_timeout(provider_id, timeout_seconds or 0, operation)
    if isinstance(exc, aiohttp.ClientConnectionError):
        return ProviderError.connection_failed(provider_id, cause=exc)
    return ProviderError.processing_failed(operation, provider_id=provider_id, cause=exc)


def error_for_status(status: int, body: str, provider_id: str, operation: str) -> ProviderError:
    """Map a failed HTTP response of a local server to a ProviderError."""
    metadata = {"http_status": status, "response": body[:500], "operation": operation}
    if status == 404:
        return ProviderError(
            ProviderErrorCode.PROVIDER_UNAVAILABLE,
            f"{operation} endpoint not found on {provider_id} ({status})",
            hint="Check the configured host and port, and the server version.",
            metadata=metadata,
            provider_id=provider_id,
        )
    if status == 413:
        return ProviderError(
            ProviderErrorCode.FILE_TOO_LARGE,
            f"{provider_id} rejected the upload as too large",
            metadata=metadata,
            provider_id=provider_id,
        )
    if status == 429:
        return ProviderError.rate_limited(provider_id)
    if status >= 500:
        return ProviderError(
            ProviderErrorCode.PROVIDER_UNAVAILABLE,
            f"{provider_id} failed during {operation} ({status})",
            hint="Check the server logs.",
            metadata=metadata,
            provider_id=provider_id,
        )
    return ProviderError.processing_failed(operation, provider_id=provider_id, metadata=metadata)

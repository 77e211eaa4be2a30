"""Typed error taxonomy shared by every component."""

from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from voicenotes.core.formats import accepted_formats


class ProviderErrorCode(str, Enum):
    """Closed set of failure codes."""
    # Configuration
    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_MISSING = "CONFIG_MISSING"

    # Connection
    CONNECTION_FAILED = "CONNECTION_FAILED"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"

    # Authentication
    AUTH_INVALID = "AUTH_INVALID"
    AUTH_EXPIRED = "AUTH_EXPIRED"
    AUTH_MISSING = "AUTH_MISSING"

    # Quota / limits
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"

    # Files
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_INVALID = "FILE_INVALID"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"

    # Processing
    PROCESSING_FAILED = "PROCESSING_FAILED"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    UNSUPPORTED_LANGUAGE = "UNSUPPORTED_LANGUAGE"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"

    # Registry
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    PROVIDER_ALREADY_REGISTERED = "PROVIDER_ALREADY_REGISTERED"
    INVALID_PROVIDER_TYPE = "INVALID_PROVIDER_TYPE"


_CONFIGURATION_CODES = frozenset({
    ProviderErrorCode.CONFIG_INVALID,
    ProviderErrorCode.CONFIG_MISSING,
    ProviderErrorCode.PROVIDER_NOT_FOUND,
    ProviderErrorCode.PROVIDER_ALREADY_REGISTERED,
    ProviderErrorCode.INVALID_PROVIDER_TYPE,
})

_RETRYABLE_CODES = frozenset({
    ProviderErrorCode.RATE_LIMITED,
    ProviderErrorCode.CONNECTION_TIMEOUT,
})

DEFAULT_HINTS: Dict[ProviderErrorCode, str] = {
    ProviderErrorCode.CONFIG_INVALID: "Check the provider settings in your .env file.",
    ProviderErrorCode.CONFIG_MISSING: "Complete the provider configuration in your .env file.",
    ProviderErrorCode.CONNECTION_FAILED: "Check your network connection and the provider address.",
    ProviderErrorCode.CONNECTION_TIMEOUT: "The provider did not answer in time. Try again or raise PROVIDER_TIMEOUT_SECONDS.",
    ProviderErrorCode.AUTH_INVALID: "Check your API key or credentials.",
    ProviderErrorCode.AUTH_EXPIRED: "Your credentials have expired. Renew them and try again.",
    ProviderErrorCode.AUTH_MISSING: "Set the API key for this provider.",
    ProviderErrorCode.QUOTA_EXCEEDED: "Your usage quota is exhausted. Wait or upgrade your plan.",
    ProviderErrorCode.RATE_LIMITED: "Rate limit exceeded. Wait a moment before trying again.",
    ProviderErrorCode.FILE_NOT_FOUND: "Check that the file exists and the path is correct.",
    ProviderErrorCode.FILE_INVALID: "The audio file looks corrupted. Try recording again.",
    ProviderErrorCode.FILE_TOO_LARGE: "Record shorter segments or use lower quality settings.",
    ProviderErrorCode.PROCESSING_FAILED: "Check the logs for details about the failure.",
    ProviderErrorCode.UNSUPPORTED_FORMAT: "Convert the audio to a format the provider supports.",
    ProviderErrorCode.UNSUPPORTED_LANGUAGE: "Choose a language the provider supports.",
    ProviderErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Check the logs.",
    ProviderErrorCode.PROVIDER_UNAVAILABLE: "The provider is unavailable. Try again later or select another provider.",
    ProviderErrorCode.PROVIDER_NOT_FOUND: "Check that the provider is registered and the id is correct.",
    ProviderErrorCode.PROVIDER_ALREADY_REGISTERED: "Use a unique id for each provider.",
    ProviderErrorCode.INVALID_PROVIDER_TYPE: "Providers must be tagged as 'transcriber' or 'summarizer'.",
}


class ProviderError(Exception):
    """The only error type crossing component boundaries."""

    def __init__(
        self,
        code: ProviderErrorCode,
        message: str,
        hint: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        provider_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
        errors: Iterable["ProviderError"] = ()
    ):
        """
        Initialize provider error.

        Args:
            code: Error code from the closed enumeration
            message: Human readable message
            hint: Actionable remediation text (defaults per code)
            metadata: Structured context
            provider_id: Provider that raised the error
            cause: Originating exception
            errors: Chained errors for aggregated failures
        """
        super().__init__(message)
        self.code = ProviderErrorCode(code)
        self.message = message
        self.hint = hint or DEFAULT_HINTS.get(self.code)
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.provider_id = provider_id
        self.errors: Tuple["ProviderError", ...] = tuple(errors)
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        if self.provider_id:
            return f"[{self.provider_id}] {self.message}"
        return self.message

    def __repr__(self) -> str:
        return f"ProviderError(code={self.code.value!r}, message={self.message!r}, provider_id={self.provider_id!r})"

    @property
    def is_configuration_error(self) -> bool:
        """Configuration errors are surfaced immediately, never retried."""
        return self.code in _CONFIGURATION_CODES

    @property
    def is_retryable(self) -> bool:
        """Whether the same provider may be retried before falling back."""
        return self.code in _RETRYABLE_CODES

    @property
    def provider_ids(self) -> Tuple[str, ...]:
        """All provider ids referenced by this error and its chain."""
        ids = []
        for err in (self, *self.errors):
            if err.provider_id and err.provider_id not in ids:
                ids.append(err.provider_id)
        return tuple(ids)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for logging and telemetry."""
        data = {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "hint": self.hint,
            "provider_id": self.provider_id,
            "metadata": self.metadata,
        }
        if self.errors:
            data["errors"] = [err.to_dict() for err in self.errors]
        return data

    # Construction helpers

    @classmethod
    def config_invalid(cls, message: str, hint: Optional[str] = None,
                       metadata: Optional[Dict[str, Any]] = None,
                       provider_id: Optional[str] = None) -> "ProviderError":
        return cls(ProviderErrorCode.CONFIG_INVALID, message, hint=hint, metadata=metadata, provider_id=provider_id)

    @classmethod
    def config_missing(cls, key: str, provider_id: Optional[str] = None) -> "ProviderError":
        return cls(
            ProviderErrorCode.CONFIG_MISSING,
            f"Missing configuration: {key}",
            hint=f"Make sure '{key}' is set in your .env file or environment.",
            metadata={"missing_key": key},
            provider_id=provider_id,
        )

    @classmethod
    def connection_failed(cls, provider_id: str, cause: Optional[BaseException] = None) -> "ProviderError":
        details = f": {cause}" if cause else ""
        return cls(
            ProviderErrorCode.CONNECTION_FAILED,
            f"Could not connect to provider {provider_id}{details}",
            provider_id=provider_id,
            cause=cause,
        )

    @classmethod
    def connection_timeout(cls, provider_id: str, timeout_seconds: float,
                           operation: str = "request") -> "ProviderError":
        return cls(
            ProviderErrorCode.CONNECTION_TIMEOUT,
            f"Provider {provider_id} timed out after {timeout_seconds:g}s during {operation}",
            metadata={"timeout_seconds": timeout_seconds, "operation": operation},
            provider_id=provider_id,
        )

    @classmethod
    def auth_invalid(cls, provider_id: str, hint: Optional[str] = None) -> "ProviderError":
        return cls(
            ProviderErrorCode.AUTH_INVALID,
            f"Invalid authentication for provider {provider_id}",
            hint=hint,
            provider_id=provider_id,
        )

    @classmethod
    def auth_missing(cls, provider_id: str, key: str) -> "ProviderError":
        return cls(
            ProviderErrorCode.AUTH_MISSING,
            f"No credentials configured for provider {provider_id}",
            hint=f"Set {key.upper()} in your .env file.",
            metadata={"missing_key": key},
            provider_id=provider_id,
        )

    @classmethod
    def quota_exceeded(cls, provider_id: str, limit: Optional[str] = None) -> "ProviderError":
        hint = f"Limit: {limit}. Wait or upgrade your plan." if limit else None
        return cls(
            ProviderErrorCode.QUOTA_EXCEEDED,
            f"Quota exceeded for provider {provider_id}",
            hint=hint,
            metadata={"limit": limit},
            provider_id=provider_id,
        )

    @classmethod
    def rate_limited(cls, provider_id: str, retry_after: Optional[float] = None) -> "ProviderError":
        return cls(
            ProviderErrorCode.RATE_LIMITED,
            f"Rate limit exceeded for provider {provider_id}",
            metadata={"retry_after": retry_after},
            provider_id=provider_id,
        )

    @classmethod
    def file_not_found(cls, file_path: str, provider_id: Optional[str] = None) -> "ProviderError":
        return cls(
            ProviderErrorCode.FILE_NOT_FOUND,
            f"File not found: {file_path}",
            metadata={"file_path": str(file_path)},
            provider_id=provider_id,
        )

    @classmethod
    def file_too_large(cls, size_bytes: int, limit_bytes: int, provider_id: Optional[str] = None) -> "ProviderError":
        size_mb = size_bytes / (1024 * 1024)
        limit_mb = limit_bytes / (1024 * 1024)
        return cls(
            ProviderErrorCode.FILE_TOO_LARGE,
            f"Audio file is too large ({size_mb:.1f}MB). Limit is {limit_mb:.0f}MB.",
            hint="Record shorter segments (under 10 minutes) or use lower quality settings.",
            metadata={"size_bytes": size_bytes, "limit_bytes": limit_bytes},
            provider_id=provider_id,
        )

    @classmethod
    def unsupported_format(cls, fmt: str, provider_id: Optional[str] = None,
                           conversion_available: bool = True) -> "ProviderError":
        supported = accepted_formats(provider_id)
        hint = f"Formats supported by {provider_id or 'this provider'}: {', '.join(f.upper() for f in supported)}."
        if conversion_available:
            hint += " The audio conversion service can convert your recording automatically."
        return cls(
            ProviderErrorCode.UNSUPPORTED_FORMAT,
            f"Unsupported format: {fmt}",
            hint=hint,
            metadata={
                "format": fmt,
                "supported_formats": supported,
                "conversion_available": conversion_available,
            },
            provider_id=provider_id,
        )

    @classmethod
    def provider_not_found(cls, provider_id: str, kind: Optional[str] = None) -> "ProviderError":
        suffix = f" (type: {kind})" if kind else ""
        return cls(
            ProviderErrorCode.PROVIDER_NOT_FOUND,
            f"Provider not found: {provider_id}{suffix}",
            metadata={"provider_id": provider_id, "kind": kind},
        )

    @classmethod
    def provider_already_registered(cls, provider_id: str) -> "ProviderError":
        return cls(
            ProviderErrorCode.PROVIDER_ALREADY_REGISTERED,
            f"A provider with id '{provider_id}' is already registered",
            metadata={"provider_id": provider_id},
            provider_id=provider_id,
        )

    @classmethod
    def invalid_provider_type(cls, provider_id: Optional[str], kind: Any = None) -> "ProviderError":
        return cls(
            ProviderErrorCode.INVALID_PROVIDER_TYPE,
            f"Unsupported provider type for {provider_id}: {kind!r}",
            metadata={"kind": str(kind) if kind is not None else None},
            provider_id=provider_id,
        )

    @classmethod
    def processing_failed(cls, operation: str, provider_id: Optional[str] = None,
                          cause: Optional[BaseException] = None,
                          metadata: Optional[Dict[str, Any]] = None,
                          hint: Optional[str] = None) -> "ProviderError":
        details = f": {cause}" if cause else ""
        data = {"operation": operation}
        data.update(metadata or {})
        return cls(
            ProviderErrorCode.PROCESSING_FAILED,
            f"Processing failed: {operation}{details}",
            hint=hint,
            metadata=data,
            provider_id=provider_id,
            cause=cause,
        )

    @classmethod
    def provider_unavailable(cls, provider_id: str, details: Optional[str] = None) -> "ProviderError":
        return cls(
            ProviderErrorCode.PROVIDER_UNAVAILABLE,
            f"Provider {provider_id} is unavailable",
            hint=details,
            metadata={"details": details},
            provider_id=provider_id,
        )

    @classmethod
    def internal_error(cls, operation: str, provider_id: Optional[str] = None,
                       cause: Optional[BaseException] = None) -> "ProviderError":
        details = f": {cause}" if cause else ""
        return cls(
            ProviderErrorCode.INTERNAL_ERROR,
            f"Unexpected error during {operation}{details}",
            metadata={"operation": operation, "exception_type": type(cause).__name__ if cause else None},
            provider_id=provider_id,
            cause=cause,
        )

    @classmethod
    def fallback_failed(cls, stage: str, primary: "ProviderError", fallback: "ProviderError") -> "ProviderError":
        """
        Aggregate a primary failure and the failure of its fallback.

        Args:
            stage: Stage name ("transcription" or "summarization")
            primary: Error from the originally selected provider
            fallback: Error from the default cloud provider

        Returns:
            Error carrying both failures and both provider ids
        """
        message = (
            f"{stage.capitalize()} failed on '{primary.provider_id}' ({primary.code.value}) "
            f"and on fallback '{fallback.provider_id}' ({fallback.code.value})"
        )
        return cls(
            fallback.code,
            message,
            hint=fallback.hint or primary.hint,
            metadata={
                "stage": stage,
                "provider_ids": [primary.provider_id, fallback.provider_id],
                "errors": [primary.to_dict(), fallback.to_dict()],
            },
            provider_id=fallback.provider_id,
            cause=fallback,
            errors=(primary, fallback),
        )


def wrap_exception(exc: BaseException, operation: str, provider_id: Optional[str] = None) -> ProviderError:
    """Return ``exc`` unchanged if typed, otherwise wrap it as an internal error."""
    if isinstance(exc, ProviderError):
        return exc
    return ProviderError.internal_error(operation, provider_id=provider_id, cause=exc)

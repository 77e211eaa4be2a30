"""Telemetry sinks: where session stages and pipeline events are delivered."""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set
import logging

import aiohttp
import sentry_sdk

if TYPE_CHECKING:
    from voicenotes.config.settings import Settings

logger = logging.getLogger(__name__)


class TelemetrySink(ABC):
    """Receives telemetry events as plain dicts."""

    @abstractmethod
    def emit(self, event: Dict[str, Any]) -> None:
        """Deliver one event. Must not block the caller."""
        pass

    async def flush(self):
        """Wait for in-flight deliveries."""
        pass

    async def close(self):
        """Release resources."""
        pass


class LoggingSink(TelemetrySink):
    """Writes events to the application log."""

    def __init__(self, logger_name: str = "voicenotes.telemetry"):
        self._logger = logging.getLogger(logger_name)

    def emit(self, event: Dict[str, Any]) -> None:
        level = logging.ERROR if event.get("level") == "error" else logging.INFO
        self._logger.log(level, f"{event.get('event')}: {json.dumps(event, default=str)}")


class MemorySink(TelemetrySink):
    """Keeps events in memory, for inspection by the host application."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def emit(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    def of_type(self, name: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e.get("event") == name]


class HttpTelemetrySink(TelemetrySink):
    """Posts events as JSON to an HTTP collector without blocking the pipeline."""

    def __init__(self, endpoint: str, enabled: bool = True, timeout_seconds: float = 5.0):
        """
        Initialize HTTP sink.

        Args:
            endpoint: Collector URL
            enabled: Whether events are sent at all
            timeout_seconds: Per-request timeout
        """
        self.endpoint = endpoint
        self.enabled = enabled
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self._pending: Set[asyncio.Task] = set()

    def emit(self, event: Dict[str, Any]) -> None:
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, dropping telemetry event {event.get('event')}")
            return

        task = loop.create_task(self._post(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _post(self, event: Dict[str, Any]):
        try:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(timeout=self.timeout)
            payload = json.loads(json.dumps(event, default=str))
            async with self._session.post(self.endpoint, json=payload) as response:
                if response.status >= 400:
                    logger.warning(f"Telemetry endpoint returned {response.status} for {event.get('event')}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Failed to deliver telemetry event {event.get('event')}: {e}")

    async def flush(self):
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self):
        await self.flush()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class PipelineEventError(Exception):
    """Exception raised into Sentry for a failed stage or pipeline error event."""

    def __init__(self, event_name: str, message: str, code: Optional[str] = None):
        super().__init__(f"{event_name}: {message}")
        self.event_name = event_name
        self.code = code


class SentryTelemetrySink(TelemetrySink):
    """
    Reports pipeline failures to Sentry or a Sentry-compatible server (GlitchTip).

    Error events become captured exceptions with the session tags and the
    event as scope context. The aggregate ``pipeline_complete`` and
    ``pipeline_abandoned`` events are captured as messages. Everything else
    is recorded as a breadcrumb for the next report.
    """

    MESSAGE_EVENTS = ("pipeline_complete", "pipeline_abandoned")
    TAG_KEYS = (
        "pipeline_session_id", "provider", "recording_provider",
        "transcription_provider", "summarization_provider", "stage",
    )

    def __init__(
        self,
        dsn: str,
        enabled: bool = True,
        environment: str = "production",
        traces_sample_rate: float = 0.1
    ):
        """
        Initialize the Sentry sink.

        Args:
            dsn: Project DSN
            enabled: Whether events are reported at all
            environment: Sentry environment name
            traces_sample_rate: Fraction of transactions to trace
        """
        self.enabled = enabled and bool(dsn)
        if self.enabled:
            sentry_sdk.init(dsn=dsn, environment=environment, traces_sample_rate=traces_sample_rate)
            sentry_sdk.set_tag("app", "voicenotes")

    def emit(self, event: Dict[str, Any]) -> None:
        if not self.enabled:
            return

        name = event.get("event", "")
        level = event.get("level", "info")
        context = json.loads(json.dumps(event, default=str))

        if level == "error" and (name.endswith("_error") or event.get("error")):
            with sentry_sdk.new_scope() as scope:
                self._apply_scope(scope, event, context)
                details = event.get("error_details") or {}
                sentry_sdk.capture_exception(
                    PipelineEventError(name, str(event.get("error") or name), details.get("code"))
                )
        elif name in self.MESSAGE_EVENTS:
            with sentry_sdk.new_scope() as scope:
                self._apply_scope(scope, event, context)
                sentry_sdk.capture_message(name, level=level)
        else:
            sentry_sdk.add_breadcrumb(category="pipeline", message=name, level=level, data=context)

    def _apply_scope(self, scope, event: Dict[str, Any], context: Dict[str, Any]):
        for key in self.TAG_KEYS:
            if event.get(key):
                scope.set_tag(key, str(event[key]))
        scope.set_context("pipeline", context)

    async def flush(self):
        if self.enabled:
            await asyncio.to_thread(sentry_sdk.flush, 2.0)

    async def close(self):
        await self.flush()


def build_sinks(settings: "Settings") -> List[TelemetrySink]:
    """
    Build telemetry sinks from settings.

    Events are always logged. When telemetry is enabled, a DSN adds the
    Sentry/GlitchTip sink and an endpoint adds the JSON HTTP sink.
    """
    sinks: List[TelemetrySink] = [LoggingSink()]
    if not settings.telemetry_enabled:
        return sinks

    if settings.telemetry_dsn:
        sinks.append(SentryTelemetrySink(settings.telemetry_dsn, enabled=True))
        logger.info("Error tracking enabled (Sentry DSN configured)")
    if settings.telemetry_endpoint:
        sinks.append(HttpTelemetrySink(settings.telemetry_endpoint, enabled=True))
        logger.info(f"Telemetry enabled: {settings.telemetry_endpoint}")
    if len(sinks) == 1:
        logger.warning("Telemetry enabled but no DSN or endpoint configured")
    return sinks

"""Session telemetry: correlates record -> transcribe -> summarize into one session."""

import time
import uuid
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional
import logging

from voicenotes.core.schemas import PipelineSession, Stage, StageType
from voicenotes.telemetry.sinks import TelemetrySink

logger = logging.getLogger(__name__)


def _epoch_ms() -> float:
    return time.time() * 1000


class SessionTelemetry:
    """
    Tracks at most one open pipeline session and forwards events to sinks.

    Stages are appended with non-decreasing timestamps. Opening a session
    while another one is still open marks the previous one as abandoned.
    Sink failures are logged and never reach the caller.
    """

    def __init__(
        self,
        sinks: Optional[Iterable[TelemetrySink]] = None,
        clock: Optional[Callable[[], float]] = None,
        max_abandoned: int = 20
    ):
        """
        Initialize session telemetry.

        Args:
            sinks: Event destinations
            clock: Returns the current time in epoch milliseconds
            max_abandoned: How many abandoned sessions to keep for inspection
        """
        self.sinks: List[TelemetrySink] = list(sinks or [])
        self._clock = clock or _epoch_ms
        self._current: Optional[PipelineSession] = None
        self._last_timestamp: float = 0.0
        self._tags: Dict[str, str] = {}
        self.abandoned_sessions: Deque[PipelineSession] = deque(maxlen=max_abandoned)

    @property
    def session_id(self) -> Optional[str]:
        return self._current.id if self._current else None

    def get_current_session(self) -> Optional[PipelineSession]:
        return self._current

    def set_tag(self, key: str, value: str):
        """Attach a tag to every subsequent event."""
        self._tags[key] = value

    def start_session(
        self,
        recording_provider: str,
        transcription_provider: str,
        summarization_provider: str
    ) -> str:
        """
        Open a new pipeline session.

        Args:
            recording_provider: Id of the capture source
            transcription_provider: Transcriber in use
            summarization_provider: Summarizer in use

        Returns:
            New session id
        """
        if self._current is not None:
            self._abandon_current()

        now = self._clock()
        self._current = PipelineSession(
            id=uuid.uuid4().hex,
            recording_provider=recording_provider,
            transcription_provider=transcription_provider,
            summarization_provider=summarization_provider,
            start_time=now,
        )
        self._last_timestamp = now

        logger.info(
            f"Pipeline session {self._current.id} started "
            f"({recording_provider} -> {transcription_provider} -> {summarization_provider})"
        )
        self._emit("pipeline_session_started", "info", {
            "pipeline_session_id": self._current.id,
            "recording_provider": recording_provider,
            "transcription_provider": transcription_provider,
            "summarization_provider": summarization_provider,
        })
        return self._current.id

    def _abandon_current(self):
        session = self._current
        session.abandoned = True
        self.abandoned_sessions.append(session)
        logger.warning(f"Pipeline session {session.id} abandoned with {len(session.stages)} stages")
        self._emit("pipeline_abandoned", "warning", {
            "pipeline_session_id": session.id,
            "total_stages": len(session.stages),
            "stages_summary": self._stages_summary(session),
        })
        self._current = None

    def track_stage(
        self,
        stage_type: StageType,
        provider: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ) -> Optional[Stage]:
        """
        Append a stage to the open session.

        Does nothing when no session is open.

        Args:
            stage_type: Stage event type
            provider: Provider that handled the stage (defaults to the session's)
            options: Extra stage data
            error: Error message for *_error stages

        Returns:
            The recorded Stage, or None without a session
        """
        if self._current is None:
            logger.debug(f"No open session, ignoring stage {stage_type.value}")
            return None

        # Clamp so timestamps never go backwards within a session
        timestamp = max(self._clock(), self._last_timestamp)
        self._last_timestamp = timestamp

        stage = Stage(
            type=stage_type,
            timestamp=timestamp,
            provider=provider or self._current.provider_for(stage_type),
            error=error,
            options=options or {},
        )
        self._current.stages.append(stage)

        self._emit(stage_type.value, "error" if error else "info", {
            "pipeline_session_id": self._current.id,
            "provider": stage.provider,
            "error": error,
            **stage.options,
        })
        return stage

    def switch_provider(self, domain: str, provider_id: str):
        """Record that the transcription or summarization stage moved to another provider."""
        if self._current is None:
            return
        if domain == "transcription":
            self._current.transcription_provider = provider_id
        elif domain == "summarization":
            self._current.summarization_provider = provider_id

    def track_event(self, name: str, level: str = "info", context: Optional[Dict[str, Any]] = None):
        """Send a non-stage event to the sinks."""
        context = dict(context or {})
        if self._current is not None:
            context.setdefault("pipeline_session_id", self._current.id)
        self._emit(name, level, context)

    def track_pipeline_error(self, stage: str, error: Exception, options: Optional[Dict[str, Any]] = None):
        """Report a pipeline failure that is not tied to a single stage event."""
        context = dict(options or {})
        context["stage"] = stage
        context["error"] = str(error)
        to_dict = getattr(error, "to_dict", None)
        if callable(to_dict):
            context["error_details"] = to_dict()
        self.track_event("pipeline_error", "error", context)

    def complete_session(self, options: Optional[Dict[str, Any]] = None) -> Optional[PipelineSession]:
        """
        Close the open session and emit the aggregate ``pipeline_complete`` event.

        Returns:
            The closed session, or None if none was open
        """
        session = self._current
        if session is None:
            return None

        total_time = max(self._clock(), self._last_timestamp) - session.start_time
        self._emit("pipeline_complete", "info", {
            **(options or {}),
            "pipeline_session_id": session.id,
            "recording_provider": session.recording_provider,
            "transcription_provider": session.transcription_provider,
            "summarization_provider": session.summarization_provider,
            "total_time_ms": total_time,
            "total_stages": len(session.stages),
            "stages_summary": self._stages_summary(session),
        })
        logger.info(f"Pipeline session {session.id} completed in {total_time:.0f}ms")

        self._current = None
        self._last_timestamp = 0.0
        return session

    @staticmethod
    def _stages_summary(session: PipelineSession) -> List[Dict[str, Any]]:
        return [
            {"type": s.type.value, "provider": s.provider, "timestamp": s.timestamp}
            for s in session.stages
        ]

    def _emit(self, name: str, level: str, context: Dict[str, Any]):
        event = {"event": name, "level": level, "timestamp": self._clock(), **self._tags, **context}
        for sink in self.sinks:
            try:
                sink.emit(event)
            except Exception as e:
                logger.error(f"Telemetry sink {type(sink).__name__} failed on {name}: {e}")

    async def close(self):
        """Flush and close every sink."""
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.error(f"Failed to close telemetry sink {type(sink).__name__}: {e}")

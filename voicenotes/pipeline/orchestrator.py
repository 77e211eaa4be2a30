"""Pipeline orchestrator: resolve, probe, transcribe, summarize, with one cloud fallback per stage."""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar
import logging

from voicenotes.audio.conversion import AudioConversionService
from voicenotes.config.settings import Settings
from voicenotes.core.errors import ProviderError
from voicenotes.core.event_bus import PIPELINE_STATE, PROVIDER_CHANGE, EventBus, event_bus
from voicenotes.core.registry import ProviderRegistry
from voicenotes.core.retry_policy import RetryPolicy, call_with_timeout
from voicenotes.core.schemas import (
    AudioBuffer,
    AudioInput,
    ConversionOptions,
    PipelineConfig,
    PipelineResult,
    PipelineSession,
    PipelineState,
    ProviderChangeEvent,
    ProviderHealth,
    ProviderKind,
    StageType,
    SummarizationOptions,
    SummarizationResult,
    TranscriptionOptions,
    TranscriptionResult,
)
from voicenotes.pipeline import presets
from voicenotes.providers.base import BaseProvider, Summarizer, Transcriber
from voicenotes.telemetry.session import SessionTelemetry

logger = logging.getLogger(__name__)

T = TypeVar('T')

_STAGES = {
    "transcription": (StageType.TRANSCRIPTION_START, StageType.TRANSCRIPTION_SUCCESS, StageType.TRANSCRIPTION_ERROR),
    "summarization": (StageType.SUMMARIZATION_START, StageType.SUMMARIZATION_SUCCESS, StageType.SUMMARIZATION_ERROR),
}

_KIND_FOR_STAGE = {
    "transcription": ProviderKind.TRANSCRIBER,
    "summarization": ProviderKind.SUMMARIZER,
}


class PipelineOrchestrator:
    """
    Runs record -> transcribe -> summarize across registered providers.

    Each stage falls back once to the default cloud provider for its kind.
    Configuration errors are never retried or fallen back. Retryable errors
    are first retried against the same provider by the retry policy.
    """

    def __init__(
        self,
        settings: Settings,
        registry: ProviderRegistry,
        conversion: AudioConversionService,
        telemetry: SessionTelemetry,
        bus: Optional[EventBus] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize orchestrator.

        Args:
            settings: Application settings (default cloud providers, timeouts)
            registry: Provider registry
            conversion: Audio conversion service for local providers
            telemetry: Session telemetry
            bus: Event bus for provider changes and state (process-wide bus by default)
            retry_policy: Same-provider retry policy
        """
        self.settings = settings
        self.registry = registry
        self.conversion = conversion
        self.telemetry = telemetry
        self.bus = bus if bus is not None else event_bus
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.provider_max_retries,
            initial_wait=settings.retry_initial_wait,
            max_wait=settings.retry_max_wait,
        )
        self._state = PipelineState.IDLE

    @property
    def state(self) -> PipelineState:
        return self._state

    async def _set_state(self, state: PipelineState):
        if state == self._state:
            return
        logger.debug(f"Pipeline state: {self._state.value} -> {state.value}")
        self._state = state
        await self.bus.publish(PIPELINE_STATE, state)

    def get_current_session(self) -> Optional[PipelineSession]:
        return self.telemetry.get_current_session()

    def _timeout_for(self, provider: BaseProvider) -> float:
        if provider.is_local:
            return self.settings.local_timeout_seconds
        return self.settings.provider_timeout_seconds

    async def _call(self, provider: BaseProvider, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run one provider call under the time bound and the retry policy."""
        timeout = self._timeout_for(provider)

        async def attempt() -> T:
            return await call_with_timeout(factory(), timeout, provider.id, operation)

        return await self.retry_policy.execute(attempt)

    # Outbound interface

    async def transcribe(
        self,
        provider_id: str,
        audio_input: AudioInput,
        options: Optional[TranscriptionOptions] = None
    ) -> TranscriptionResult:
        """Transcribe with one provider, without fallback."""
        provider = self.registry.get_transcriber(provider_id)
        return await self._transcribe_with(provider, audio_input, options)

    async def summarize(
        self,
        provider_id: str,
        text: str,
        options: Optional[SummarizationOptions] = None
    ) -> SummarizationResult:
        """Summarize with one provider, without fallback."""
        provider = self.registry.get_summarizer(provider_id)
        return await self._call(provider, "summarization", lambda: provider.summarize(text, options))

    async def check_health(self, provider_id: str) -> ProviderHealth:
        """
        Probe a provider.

        Probe failures are reported as ``ok=False``, never raised.

        Raises:
            ProviderError: PROVIDER_NOT_FOUND for an unknown id
        """
        provider = self.registry.find(provider_id)
        if provider is None:
            raise ProviderError.provider_not_found(provider_id)

        try:
            return await call_with_timeout(provider.check(), self._timeout_for(provider), provider.id, "health check")
        except ProviderError as e:
            logger.warning(f"Health check failed for {provider_id}: {e}")
            return ProviderHealth(ok=False, details=e.message)

    async def _transcribe_with(
        self,
        provider: Transcriber,
        audio_input: AudioInput,
        options: Optional[TranscriptionOptions]
    ) -> TranscriptionResult:
        if not (provider.is_local and isinstance(audio_input, AudioBuffer)):
            return await self._call(provider, "transcription", lambda: provider.transcribe(audio_input, options))

        # Conversion failures are not retried
        converted = await self.conversion.convert(
            audio_input,
            provider.id,
            ConversionOptions(
                sample_rate=self.settings.audio_sample_rate,
                channels=self.settings.audio_channels,
            ),
        )
        try:
            return await self._call(provider, "transcription", lambda: provider.transcribe(converted.file_path, options))
        finally:
            self.conversion.remove(converted)

    async def _summarize_with_topic(
        self,
        provider: Summarizer,
        text: str,
        config: PipelineConfig
    ) -> Tuple[SummarizationResult, Optional[str]]:
        summary_options = presets.summary_options(self.settings, config.summarization_options)

        if not config.generate_topic:
            summary = await self._call(provider, "summarization", lambda: provider.summarize(text, summary_options))
            return summary, None

        topic_options = presets.topic_options(self.settings, summary_options.language)
        summary, topic = await asyncio.gather(
            self._call(provider, "summarization", lambda: provider.summarize(text, summary_options)),
            self._call(provider, "topic generation", lambda: provider.summarize(text, topic_options)),
            return_exceptions=True,
        )
        # Both calls are joined before either failure is reported
        if isinstance(summary, BaseException):
            if isinstance(summary, ProviderError) and isinstance(topic, ProviderError):
                summary.errors = summary.errors + (topic,)
                summary.metadata["topic_error"] = topic.message
            raise summary
        if isinstance(topic, BaseException):
            raise topic
        return summary, presets.clean_topic(topic.summary)

    # Pipeline

    def _default_for(self, kind: ProviderKind) -> str:
        if kind == ProviderKind.TRANSCRIBER:
            return self.settings.default_cloud_transcriber
        return self.settings.default_cloud_summarizer

    def _registered_default(self, kind: ProviderKind, current_id: str) -> Optional[BaseProvider]:
        """Default cloud provider for ``kind``, unless it is ``current_id`` or not registered."""
        default_id = self._default_for(kind)
        if not default_id or default_id == current_id:
            return None
        if default_id not in self.registry.list_ids(kind):
            logger.warning(f"Default cloud {kind.value} '{default_id}' is not registered")
            return None
        return self.registry.get(default_id, kind)

    async def _announce_change(self, domain: str, old_id: str, new_id: str, reason: str, config: PipelineConfig):
        event = ProviderChangeEvent(domain=domain, old_provider=old_id, new_provider=new_id, reason=reason)
        logger.warning(f"Switching {domain} provider {old_id} -> {new_id}: {reason}")
        await self.bus.publish(PROVIDER_CHANGE, event)

        if config.on_provider_change is not None:
            try:
                result = config.on_provider_change(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Provider change callback failed: {e}", exc_info=True)

    async def _ensure_healthy(self, provider: BaseProvider, kind: ProviderKind, config: PipelineConfig) -> BaseProvider:
        """Probe ``provider`` and swap in the default cloud provider when it is unhealthy."""
        domain = "transcription" if kind == ProviderKind.TRANSCRIBER else "summarization"

        health = await self.check_health(provider.id)
        if health.ok:
            return provider

        details = health.details or f"{provider.id} reported unhealthy"
        logger.warning(f"Provider {provider.id} unhealthy: {details}")

        fallback = self._registered_default(kind, provider.id)
        if fallback is None:
            raise ProviderError.provider_unavailable(provider.id, details)

        fallback_health = await self.check_health(fallback.id)
        if not fallback_health.ok:
            error = ProviderError.provider_unavailable(provider.id, details)
            error.metadata["fallback_provider"] = fallback.id
            error.metadata["fallback_details"] = fallback_health.details
            raise error

        await self._announce_change(domain, provider.id, fallback.id, f"unhealthy: {details}", config)
        return fallback

    async def _run_stage(
        self,
        stage: str,
        provider: BaseProvider,
        run: Callable[[Any], Awaitable[T]],
        start_options: Dict[str, Any],
        success_options: Callable[[T], Dict[str, Any]],
        config: PipelineConfig
    ) -> Tuple[T, BaseProvider]:
        """
        Run one stage with a single fallback to the default cloud provider.

        Returns:
            (result, provider that produced it)
        """
        start_type, success_type, error_type = _STAGES[stage]
        kind = _KIND_FOR_STAGE[stage]

        self.telemetry.track_stage(start_type, provider.id, options=start_options)
        started = time.monotonic()
        try:
            result = await run(provider)
        except ProviderError as primary_error:
            self.telemetry.track_stage(error_type, provider.id, error=str(primary_error),
                                       options={"code": primary_error.code.value})
            if primary_error.is_configuration_error:
                raise

            fallback = self._registered_default(kind, provider.id)
            if fallback is None:
                raise

            await self._announce_change(stage, provider.id, fallback.id, str(primary_error), config)
            self.telemetry.switch_provider(stage, fallback.id)
            self.telemetry.track_stage(start_type, fallback.id, options={**start_options, "fallback_from": provider.id})
            started = time.monotonic()
            try:
                result = await run(fallback)
            except ProviderError as fallback_error:
                self.telemetry.track_stage(error_type, fallback.id, error=str(fallback_error),
                                           options={"code": fallback_error.code.value})
                raise ProviderError.fallback_failed(stage, primary_error, fallback_error) from fallback_error
            provider = fallback

        processing_time = int((time.monotonic() - started) * 1000)
        self.telemetry.track_stage(success_type, provider.id,
                                   options={"processing_time": processing_time, **success_options(result)})
        return result, provider

    async def run_pipeline(self, config: PipelineConfig) -> PipelineResult:
        """
        Run transcription and summarization end to end.

        Args:
            config: Audio, provider ids and options

        Returns:
            PipelineResult naming the providers actually used

        Raises:
            ProviderError: Terminal failure (aggregated when a fallback also failed)
        """
        await self._set_state(PipelineState.RESOLVING)
        try:
            transcriber = self.registry.get_transcriber(config.transcriber_id)
            summarizer = self.registry.get_summarizer(config.summarizer_id)

            if config.probe_health:
                await self._set_state(PipelineState.PROBING_HEALTH)
                transcriber = await self._ensure_healthy(transcriber, ProviderKind.TRANSCRIBER, config)
                summarizer = await self._ensure_healthy(summarizer, ProviderKind.SUMMARIZER, config)
        except ProviderError as e:
            logger.error(f"Pipeline could not start: {e}")
            self.telemetry.track_pipeline_error(self._state.value, e)
            await self._set_state(PipelineState.ERRORED)
            raise

        session_id = self.telemetry.start_session(config.recording_provider, transcriber.id, summarizer.id)
        audio_size = config.audio.size if isinstance(config.audio, AudioBuffer) else None

        try:
            await self._set_state(PipelineState.TRANSCRIBING)
            transcript, transcriber = await self._run_stage(
                "transcription",
                transcriber,
                lambda p: self._transcribe_with(p, config.audio, config.transcription_options),
                {"audio_size": audio_size},
                lambda r: {"text_length": len(r.text), "language": r.lang},
                config,
            )
            if not transcript.text.strip():
                logger.warning(f"Transcription by {transcriber.id} returned no text")

            await self._set_state(PipelineState.SUMMARIZING)
            (summary, topic), summarizer = await self._run_stage(
                "summarization",
                summarizer,
                lambda p: self._summarize_with_topic(p, transcript.text, config),
                {"text_length": len(transcript.text), "topic": config.generate_topic},
                lambda r: {"summary_length": len(r[0].summary), "tokens": r[0].tokens},
                config,
            )
        except ProviderError as e:
            logger.error(f"Pipeline session {session_id} failed: {e}")
            self.telemetry.track_pipeline_error(self._state.value, e)
            self.telemetry.complete_session({"outcome": "error", "error": e.to_dict()})
            await self._set_state(PipelineState.ERRORED)
            raise

        self.telemetry.complete_session({
            "outcome": "success",
            "transcription_provider_used": transcriber.id,
            "summarization_provider_used": summarizer.id,
        })
        await self._set_state(PipelineState.COMPLETE)

        return PipelineResult(
            transcript=transcript,
            summary=summary,
            topic=topic,
            session_id=session_id,
            transcription_provider=transcriber.id,
            summarization_provider=summarizer.id,
        )

    async def close(self):
        """Close every registered provider and flush telemetry."""
        for kind in ProviderKind:
            for provider in self.registry.list_all(kind):
                try:
                    await provider.close()
                except Exception as e:
                    logger.warning(f"Error closing provider {provider.id}: {e}")
        await self.telemetry.close()

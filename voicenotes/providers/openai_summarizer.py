"""OpenAI chat-completions summarization provider."""

import time
from typing import Optional
import logging

import openai
from openai import AsyncOpenAI

from voicenotes.core.errors import ProviderError
from voicenotes.core.schemas import (
    ProviderClass,
    ProviderHealth,
    SummarizationOptions,
    SummarizationResult,
)
from voicenotes.providers.base import Summarizer
from voicenotes.providers.openai_errors import map_openai_error
from voicenotes.providers.prompting import (
    DEFAULT_MAX_TOKENS,
    build_summary_prompt,
    max_tokens_for,
    temperature_for,
    truncate_transcript,
)

logger = logging.getLogger(__name__)


class OpenAISummarizer(Summarizer):
    """Cloud summarization through OpenAI chat completions."""

    id = "openai-gpt4o"
    name = "OpenAI GPT-4o"
    provider_class = ProviderClass.CLOUD

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        default_prompt: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        base_url: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None
    ):
        self.api_key = api_key
        self.model = model
        self.default_prompt = default_prompt
        self.max_tokens = max_tokens
        self.client = client
        if self.client is None and api_key:
            self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def check(self) -> ProviderHealth:
        if self.client is None:
            return ProviderHealth(ok=False, details="OpenAI API key missing")

        try:
            await self.client.models.list()
        except openai.AuthenticationError:
            return ProviderHealth(ok=False, details="Invalid OpenAI API key")
        except openai.APIStatusError as e:
            return ProviderHealth(ok=False, details=f"Connection error: {e.status_code}")
        except openai.APIError as e:
            return ProviderHealth(ok=False, details=f"Connection error: {e}")

        return ProviderHealth(
            ok=True,
            details=f"OpenAI {self.model} available",
            capabilities=["summarization", "multi-language", "custom-prompts"],
        )

    async def summarize(
        self,
        text: str,
        options: Optional[SummarizationOptions] = None
    ) -> SummarizationResult:
        if self.client is None:
            raise ProviderError.auth_missing(self.id, "openai_api_key")

        processed = truncate_transcript(text)
        prompt = build_summary_prompt(processed, options, self.default_prompt)

        start_time = time.monotonic()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens_for(options, self.max_tokens),
                temperature=temperature_for(options),
            )
        except openai.OpenAIError as e:
            logger.warning(f"OpenAI summarization failed: {e}")
            raise map_openai_error(e, self.id, "OpenAI summarization") from e

        processing_time = int((time.monotonic() - start_time) * 1000)

        summary = (response.choices[0].message.content or "") if response.choices else ""
        if not summary.strip():
            raise ProviderError.processing_failed(
                "OpenAI summarization",
                provider_id=self.id,
                metadata={"text_length": len(text)},
                hint="The model returned an empty response. Try again.",
            )

        usage = getattr(response, "usage", None)
        logger.info(
            f"OpenAI summary generated: {len(text)} -> {len(summary)} chars "
            f"(truncated: {len(processed) != len(text)})"
        )
        return SummarizationResult(
            summary=summary,
            tokens=usage.total_tokens if usage is not None else None,
            metadata={
                "original_length": len(text),
                "compression_ratio": len(summary) / len(text) if text else 0.0,
                "model": self.model,
                "processing_time": processing_time,
            },
        )

    async def close(self):
        if self.client is not None:
            await self.client.close()

"""Ollama summarization provider (Local)."""

import asyncio
import time
from typing import Optional
import logging

import aiohttp

from voicenotes.core.errors import ProviderError
from voicenotes.core.schemas import (
    ProviderClass,
    ProviderHealth,
    SummarizationOptions,
    SummarizationResult,
)
from voicenotes.providers.base import Summarizer
from voicenotes.providers.http_errors import error_for_status, map_aiohttp_error
from voicenotes.providers.prompting import (
    DEFAULT_MAX_TOKENS,
    build_summary_prompt,
    max_tokens_for,
    temperature_for,
    truncate_transcript,
)

logger = logging.getLogger(__name__)


class OllamaSummarizer(Summarizer):
    """Summarization through a local Ollama server's ``/api/generate`` endpoint."""

    id = "ollama"
    name = "Ollama (Local)"
    provider_class = ProviderClass.LOCAL

    def __init__(
        self,
        host: str,
        port: int = 11434,
        model: str = "llama3.1",
        default_prompt: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout_seconds: Optional[float] = 600.0,
        check_timeout_seconds: float = 5.0
    ):
        host = host.rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"http://{host}"
        self.base_url = f"{host}:{port}"
        self.model = model
        self.default_prompt = default_prompt
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.check_timeout_seconds = check_timeout_seconds

    async def check(self) -> ProviderHealth:
        """Probe ``/api/tags`` and verify the configured model has been pulled."""
        timeout = aiohttp.ClientTimeout(total=self.check_timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(f"{self.base_url}/api/tags") as response:
                    if response.status >= 400:
                        return ProviderHealth(ok=False, details=f"Ollama returned {response.status}")
                    payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            return ProviderHealth(ok=False, details=f"Ollama not reachable at {self.base_url}: {e}")

        names = [m.get("name", "") for m in payload.get("models", [])]
        if not any(n == self.model or n.split(":")[0] == self.model for n in names):
            return ProviderHealth(ok=False, details=f"Model '{self.model}' not pulled. Run: ollama pull {self.model}")

        return ProviderHealth(
            ok=True,
            details=f"Ollama at {self.base_url} with {self.model}",
            capabilities=["summarization", "custom-prompts"],
        )

    async def summarize(
        self,
        text: str,
        options: Optional[SummarizationOptions] = None
    ) -> SummarizationResult:
        operation = "Ollama summarization"
        processed = truncate_transcript(text)
        body = {
            "model": self.model,
            "prompt": build_summary_prompt(processed, options, self.default_prompt),
            "stream": False,
            "options": {
                "temperature": temperature_for(options),
                "num_predict": max_tokens_for(options, self.max_tokens),
            },
        }

        start_time = time.monotonic()
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(f"{self.base_url}/api/generate", json=body) as response:
                    if response.status >= 400:
                        raise error_for_status(response.status, await response.text(), self.id, operation)
                    payload = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"Ollama request failed: {e}")
            raise map_aiohttp_error(e, self.id, operation, self.timeout_seconds) from e

        summary = (payload.get("response") or "").strip()
        if not summary:
            raise ProviderError.processing_failed(
                operation,
                provider_id=self.id,
                metadata={"text_length": len(text)},
                hint="Ollama returned an empty response. Check the model.",
            )

        tokens = None
        if payload.get("eval_count") is not None:
            tokens = payload.get("prompt_eval_count", 0) + payload["eval_count"]

        processing_time = int((time.monotonic() - start_time) * 1000)
        logger.info(f"Ollama summary generated: {len(text)} -> {len(summary)} chars in {processing_time}ms")
        return SummarizationResult(
            summary=summary,
            tokens=tokens,
            metadata={
                "original_length": len(text),
                "compression_ratio": len(summary) / len(text) if text else 0.0,
                "model": self.model,
                "processing_time": processing_time,
            },
        )

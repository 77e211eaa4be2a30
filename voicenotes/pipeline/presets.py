"""Summarization presets used by the pipeline: the summary itself and the short topic."""

from typing import Optional

from voicenotes.config.settings import Settings
from voicenotes.core.schemas import SummarizationOptions

TOPIC_PROMPT = """Based on this voice recording transcript, provide a very short 2-word topic summary that captures the main subject discussed. Use the same language as the transcript.

Examples: "Project Planning", "Team Meeting", "Client Call", "Budget Review\""""

DEFAULT_TOPIC = "Discussion"


def summary_options(settings: Settings, overrides: Optional[SummarizationOptions] = None) -> SummarizationOptions:
    """Summary preset: caller overrides win over configured defaults."""
    options = overrides.model_copy() if overrides else SummarizationOptions()
    if options.max_length is None:
        options.max_length = settings.summary_max_tokens
    if options.custom_prompt is None and settings.summary_prompt:
        options.custom_prompt = settings.summary_prompt
    return options


def topic_options(settings: Settings, language: Optional[str] = None) -> SummarizationOptions:
    """Topic preset: a two-word title, nearly deterministic."""
    return SummarizationOptions(
        max_length=settings.topic_max_tokens,
        custom_prompt=TOPIC_PROMPT,
        language=language,
    )


def clean_topic(raw: str) -> str:
    """Strip whitespace and one pair of surrounding quotes from a generated topic."""
    topic = raw.strip()
    if topic[:1] in ("\"", "'"):
        topic = topic[1:]
    if topic[-1:] in ("\"", "'"):
        topic = topic[:-1]
    return topic.strip() or DEFAULT_TOPIC

"""Prompt construction shared by summarization providers."""

from typing import Optional
import logging

from voicenotes.core.schemas import SummarizationOptions, SummaryStyle

logger = logging.getLogger(__name__)

# Conservative context budget for long transcripts
MAX_CONTEXT_TOKENS = 12000
AVG_CHARS_PER_TOKEN = 4
MAX_CONTEXT_CHARS = MAX_CONTEXT_TOKENS * AVG_CHARS_PER_TOKEN

DEFAULT_MAX_TOKENS = 2000

DEFAULT_SUMMARY_PROMPT = """You are analyzing a voice recording transcript from a meeting or discussion. Please provide a comprehensive summary using the EXACT SAME LANGUAGE as the transcript (if transcript is in French, respond in French; if in Spanish, respond in Spanish, etc.).

Structure your response with these sections:

1. **Main Topics Discussed**: What were the primary subjects covered?
2. **Key Points**: The most important information shared
3. **Decisions Made**: Any conclusions or agreements reached
4. **Action Items**: Tasks or next steps identified (if any)
5. **Context & Insights**: Important context or insights that emerged

CRITICAL: Your entire response must be in the same language as the transcript. Do not translate or use English if the transcript is in another language."""

_STYLE_INSTRUCTIONS = {
    SummaryStyle.BRIEF: "Keep the summary brief: a few sentences at most.",
    SummaryStyle.DETAILED: "Be thorough and keep relevant details.",
    SummaryStyle.BULLET_POINTS: "Format every section as bullet points.",
    SummaryStyle.NARRATIVE: "Write the summary as flowing prose rather than lists.",
}


def truncate_transcript(text: str, max_chars: int = MAX_CONTEXT_CHARS) -> str:
    """
    Shrink a long transcript to a balanced sample.

    Keeps the first 40% of the budget from the start, up to 20% from the
    middle of the text and the last 40% of the budget from the end.

    Args:
        text: Full transcript
        max_chars: Character budget

    Returns:
        The text unchanged if it fits, otherwise the sampled text
    """
    if len(text) <= max_chars:
        return text

    edge = int(max_chars * 0.4)
    middle_budget = int(max_chars * 0.2)
    first_part = text[:edge]
    last_part = text[len(text) - edge:]
    middle_part = text[int(len(text) * 0.4):int(len(text) * 0.6)][:middle_budget]

    processed = f"{first_part}\n\n[...MIDDLE SECTION SUMMARY...]\n{middle_part}\n\n[...CONTINUED...]\n{last_part}"
    logger.warning(
        f"Long transcript truncated for summary: {len(text)} -> {len(processed)} chars "
        f"(ratio {len(processed) / len(text):.2f})"
    )
    return processed


def temperature_for(options: Optional[SummarizationOptions]) -> float:
    """Detailed summaries get a little more freedom."""
    if options is not None and options.style == SummaryStyle.DETAILED:
        return 0.3
    return 0.1


def max_tokens_for(options: Optional[SummarizationOptions], default: int = DEFAULT_MAX_TOKENS) -> int:
    if options is not None and options.max_length:
        return options.max_length
    return default


def build_summary_prompt(text: str, options: Optional[SummarizationOptions] = None,
                         default_prompt: Optional[str] = None) -> str:
    """
    Build the full user prompt for a summarization request.

    Args:
        text: Transcript (already truncated if needed)
        options: Summarization options
        default_prompt: Prompt used when the options carry no custom prompt

    Returns:
        Prompt text ending with the transcript
    """
    prompt = (options.custom_prompt if options and options.custom_prompt else None) \
        or default_prompt or DEFAULT_SUMMARY_PROMPT

    instructions = []
    if options is not None:
        if options.style in _STYLE_INSTRUCTIONS and not options.custom_prompt:
            instructions.append(_STYLE_INSTRUCTIONS[options.style])
        if options.focus_points:
            instructions.append("Pay particular attention to: " + "; ".join(options.focus_points) + ".")
        if options.language:
            instructions.append(f"Respond in this language: {options.language}.")

    if instructions:
        prompt = prompt + "\n\n" + "\n".join(instructions)

    return f"{prompt}\n\n**Transcript:**\n{text}"

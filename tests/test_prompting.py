"""Unit tests for prompt construction and the pipeline presets."""

from voicenotes.config.settings import Settings
from voicenotes.core.schemas import SummarizationOptions, SummaryStyle
from voicenotes.pipeline.presets import DEFAULT_TOPIC, TOPIC_PROMPT, clean_topic, summary_options, topic_options
from voicenotes.providers.prompting import (
    DEFAULT_SUMMARY_PROMPT,
    build_summary_prompt,
    max_tokens_for,
    temperature_for,
    truncate_transcript,
)


class TestTruncateTranscript:
    def test_short_text_unchanged(self) -> None:
        assert truncate_transcript("short text", max_chars=100) == "short text"

    def test_long_text_keeps_start_middle_and_end(self) -> None:
        text = "A" * 400 + "M" * 200 + "Z" * 400

        result = truncate_transcript(text, max_chars=100)

        first, rest = result.split("\n\n[...MIDDLE SECTION SUMMARY...]\n")
        middle, last = rest.split("\n\n[...CONTINUED...]\n")
        assert first == "A" * 40
        assert middle == "M" * 20
        assert last == "Z" * 40


class TestBuildSummaryPrompt:
    def test_default_prompt_and_transcript(self) -> None:
        prompt = build_summary_prompt("hello")

        assert prompt == f"{DEFAULT_SUMMARY_PROMPT}\n\n**Transcript:**\nhello"

    def test_configured_default_prompt(self) -> None:
        assert build_summary_prompt("hello", default_prompt="Summarize:").startswith("Summarize:\n\n**Transcript:**")

    def test_custom_prompt_wins_and_skips_style(self) -> None:
        options = SummarizationOptions(custom_prompt="Give a title.", style=SummaryStyle.BRIEF)

        prompt = build_summary_prompt("hello", options, default_prompt="ignored")

        assert prompt == "Give a title.\n\n**Transcript:**\nhello"

    def test_style_focus_and_language_instructions(self) -> None:
        options = SummarizationOptions(
            style=SummaryStyle.BULLET_POINTS,
            focus_points=["budget", "deadlines"],
            language="fr",
        )

        prompt = build_summary_prompt("bonjour", options)

        assert "Format every section as bullet points." in prompt
        assert "Pay particular attention to: budget; deadlines." in prompt
        assert "Respond in this language: fr." in prompt
        assert prompt.endswith("**Transcript:**\nbonjour")

    def test_temperature_and_max_tokens(self) -> None:
        assert temperature_for(SummarizationOptions(style=SummaryStyle.DETAILED)) == 0.3
        assert temperature_for(SummarizationOptions(style=SummaryStyle.BRIEF)) == 0.1
        assert temperature_for(None) == 0.1
        assert max_tokens_for(SummarizationOptions(max_length=10)) == 10
        assert max_tokens_for(None, default=500) == 500


class TestPresets:
    def test_summary_options_fill_defaults(self) -> None:
        settings = Settings(summary_max_tokens=800, summary_prompt="Team prompt")

        options = summary_options(settings)

        assert options.max_length == 800
        assert options.custom_prompt == "Team prompt"

    def test_summary_overrides_win_and_are_not_mutated(self) -> None:
        overrides = SummarizationOptions(max_length=50, custom_prompt="Mine")

        options = summary_options(Settings(summary_prompt="Team prompt"), overrides)

        assert (options.max_length, options.custom_prompt) == (50, "Mine")
        assert options is not overrides

    def test_topic_options(self) -> None:
        options = topic_options(Settings(), language="es")

        assert options.custom_prompt == TOPIC_PROMPT
        assert options.max_length == 10
        assert options.language == "es"

    def test_clean_topic(self) -> None:
        assert clean_topic('  "Team Meeting"\n') == "Team Meeting"
        assert clean_topic("'Client Call'") == "Client Call"
        assert clean_topic("Budget Review") == "Budget Review"
        assert clean_topic('""') == DEFAULT_TOPIC
        assert clean_topic("   ") == DEFAULT_TOPIC

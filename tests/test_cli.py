"""Tests for the voicenotes command line interface."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from voicenotes import main as cli
from voicenotes.config.settings import Settings
from voicenotes.core.diagnostics import DiagnosticReport
from voicenotes.core.errors import ProviderError
from voicenotes.core.schemas import PipelineResult, SummarizationResult, TranscriptionResult


class TestParser:
    def test_run_arguments(self) -> None:
        args = cli._build_parser().parse_args([
            "run", "memo.webm", "--transcriber", "whispercpp", "--summarizer", "ollama",
            "--language", "en", "--style", "brief", "--no-topic", "--json",
        ])

        assert args.command == "run"
        assert args.audio == "memo.webm"
        assert args.transcriber == "whispercpp"
        assert args.summarizer == "ollama"
        assert args.style == "brief"
        assert args.no_topic is True
        assert args.no_probe is False
        assert args.json is True

    def test_health_provider_is_optional(self) -> None:
        parser = cli._build_parser()
        assert parser.parse_args(["health"]).provider_id is None
        assert parser.parse_args(["health", "ollama"]).provider_id == "ollama"

    def test_invalid_style_rejected(self) -> None:
        with pytest.raises(SystemExit):
            cli._build_parser().parse_args(["run", "memo.wav", "--style", "poetic"])

    def test_no_command_prints_help(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 1
        assert "usage: voicenotes" in capsys.readouterr().out


class TestHandlers:
    @pytest.mark.asyncio
    async def test_run_missing_file(self, tmp_path, capsys) -> None:
        args = cli._build_parser().parse_args(["run", str(tmp_path / "missing.wav")])

        assert await cli._handle_run(args, Settings()) == 1
        assert "audio file not found" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_run_prints_markdown(self, tmp_path, capsys) -> None:
        audio = tmp_path / "memo.webm"
        audio.write_bytes(b"webm")
        result = PipelineResult(
            transcript=TranscriptionResult(text="hello world"),
            summary=SummarizationResult(summary="A summary."),
            topic="Team Meeting",
            session_id="abc",
            transcription_provider="whispercpp",
            summarization_provider="ollama",
        )
        orchestrator = MagicMock()
        orchestrator.run_pipeline = AsyncMock(return_value=result)
        orchestrator.close = AsyncMock()
        args = cli._build_parser().parse_args(["run", str(audio), "--transcriber", "whispercpp"])

        with patch.object(cli, "build_orchestrator", return_value=orchestrator):
            assert await cli._handle_run(args, Settings()) == 0

        config = orchestrator.run_pipeline.call_args.args[0]
        assert config.transcriber_id == "whispercpp"
        assert config.summarizer_id == "openai-gpt4o"
        assert config.audio.container == "webm"
        orchestrator.close.assert_awaited_once()

        out = capsys.readouterr().out
        assert out.startswith("# Team Meeting")
        assert "A summary." in out
        assert "hello world" in out

    @pytest.mark.asyncio
    async def test_run_reports_provider_errors(self, tmp_path, capsys) -> None:
        audio = tmp_path / "memo.wav"
        audio.write_bytes(b"RIFF")
        orchestrator = MagicMock()
        orchestrator.run_pipeline = AsyncMock(side_effect=ProviderError.auth_invalid("openai-whisper"))
        orchestrator.close = AsyncMock()
        args = cli._build_parser().parse_args(["run", str(audio)])

        with patch.object(cli, "build_orchestrator", return_value=orchestrator):
            assert await cli._handle_run(args, Settings()) == 1

        err = capsys.readouterr().err
        assert "AUTH_INVALID" in err
        assert "Hint:" in err
        orchestrator.close.assert_awaited_once()

    def test_cleanup(self, tmp_path, capsys) -> None:
        (tmp_path / "audio_1700000000000_abc123.wav").write_bytes(b"x")

        assert cli._handle_cleanup(Settings(audio_temp_dir=str(tmp_path))) == 0
        assert "Deleted 1 temporary audio file(s)" in capsys.readouterr().out

    def test_doctor_exit_code(self, capsys) -> None:
        report = DiagnosticReport()
        report.add("error", "api_key", "OpenAI API key is not configured.", "Set OPENAI_API_KEY.")

        with patch.object(cli, "run_full_diagnostic", return_value=report):
            assert cli._handle_doctor(Settings()) == 1

        assert "[ERROR] api_key" in capsys.readouterr().out

    def test_providers_lists_configured(self, capsys) -> None:
        assert cli._handle_providers(Settings(ollama_host="localhost")) == 0

        out = capsys.readouterr().out
        assert "ollama" in out
        assert "(none configured)" in out

"""Diagnostic utilities for checking environment, dependencies and provider configuration."""

import importlib
import shutil
import sys
from pathlib import Path
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)

_PLACEHOLDER_KEYS = ("", "your_openai_api_key_here")


class DiagnosticIssue:
    """Represents a diagnostic issue."""

    def __init__(self, severity: str, category: str, message: str, solution: str, command: Optional[str] = None):
        """
        Initialize diagnostic issue.

        Args:
            severity: "error", "warning", or "info"
            category: Category of issue (e.g., "environment", "dependency", "api_key", "local_provider")
            message: Description of the issue
            solution: Suggested solution
            command: Optional command to fix the issue
        """
        self.severity = severity
        self.category = category
        self.message = message
        self.solution = solution
        self.command = command

    def __str__(self) -> str:
        text = f"[{self.severity.upper()}] {self.category}: {self.message}\n    -> {self.solution}"
        if self.command:
            text += f"\n    $ {self.command}"
        return text


class DiagnosticReport:
    """Report containing all diagnostic results."""

    def __init__(self):
        self.issues: List[DiagnosticIssue] = []
        self.python_path = sys.executable
        self.is_venv = False

    def add(self, severity: str, category: str, message: str, solution: str, command: Optional[str] = None):
        self.issues.append(DiagnosticIssue(severity, category, message, solution, command))

    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    def has_warnings(self) -> bool:
        return any(issue.severity == "warning" for issue in self.issues)

    def get_errors(self) -> List[DiagnosticIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    def get_warnings(self) -> List[DiagnosticIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]


def check_python_environment(report: DiagnosticReport) -> None:
    """Record the interpreter and whether it runs inside a virtual environment."""
    report.python_path = sys.executable
    report.is_venv = sys.base_prefix != sys.prefix

    if not report.is_venv and (Path.cwd() / ".venv").exists():
        report.add(
            "warning", "environment",
            f"Not using the project virtual environment. Current Python: {sys.executable}",
            "Activate the virtual environment before running voicenotes.",
            "source .venv/bin/activate",
        )


def check_dependencies(report: DiagnosticReport) -> None:
    """Check that the runtime packages can be imported."""
    required_packages = {
        "openai": "openai",
        "aiohttp": "aiohttp",
        "numpy": "numpy",
        "tenacity": "tenacity",
        "pydantic": "pydantic",
        "dotenv": "python-dotenv",
    }

    missing_packages = []
    for module_name, package_name in required_packages.items():
        try:
            importlib.import_module(module_name)
        except ImportError:
            missing_packages.append(package_name)
            report.add(
                "error", "dependency",
                f"Package '{package_name}' is not installed or not accessible.",
                f"Install the package: pip install {package_name}",
                f"pip install {package_name}",
            )

    if missing_packages:
        report.add(
            "info", "dependency",
            "Install all missing packages at once",
            "Run the following command to install all missing packages:",
            "pip install " + " ".join(missing_packages),
        )


def check_ffmpeg(report: DiagnosticReport, settings) -> None:
    """Audio conversion for local providers needs ffmpeg."""
    if shutil.which(settings.ffmpeg_path) is None:
        report.add(
            "warning", "audio",
            f"ffmpeg not found ({settings.ffmpeg_path}). WebM, MP4 and other compressed recordings "
            "cannot be converted for local providers.",
            "Install ffmpeg or set FFMPEG_PATH in your .env file.",
        )


def check_api_keys(settings) -> DiagnosticReport:
    """
    Check if required API keys are configured.

    Args:
        settings: Application settings object

    Returns:
        Diagnostic report with API key issues
    """
    report = DiagnosticReport()

    cloud_ids = {
        settings.transcriber_provider, settings.summarizer_provider,
        settings.default_cloud_transcriber, settings.default_cloud_summarizer,
    }
    uses_openai = any(pid and pid.startswith("openai-") for pid in cloud_ids)
    if uses_openai and (settings.openai_api_key or "") in _PLACEHOLDER_KEYS:
        report.add(
            "error", "api_key",
            "OpenAI API key is not configured. Cloud providers and the fallback path are disabled.",
            "Set OPENAI_API_KEY in your .env file.",
        )

    return report


def check_local_providers(report: DiagnosticReport, settings) -> None:
    """Check paths configured for local providers."""
    if settings.whispercpp_binary_path:
        binary = settings.whispercpp_binary_path
        if not Path(binary).is_file() and shutil.which(binary) is None:
            report.add(
                "error", "local_provider",
                f"whisper.cpp binary not found: {binary}",
                "Build whisper.cpp and set WHISPERCPP_BINARY_PATH to the whisper-cli executable.",
            )
        if not settings.whispercpp_model_path:
            report.add(
                "error", "local_provider",
                "whisper.cpp binary configured without a model.",
                "Set WHISPERCPP_MODEL_PATH to a ggml model file.",
            )
    if settings.whispercpp_model_path and not Path(settings.whispercpp_model_path).is_file():
        report.add(
            "error", "local_provider",
            f"whisper.cpp model not found: {settings.whispercpp_model_path}",
            "Download a ggml model into the models directory.",
            "./models/download-ggml-model.sh base",
        )

    if settings.fasterwhisper_python_path:
        python = settings.fasterwhisper_python_path
        if not Path(python).is_file() and shutil.which(python) is None:
            report.add(
                "error", "local_provider",
                f"Python interpreter for faster-whisper not found: {python}",
                "Set FASTERWHISPER_PYTHON_PATH to an interpreter with faster-whisper installed.",
                f"{python} -m pip install faster-whisper",
            )


def run_full_diagnostic(settings) -> DiagnosticReport:
    """
    Run complete diagnostic check.

    Args:
        settings: Application settings object

    Returns:
        Complete diagnostic report
    """
    report = DiagnosticReport()

    check_python_environment(report)
    check_dependencies(report)
    check_ffmpeg(report, settings)
    report.issues.extend(check_api_keys(settings).issues)
    check_local_providers(report, settings)

    logger.info(f"Diagnostics finished: {len(report.get_errors())} errors, {len(report.get_warnings())} warnings")
    return report

"""Provider orchestration core for voice notes: transcription, summarization, fallback and telemetry."""

__version__ = "0.1.0"

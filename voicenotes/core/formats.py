"""Static audio format tables shared by providers and the conversion service."""

from typing import Dict, List, Optional


# Formats the conversion service can produce
SUPPORTED_OUTPUT_FORMATS = ("wav", "mp3", "ogg", "flac")

# Preferred output format per provider
PROVIDER_PREFERRED_FORMATS: Dict[str, str] = {
    "whispercpp": "wav",
    "fasterwhisper": "wav",
    "whisper-server": "wav",
    "default": "wav",
}

# Formats each provider accepts as input
PROVIDER_ACCEPTED_FORMATS: Dict[str, List[str]] = {
    "whispercpp": ["wav", "mp3", "ogg", "flac"],
    "fasterwhisper": ["wav", "mp3", "ogg", "flac"],
    "whisper-server": ["wav"],
    "openai-whisper": ["mp3", "mp4", "m4a", "wav", "webm", "ogg", "flac", "mpeg", "mpga"],
    "default": ["wav", "mp3", "ogg", "flac"],
}

# MIME subtype (or alias) -> container tag
_MIME_CONTAINERS = {
    "wav": "wav",
    "wave": "wav",
    "x-wav": "wav",
    "vnd.wave": "wav",
    "webm": "webm",
    "ogg": "ogg",
    "opus": "ogg",
    "mpeg": "mp3",
    "mp3": "mp3",
    "mp4": "mp4",
    "x-m4a": "m4a",
    "m4a": "m4a",
    "aac": "m4a",
    "flac": "flac",
    "x-flac": "flac",
    "pcm": "pcm",
    "l16": "pcm",
    "x-raw": "pcm",
    "f32": "pcm",
}


def preferred_format(provider_id: Optional[str]) -> str:
    """Get the preferred output format for a provider."""
    return PROVIDER_PREFERRED_FORMATS.get(provider_id or "default", PROVIDER_PREFERRED_FORMATS["default"])


def accepted_formats(provider_id: Optional[str]) -> List[str]:
    """Get the list of input formats a provider accepts."""
    return list(PROVIDER_ACCEPTED_FORMATS.get(provider_id or "default", PROVIDER_ACCEPTED_FORMATS["default"]))


def container_for_mime(mime_type: Optional[str]) -> Optional[str]:
    """
    Map a MIME type such as ``audio/webm;codecs=opus`` to a container tag.

    Returns:
        Container tag (e.g. "webm", "wav") or None if unknown
    """
    if not mime_type:
        return None

    base = mime_type.split(";")[0].strip().lower()
    subtype = base.split("/")[-1]
    return _MIME_CONTAINERS.get(subtype)


def extension_for_mime(mime_type: Optional[str]) -> str:
    """Get a file extension for a MIME type, defaulting to ``bin``."""
    container = container_for_mime(mime_type)
    if container is None or container == "pcm":
        return "bin"
    return container

"""Setup script for voicenotes-core."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

setup(
    name="voicenotes-core",
    version="0.1.0",
    description="Provider orchestration core for voice notes: transcription, summarization, fallback and telemetry",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "python-dotenv>=1.0.0",
        "pydantic>=2.5.0",
        "numpy>=1.24.0",
        "openai>=1.12.0",
        "aiohttp>=3.9.0",
        "tenacity>=8.2.0",
        "sentry-sdk>=2.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "httpx>=0.25.0",
        ],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "voicenotes=voicenotes.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)

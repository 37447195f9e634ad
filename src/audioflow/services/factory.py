"""Construction of the production collaborators from configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from audioflow.config.models import AudioflowConfig
from audioflow.services.converter import FFmpegConverter
from audioflow.services.gladia import GladiaClient
from audioflow.services.interfaces import (
    AIAnalysisService,
    Converter,
    TranscriptionService,
)
from audioflow.services.openai import OpenAIAnalysisClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """The three collaborators the workflow engine depends on."""

    converter: Converter
    transcription: TranscriptionService
    analysis: AIAnalysisService

    async def aclose(self) -> None:
        """Close any HTTP clients held by the collaborators."""
        for service in (self.transcription, self.analysis):
            close = getattr(service, "close", None)
            if close is not None:
                await close()


def build_services(config: AudioflowConfig) -> Services:
    """Create the ffmpeg, Gladia and OpenAI adapters.

    Args:
        config: Loaded configuration.

    Returns:
        Services bundle.

    Raises:
        ValueError: If an API key is missing.
    """
    logger.debug(
        "Building services (gladia=%s, openai=%s model=%s)",
        config.gladia.base_url,
        config.openai.base_url,
        config.openai.model,
    )
    return Services(
        converter=FFmpegConverter(config.converter),
        transcription=GladiaClient(config.gladia),
        analysis=OpenAIAnalysisClient(config.openai),
    )

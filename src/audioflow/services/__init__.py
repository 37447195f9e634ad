"""External collaborators: MP3 conversion, transcription and AI analysis."""

from audioflow.services.converter import FFmpegConverter
from audioflow.services.factory import Services, build_services
from audioflow.services.gladia import GladiaClient
from audioflow.services.interfaces import (
    AIAnalysisService,
    Converter,
    ProgressCallback,
    RemoteJobState,
    RemoteJobStatus,
    TranscriptionService,
)
from audioflow.services.openai import OpenAIAnalysisClient

__all__ = [
    "AIAnalysisService",
    "Converter",
    "FFmpegConverter",
    "GladiaClient",
    "OpenAIAnalysisClient",
    "ProgressCallback",
    "RemoteJobState",
    "RemoteJobStatus",
    "Services",
    "TranscriptionService",
    "build_services",
]

"""audioflow - multi-file audio transcription and analysis workflow engine."""

__version__ = "0.1.0"

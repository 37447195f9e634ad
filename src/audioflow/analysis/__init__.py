"""Transcript assembly and AI response interpretation."""

from audioflow.analysis.insights import (
    CategoryWinner,
    QuestionAnswer,
    SessionInsights,
    TopFiveEntry,
    build_analysis_prompt,
    parse_insights,
)
from audioflow.analysis.transcripts import (
    ExcludedFile,
    RecordingKind,
    TranscriptDocument,
    Utterance,
    build_transcript_document,
    classify_recording,
    combine_transcripts,
    expected_speaker_count,
    load_transcript,
    speaker_for_file,
    transcript_path_for,
    write_transcript,
)

__all__ = [
    "CategoryWinner",
    "ExcludedFile",
    "QuestionAnswer",
    "RecordingKind",
    "SessionInsights",
    "TopFiveEntry",
    "TranscriptDocument",
    "Utterance",
    "build_analysis_prompt",
    "build_transcript_document",
    "classify_recording",
    "combine_transcripts",
    "expected_speaker_count",
    "load_transcript",
    "parse_insights",
    "speaker_for_file",
    "transcript_path_for",
    "write_transcript",
]

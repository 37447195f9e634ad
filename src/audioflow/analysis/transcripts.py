"""Transcript documents, speaker naming and the combined session transcript.

Recorders write one file per input: MIC1.WAV, MIC2.WAV, ... for individual
microphones, PHONE.WAV and SOUND_PAD.WAV for the auxiliary inputs, and a
MIX/MASTER file for the full room. Individual inputs carry a single known
speaker; mix files rely on diarization and the session's mic assignments.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

_MIC_PATTERN = re.compile(r"^MIC(\d+)\.(?:WAV|MP3)$")

PHONE_SPEAKER = "Phone Input"
SOUND_PAD_SPEAKER = "Sound Effects"


class RecordingKind(Enum):
    """What a recorder file captured, derived from its filename."""

    INDIVIDUAL_MIC = "individual_mic"
    PHONE = "phone"
    SOUND_PAD = "sound_pad"
    USB = "usb"
    MIX = "mix"
    OTHER = "other"

    @property
    def single_speaker(self) -> bool:
        return self not in (RecordingKind.MIX, RecordingKind.OTHER)


def classify_recording(filename: str) -> tuple[RecordingKind, int | None]:
    """Classify a recorder file by name.

    Args:
        filename: Original filename (case-insensitive).

    Returns:
        Tuple of (kind, mic number). The mic number is the 1-based number
        from the filename for individual mics, otherwise None.
    """
    upper = Path(filename).name.upper()
    stem = Path(upper).stem

    match = _MIC_PATTERN.match(upper)
    if match:
        return RecordingKind.INDIVIDUAL_MIC, int(match.group(1))
    if stem == "PHONE":
        return RecordingKind.PHONE, None
    if stem in ("SOUND_PAD", "SOUNDPAD"):
        return RecordingKind.SOUND_PAD, None
    if stem == "USB":
        return RecordingKind.USB, None
    if "MIX" in upper or "MASTER" in upper:
        return RecordingKind.MIX, None
    return RecordingKind.OTHER, None


def speaker_for_file(filename: str, mic_assignments: Mapping[int, str]) -> str | None:
    """Return the fixed speaker name for a single-speaker recording.

    Mic assignments are keyed by 0-based mic index, so MIC1.WAV maps to
    assignment 0. An unassigned mic falls back to "Mic <n>".

    Returns:
        Speaker name, or None for multi-speaker recordings.
    """
    kind, mic_number = classify_recording(filename)
    if kind == RecordingKind.INDIVIDUAL_MIC and mic_number is not None:
        name = mic_assignments.get(mic_number - 1)
        if not name:
            logger.warning(
                "No participant assigned to mic %d (%s)", mic_number, filename
            )
            return f"Mic {mic_number}"
        return name
    if kind == RecordingKind.PHONE:
        return PHONE_SPEAKER
    if kind == RecordingKind.SOUND_PAD:
        return SOUND_PAD_SPEAKER
    return None


def expected_speaker_count(filename: str, mic_assignments: Mapping[int, str]) -> int:
    """Estimate how many speakers a recording contains.

    Single-input recordings have one speaker; mix files have at least two.
    """
    kind, _ = classify_recording(filename)
    if kind.single_speaker:
        return 1
    assigned = max(1, len(mic_assignments))
    if kind == RecordingKind.MIX:
        return max(2, assigned)
    return assigned


class Utterance(BaseModel):
    """One attributed stretch of speech."""

    model_config = ConfigDict(frozen=True)

    speaker: str
    text: str
    start: float | None = None
    end: float | None = None


class TranscriptDocument(BaseModel):
    """A file's transcript as written to <stem>_transcript.json."""

    model_config = ConfigDict(extra="ignore")

    file_id: str
    filename: str
    speaker: str | None = None
    utterances: list[Utterance] = Field(default_factory=list)
    full_transcript: str = ""

    def to_lines(self) -> list[str]:
        """Render as "Speaker: text" lines."""
        if not self.utterances and self.full_transcript:
            label = self.speaker or "Speaker"
            return [f"{label}: {self.full_transcript.strip()}"]
        return [f"{u.speaker}: {u.text.strip()}" for u in self.utterances]


def build_transcript_document(
    result: Mapping[str, Any],
    *,
    file_id: str,
    filename: str,
    mic_assignments: Mapping[int, str],
) -> TranscriptDocument:
    """Attribute a finished transcription to named speakers.

    Args:
        result: The "result" object of a finished transcription job
            (transcription.utterances and transcription.full_transcript).
        file_id: ID of the file the transcript belongs to.
        filename: Original filename, used to pick the naming strategy.
        mic_assignments: 0-based mic index to participant name.

    Returns:
        TranscriptDocument with every utterance attributed.
    """
    transcription = result.get("transcription") or {}
    raw_utterances = transcription.get("utterances") or []
    fixed_speaker = speaker_for_file(filename, mic_assignments)

    utterances: list[Utterance] = []
    for raw in raw_utterances:
        text = (raw.get("text") or "").strip()
        if not text:
            continue
        if fixed_speaker is not None:
            speaker = fixed_speaker
        else:
            # Diarized speakers are 0-based and line up with mic indexes
            index = raw.get("speaker")
            if isinstance(index, int) and mic_assignments.get(index):
                speaker = mic_assignments[index]
            elif isinstance(index, int):
                speaker = f"Speaker {index + 1}"
            else:
                speaker = "Speaker"
        utterances.append(
            Utterance(
                speaker=speaker, text=text, start=raw.get("start"), end=raw.get("end")
            )
        )

    return TranscriptDocument(
        file_id=file_id,
        filename=filename,
        speaker=fixed_speaker,
        utterances=utterances,
        full_transcript=transcription.get("full_transcript") or "",
    )


def transcript_path_for(folder: Path, filename: str) -> Path:
    """Return the transcript path for a recording: <stem>_transcript.json."""
    return folder / f"{Path(filename).stem}_transcript.json"


def write_transcript(path: Path, document: TranscriptDocument) -> Path:
    """Write a transcript document as indented JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(document.model_dump_json(indent=2), encoding="utf-8")
    return path


def load_transcript(path: Path) -> TranscriptDocument:
    """Load a transcript document.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file is not a valid transcript document.
    """
    content = path.read_text(encoding="utf-8")
    try:
        return TranscriptDocument.model_validate_json(content)
    except ValidationError as e:
        raise ValueError(f"Invalid transcript document {path}: {e}") from e


@dataclass
class ExcludedFile:
    """A file left out of the combined transcript."""

    file_id: str
    filename: str
    reason: str


def combine_transcripts(
    documents: Sequence[TranscriptDocument],
    excluded: Sequence[ExcludedFile] = (),
    participants: Sequence[str] = (),
) -> str:
    """Merge per-file transcripts into one session transcript.

    Documents are emitted in the order given (registration order). Excluded
    files are listed in a header so the analysis knows what is missing.

    Args:
        documents: Transcripts of the files that reached the barrier.
        excluded: Files that failed and are not part of the merge.
        participants: Participant names for the header.

    Returns:
        The combined transcript text.
    """
    lines = ["=== COMBINED SESSION TRANSCRIPT ==="]
    lines.append(
        f"Participants: {', '.join(participants) if participants else 'Unknown'}"
    )
    lines.append(f"Recordings: {len(documents)}")
    if excluded:
        lines.append("Excluded recordings (failed processing):")
        for item in excluded:
            lines.append(f"  - {item.filename} ({item.reason})")
    lines.append("")

    for document in documents:
        label = document.speaker or "Group"
        lines.append(f"--- {label} (from {document.filename}) ---")
        lines.extend(document.to_lines())
        lines.append("")

    return "\n".join(lines)

"""Analysis prompt construction and AI response parsing.

The model is asked for a JSON object of highlight categories. Responses come
back in one of two layouts:

- flat: PascalCase category keys at the root ("BestJoke", "Top5FunniestSentences")
- nested: grouped sections ("comedy_categories": {"best_joke": {...}})

Both are normalized to snake_case category names in SessionInsights.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from audioflow.exceptions import ResponseParseError

logger = logging.getLogger(__name__)

MAX_TRANSCRIPT_CHARS = 400_000
TRUNCATION_NOTICE = (
    "\n\n[TRANSCRIPT TRUNCATED DUE TO LENGTH - ANALYSIS BASED ON FIRST "
    "{limit:,} CHARACTERS]"
)

CATEGORIES: tuple[tuple[str, str], ...] = (
    ("MostOffensiveTake", "The most offensive or controversial statement"),
    ("HottestTake", "The most controversial opinion about the movie"),
    ("BiggestArgumentStarter", "The statement that started the biggest argument"),
    ("BestJoke", "The funniest joke or comment"),
    ("BestRoast", "The best roast or burn of another participant"),
    ("FunniestRandomTangent", "The most entertaining off-topic tangent"),
    ("MostPassionateDefense", "The most passionate defense of an opinion"),
    ("BiggestUnanimousReaction", "The moment that got everyone reacting"),
    ("MostBoringStatement", "The most boring statement"),
    ("BestPlotTwistRevelation", "The best insight about the plot"),
    ("MovieSnobMoment", "The most pretentious film-snob comment"),
    ("GuiltyPleasureAdmission", "The most surprising guilty-pleasure admission"),
    ("QuietestPersonBestMoment", "The best moment from the quietest participant"),
)

TOP_FIVE_LISTS: tuple[tuple[str, str], ...] = (
    ("Top5FunniestSentences", "The five funniest sentences"),
    ("Top5MostBlandComments", "The five blandest comments"),
)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


def to_snake_case(name: str) -> str:
    """Convert PascalCase/camelCase (or snake_case) to snake_case."""
    return _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").replace(" ", "_").lower()


class AudioQuality(Enum):
    """Audio quality of a highlighted moment."""

    CLEAR = "clear"
    MUFFLED = "muffled"
    BACKGROUND_NOISE = "background_noise"
    DISTORTED = "distorted"


def _parse_quality(value: Any) -> AudioQuality:
    if not isinstance(value, str):
        return AudioQuality.CLEAR
    normalized = value.strip().lower().replace(" ", "_")
    if normalized == "backgroundnoise":
        normalized = "background_noise"
    try:
        return AudioQuality(normalized)
    except ValueError:
        return AudioQuality.CLEAR


class _Highlight(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    speaker: str = "Unknown"
    timestamp: str = "0:00"
    quote: str = "No quote available"
    audio_quality: AudioQuality = AudioQuality.CLEAR

    @field_validator("audio_quality", mode="before")
    @classmethod
    def normalize_quality(cls, v: Any) -> AudioQuality:
        """Accept free-form quality strings, defaulting to clear."""
        if isinstance(v, AudioQuality):
            return v
        return _parse_quality(v)


class CategoryWinner(_Highlight):
    """The single best moment for one category."""

    setup: str = ""
    group_reaction: str = ""
    why_its_great: str = ""
    entertainment_score: int = Field(default=5, ge=0, le=10)


class TopFiveEntry(_Highlight):
    """One ranked entry of a top-five list."""

    rank: int | None = None
    context: str = ""
    score: float = 5.0
    reasoning: str = ""
    source_audio_file: str = ""


class QuestionAnswer(BaseModel):
    """An opening question and the answer it got."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    question: str = ""
    speaker: str = "Unknown"
    answer: str = ""
    timestamp: str = "0:00"
    entertainment_value: int = 5


class SessionInsights(BaseModel):
    """Structured result of the session analysis."""

    model_config = ConfigDict(extra="forbid")

    categories: dict[str, CategoryWinner] = Field(default_factory=dict)
    top_five: dict[str, list[TopFiveEntry]] = Field(default_factory=dict)
    opening_questions: list[QuestionAnswer] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.categories or self.top_five or self.opening_questions)

    def speakers(self) -> set[str]:
        """Return every speaker credited with a highlight."""
        names = {w.speaker for w in self.categories.values()}
        for entries in self.top_five.values():
            names.update(e.speaker for e in entries)
        return names


def build_analysis_prompt(
    combined_transcript: str,
    participants: Sequence[str] = (),
    *,
    title: str | None = None,
    max_chars: int = MAX_TRANSCRIPT_CHARS,
) -> str:
    """Build the analysis prompt around a combined transcript.

    Args:
        combined_transcript: Output of combine_transcripts.
        participants: Participant names.
        title: Optional title of the reviewed work.
        max_chars: Transcript length above which it is truncated.

    Returns:
        The full prompt text.
    """
    transcript = combined_transcript
    if len(transcript) > max_chars:
        logger.warning(
            "Transcript truncated from %d to %d characters", len(transcript), max_chars
        )
        transcript = transcript[:max_chars] + TRUNCATION_NOTICE.format(limit=max_chars)

    subject = f'about "{title}"' if title else "about a movie"
    people = ", ".join(participants) if participants else "Unknown participants"

    winner_shape = (
        '{"Speaker": "[Name]", "Timestamp": "[MM:SS]", "Quote": "[Exact words]", '
        '"Setup": "[Context]", "GroupReaction": "[How others reacted]", '
        '"WhyItsGreat": "[Why it is memorable]", '
        '"AudioQualityString": "[Clear/Muffled/Distorted/Background_Noise]", '
        '"EntertainmentScore": [1-10]}'
    )
    list_shape = (
        '{"Entries": [{"Speaker": "[Name]", "Timestamp": "[MM:SS]", '
        '"Quote": "[Exact words]", "Context": "[Context]", "Score": [1-10], '
        '"Reasoning": "[Why]"}]}'
    )

    lines = [
        "You are an expert entertainment analyst identifying the most "
        "entertaining and memorable moments from group discussion recordings.",
        "",
        f"Analyze this discussion {subject}, with participants: {people}.",
        "",
        "TRANSCRIPT TO ANALYZE:",
        transcript,
        "",
        "Respond with a single JSON object and nothing else. Use these keys:",
    ]
    for key, description in CATEGORIES:
        lines.append(f'- "{key}": {description}. Shape: {winner_shape}')
    for key, description in TOP_FIVE_LISTS:
        lines.append(f'- "{key}": {description}. Shape: {list_shape}')
    lines.append(
        '- "OpeningQuestions": {"Questions": [{"Question": "...", '
        '"Speaker": "...", "Answer": "...", "Timestamp": "[MM:SS]"}]}'
    )
    lines.append("")
    lines.append(
        "Only quote words that appear in the transcript. Skip a category "
        "rather than inventing a moment."
    )
    return "\n".join(lines)


def _snake_keys(data: Any) -> Any:
    if isinstance(data, dict):
        return {to_snake_case(str(k)): _snake_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_snake_keys(v) for v in data]
    return data


def _winner(data: dict[str, Any]) -> CategoryWinner:
    values = dict(data)
    if "audio_quality_string" in values:
        values.setdefault("audio_quality", values.pop("audio_quality_string"))
    return CategoryWinner.model_validate(values)


def _top_five(data: Any) -> list[TopFiveEntry]:
    if isinstance(data, dict):
        data = data.get("entries", [])
    if not isinstance(data, list):
        return []
    entries = []
    for index, raw in enumerate(data, start=1):
        if not isinstance(raw, dict):
            continue
        values = dict(raw)
        if "audio_quality_string" in values:
            values.setdefault("audio_quality", values.pop("audio_quality_string"))
        values.setdefault("context", values.pop("setup", ""))
        if "entertainment_score" in values:
            values.setdefault("score", values.pop("entertainment_score"))
        if "why_its_great" in values:
            values.setdefault("reasoning", values.pop("why_its_great"))
        values.setdefault("rank", index)
        entries.append(TopFiveEntry.model_validate(values))
    return entries


def _questions(data: Any) -> list[QuestionAnswer]:
    if isinstance(data, dict):
        data = data.get("questions", [])
    if not isinstance(data, list):
        return []
    return [QuestionAnswer.model_validate(q) for q in data if isinstance(q, dict)]


def _strip_top_five_prefix(key: str) -> str:
    return key.removeprefix("top5_").removeprefix("top_5_")


def parse_insights(response_text: str) -> SessionInsights:
    """Parse an AI analysis response into SessionInsights.

    Markdown code fences around the JSON are ignored.

    Args:
        response_text: Raw response text from the analysis service.

    Returns:
        Parsed insights with at least one entry.

    Raises:
        ResponseParseError: If the text is not a JSON object, an entry does
            not validate, or no recognizable category is present.
    """
    cleaned = _FENCE.sub("", response_text or "").strip()
    if not cleaned:
        raise ResponseParseError("AI response is empty")

    try:
        document = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ResponseParseError(f"AI response is not valid JSON: {e}") from e
    if not isinstance(document, dict):
        raise ResponseParseError(
            f"AI response must be a JSON object, got {type(document).__name__}"
        )

    root = _snake_keys(document)
    insights = SessionInsights()
    try:
        for key, value in root.items():
            if not isinstance(value, (dict, list)):
                logger.debug("Ignoring non-object entry %s in AI response", key)
                continue
            if key in ("top_5_lists", "top5_lists", "top_five_lists") and isinstance(
                value, dict
            ):
                for list_key, entries in value.items():
                    insights.top_five[_strip_top_five_prefix(list_key)] = _top_five(
                        entries
                    )
            elif key.endswith("_categories") and isinstance(value, dict):
                for category, winner in value.items():
                    if isinstance(winner, dict):
                        insights.categories[category] = _winner(winner)
            elif key.startswith(("top5_", "top_5_")):
                insights.top_five[_strip_top_five_prefix(key)] = _top_five(value)
            elif key in ("opening_questions", "initial_questions"):
                insights.opening_questions = _questions(value)
            elif isinstance(value, dict):
                insights.categories[key] = _winner(value)
    except ValidationError as e:
        raise ResponseParseError(f"AI response has an invalid entry: {e}") from e

    if insights.is_empty:
        raise ResponseParseError("AI response contains no recognizable categories")

    logger.info(
        "Parsed AI response: %d categories, %d top-five lists, %d questions",
        len(insights.categories),
        len(insights.top_five),
        len(insights.opening_questions),
    )
    return insights

"""Tests for the analysis prompt and AI response parsing."""

from __future__ import annotations

import json

import pytest

from audioflow.analysis.insights import (
    AudioQuality,
    build_analysis_prompt,
    parse_insights,
    to_snake_case,
)
from audioflow.exceptions import ResponseParseError


@pytest.mark.parametrize(
    "name,expected",
    [
        ("BestJoke", "best_joke"),
        ("Top5FunniestSentences", "top5_funniest_sentences"),
        ("entertainmentScore", "entertainment_score"),
        ("already_snake", "already_snake"),
        ("JSONPayload", "json_payload"),
    ],
)
def test_to_snake_case(name: str, expected: str) -> None:
    assert to_snake_case(name) == expected


class TestBuildAnalysisPrompt:
    """Tests for build_analysis_prompt."""

    def test_includes_transcript_participants_and_title(self) -> None:
        prompt = build_analysis_prompt("Ann: hello", ["Ann", "Bo"], title="The Room")
        assert "Ann: hello" in prompt
        assert "participants: Ann, Bo" in prompt
        assert 'about "The Room"' in prompt
        assert '"BestJoke"' in prompt
        assert '"Top5FunniestSentences"' in prompt

    def test_long_transcript_is_truncated(self) -> None:
        prompt = build_analysis_prompt("x" * 50, max_chars=10)
        assert "x" * 11 not in prompt
        assert "TRANSCRIPT TRUNCATED" in prompt
        assert "Unknown participants" in prompt


class TestParseInsights:
    """Tests for parse_insights."""

    def test_flat_layout(self) -> None:
        response = json.dumps(
            {
                "BestJoke": {
                    "Speaker": "Bo",
                    "Quote": "Holes in my socks",
                    "EntertainmentScore": 9,
                    "AudioQualityString": "Background Noise",
                },
                "Top5FunniestSentences": {
                    "Entries": [
                        {"Speaker": "Ann", "Quote": "One", "Score": 8},
                        {"Speaker": "Bo", "Quote": "Two", "Score": 7},
                    ]
                },
                "OpeningQuestions": {
                    "Questions": [{"Question": "Rate it?", "Answer": "Seven"}]
                },
            }
        )

        insights = parse_insights(response)

        joke = insights.categories["best_joke"]
        assert joke.speaker == "Bo"
        assert joke.entertainment_score == 9
        assert joke.audio_quality == AudioQuality.BACKGROUND_NOISE
        entries = insights.top_five["funniest_sentences"]
        assert [e.rank for e in entries] == [1, 2]
        assert entries[0].score == 8
        assert insights.opening_questions[0].answer == "Seven"
        assert insights.speakers() == {"Ann", "Bo"}

    def test_nested_layout(self) -> None:
        response = json.dumps(
            {
                "comedy_categories": {"best_roast": {"speaker": "Cy"}},
                "top_5_lists": {"top5_most_bland_comments": [{"speaker": "Di"}]},
            }
        )

        insights = parse_insights(response)

        assert insights.categories["best_roast"].speaker == "Cy"
        assert insights.top_five["most_bland_comments"][0].speaker == "Di"

    def test_code_fences_are_ignored(self) -> None:
        response = '```json\n{"BestJoke": {"speaker": "Bo"}}\n```'
        assert parse_insights(response).categories["best_joke"].speaker == "Bo"

    def test_unknown_quality_defaults_to_clear(self) -> None:
        response = json.dumps({"BestJoke": {"AudioQualityString": "crunchy"}})
        winner = parse_insights(response).categories["best_joke"]
        assert winner.audio_quality == AudioQuality.CLEAR
        assert winner.speaker == "Unknown"

    @pytest.mark.parametrize(
        "response,message",
        [
            ("", "empty"),
            ("I'm sorry, I can't do that.", "not valid JSON"),
            ("[1, 2]", "must be a JSON object"),
            ('{"summary": "fine"}', "no recognizable categories"),
        ],
    )
    def test_unusable_response_raises(self, response: str, message: str) -> None:
        with pytest.raises(ResponseParseError, match=message):
            parse_insights(response)

    def test_out_of_range_score_raises(self) -> None:
        response = json.dumps({"BestJoke": {"EntertainmentScore": 42}})
        with pytest.raises(ResponseParseError, match="invalid entry"):
            parse_insights(response)

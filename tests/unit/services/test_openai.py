"""Tests for the OpenAI analysis client."""

from __future__ import annotations

import json

import httpx
import pytest

from audioflow.config.models import OpenAIConfig
from audioflow.exceptions import RemoteServiceError
from audioflow.services.interfaces import RemoteJobState
from audioflow.services.openai import OpenAIAnalysisClient, extract_output_text


def _client(handler, **config) -> OpenAIAnalysisClient:
    return OpenAIAnalysisClient(
        OpenAIConfig(api_key="sk-test", base_url="https://openai.test", **config),
        transport=httpx.MockTransport(handler),
    )


class TestExtractOutputText:
    """Tests for extract_output_text."""

    def test_prefers_output_text_field(self) -> None:
        assert extract_output_text({"output_text": "{}", "output": []}) == "{}"

    def test_joins_message_parts(self) -> None:
        data = {
            "output": [
                {
                    "type": "reasoning",
                    "content": [{"type": "output_text", "text": "x"}],
                },
                {
                    "type": "message",
                    "content": [
                        {"type": "output_text", "text": '{"a": '},
                        {"type": "output_text", "text": "1}"},
                    ],
                },
            ]
        }
        assert extract_output_text(data) == '{"a": 1}'

    def test_no_text_returns_none(self) -> None:
        assert extract_output_text({"output": []}) is None


class TestSubmit:
    """Tests for OpenAIAnalysisClient.submit."""

    @pytest.mark.asyncio
    async def test_creates_background_response(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "resp_1", "status": "queued"})

        client = _client(handler, model="gpt-test", max_output_tokens=123)
        response_id = await client.submit("Analyze this")
        await client.close()

        assert response_id == "resp_1"
        request = seen[0]
        assert request.url.path == "/v1/responses"
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "gpt-test"
        assert body["input"] == "Analyze this"
        assert body["background"] is True
        assert body["max_output_tokens"] == 123

    @pytest.mark.asyncio
    async def test_missing_id_raises(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"status": "x"}))
        with pytest.raises(RemoteServiceError, match="no id"):
            await client.submit("prompt")

    @pytest.mark.asyncio
    async def test_rate_limit_raises(self) -> None:
        client = _client(lambda request: httpx.Response(429, text="slow down"))
        with pytest.raises(RemoteServiceError) as exc_info:
            await client.submit("prompt")
        assert exc_info.value.status_code == 429
        assert exc_info.value.service == "openai"

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(RemoteServiceError, match="timed out"):
            await _client(handler).submit("prompt")


class TestPollStatus:
    """Tests for OpenAIAnalysisClient.poll_status."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["queued", "in_progress"])
    async def test_pending_states(self, status: str) -> None:
        client = _client(lambda request: httpx.Response(200, json={"status": status}))
        assert (await client.poll_status("resp_1")).state == RemoteJobState.PENDING

    @pytest.mark.asyncio
    async def test_completed_returns_text(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/responses/resp_1"
            return httpx.Response(
                200,
                json={
                    "status": "completed",
                    "output_text": '{"BestJoke": {}}',
                    "usage": {"output_tokens": 10},
                },
            )

        status = await _client(handler).poll_status("resp_1")

        assert status.state == RemoteJobState.DONE
        assert status.result == '{"BestJoke": {}}'

    @pytest.mark.asyncio
    async def test_completed_without_text_raises(self) -> None:
        client = _client(
            lambda request: httpx.Response(200, json={"status": "completed"})
        )
        with pytest.raises(RemoteServiceError, match="without output text"):
            await client.poll_status("resp_1")

    @pytest.mark.asyncio
    async def test_failed_response_reports_error(self) -> None:
        client = _client(
            lambda request: httpx.Response(
                200,
                json={"status": "failed", "error": {"message": "server_error"}},
            )
        )
        status = await client.poll_status("resp_1")
        assert status.state == RemoteJobState.FAILED
        assert status.error == "OpenAI response failed: server_error"

    @pytest.mark.asyncio
    async def test_incomplete_response_reports_reason(self) -> None:
        client = _client(
            lambda request: httpx.Response(
                200,
                json={
                    "status": "incomplete",
                    "incomplete_details": {"reason": "max_output_tokens"},
                },
            )
        )
        status = await client.poll_status("resp_1")
        assert status.error == "OpenAI response incomplete: max_output_tokens"

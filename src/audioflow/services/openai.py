"""OpenAI Responses API client for session analysis.

Requests are created in background mode (POST /v1/responses with
"background": true) and then polled with GET /v1/responses/{id}, which
matches the engine's submit-then-poll model for remote jobs.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from audioflow.config.models import OpenAIConfig
from audioflow.exceptions import RemoteServiceError
from audioflow.services.interfaces import RemoteJobStatus

logger = logging.getLogger(__name__)

SERVICE_NAME = "openai"

SYSTEM_INSTRUCTIONS = (
    "You are an expert entertainment analyst. Answer with a single JSON "
    "object and no surrounding prose."
)

_PENDING_STATES = frozenset({"queued", "in_progress"})
_FAILED_STATES = frozenset({"failed", "cancelled", "incomplete"})


def extract_output_text(data: dict[str, Any]) -> str | None:
    """Extract the generated text from a Responses API object.

    Prefers the convenience "output_text" field and falls back to joining
    the output_text parts of message items.

    Returns:
        The text, or None if the response carries none.
    """
    text = data.get("output_text")
    if isinstance(text, str) and text:
        return text

    parts: list[str] = []
    for item in data.get("output") or []:
        if not isinstance(item, dict) or item.get("type", "message") != "message":
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") == "output_text":
                parts.append(content.get("text") or "")
    joined = "".join(parts)
    return joined or None


class OpenAIAnalysisClient:
    """Async HTTP client for OpenAI background responses.

    Implements the AIAnalysisService protocol.
    """

    def __init__(
        self,
        config: OpenAIConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: OpenAI configuration with model and API key.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        if not config.api_key:
            raise ValueError("OpenAI API key is required")
        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._config.timeout_seconds,
                headers={"Authorization": f"Bearer {self._config.api_key}"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        """Send a request and return the decoded JSON object.

        Raises:
            RemoteServiceError: On connection errors, timeouts, non-2xx
                responses and bodies that are not JSON objects.
        """
        client = self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
            if response.status_code == 401:
                raise RemoteServiceError(
                    "Invalid OpenAI API key", service=SERVICE_NAME, status_code=401
                )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as e:
            raise RemoteServiceError(
                f"OpenAI request timed out: {e}", service=SERVICE_NAME
            ) from e
        except httpx.HTTPStatusError as e:
            raise RemoteServiceError(
                f"OpenAI HTTP error {e.response.status_code}: {e.response.text[:200]}",
                service=SERVICE_NAME,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise RemoteServiceError(
                f"OpenAI request failed: {e}", service=SERVICE_NAME
            ) from e
        except ValueError as e:
            raise RemoteServiceError(
                f"OpenAI returned invalid JSON: {e}", service=SERVICE_NAME
            ) from e

        if not isinstance(data, dict):
            raise RemoteServiceError(
                "OpenAI returned an unexpected response body", service=SERVICE_NAME
            )
        return data

    async def submit(self, prompt: str) -> str:
        """Create a background response for the prompt.

        Args:
            prompt: Full analysis prompt.

        Returns:
            The response ID to poll.

        Raises:
            RemoteServiceError: If the request is rejected.
        """
        body = {
            "model": self._config.model,
            "instructions": SYSTEM_INSTRUCTIONS,
            "input": prompt,
            "temperature": self._config.temperature,
            "max_output_tokens": self._config.max_output_tokens,
            "text": {"format": {"type": "json_object"}},
            "background": True,
        }
        data = await self._request("POST", "/v1/responses", json=body)
        response_id = data.get("id")
        if not isinstance(response_id, str) or not response_id:
            raise RemoteServiceError("OpenAI response has no id", service=SERVICE_NAME)
        logger.info(
            "Submitted analysis to %s (%d prompt chars, response %s)",
            self._config.model,
            len(prompt),
            response_id,
        )
        return response_id

    async def poll_status(self, job_id: str) -> RemoteJobStatus:
        """Fetch the state of a background response.

        Returns:
            Pending while queued or in progress, done with the response
            text, or failed with the reported error.

        Raises:
            RemoteServiceError: If the request fails, the status is unknown
                or a completed response has no text.
        """
        data = await self._request("GET", f"/v1/responses/{job_id}")
        status = data.get("status")

        if status in _PENDING_STATES:
            return RemoteJobStatus.pending()
        if status == "completed":
            text = extract_output_text(data)
            if text is None:
                raise RemoteServiceError(
                    f"OpenAI response {job_id} completed without output text",
                    service=SERVICE_NAME,
                )
            usage = data.get("usage") or {}
            logger.debug(
                "OpenAI response %s completed (%s output tokens)",
                job_id,
                usage.get("output_tokens", "?"),
            )
            return RemoteJobStatus.done(text)
        if status in _FAILED_STATES:
            error = data.get("error") or {}
            detail = error.get("message") if isinstance(error, dict) else None
            if not detail:
                details = data.get("incomplete_details") or {}
                detail = details.get("reason") if isinstance(details, dict) else None
            return RemoteJobStatus.failed(
                f"OpenAI response {status}: {detail or 'no detail'}"
            )
        raise RemoteServiceError(
            f"Unknown OpenAI response status {status!r}", service=SERVICE_NAME
        )

"""Gladia v2 API client for pre-recorded transcription.

This module provides an async HTTP client for the three Gladia calls the
workflow needs: uploading an audio file, creating a pre-recorded
transcription job, and polling that job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from audioflow.config.models import GladiaConfig
from audioflow.exceptions import RemoteServiceError
from audioflow.services.interfaces import RemoteJobStatus

logger = logging.getLogger(__name__)

SERVICE_NAME = "gladia"

_PENDING_STATES = frozenset({"queued", "processing"})


@dataclass(frozen=True)
class GladiaUpload:
    """Response of POST /v2/upload."""

    audio_url: str
    audio_duration: float | None = None


@dataclass(frozen=True)
class GladiaJob:
    """Subset of GET /v2/pre-recorded/{id}."""

    id: str
    status: str  # queued, processing, done, error
    result: dict[str, Any] | None = None
    error_code: int | None = None


class GladiaClient:
    """Async HTTP client for the Gladia v2 API.

    Implements the TranscriptionService protocol.
    """

    def __init__(
        self,
        config: GladiaConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Gladia configuration with base URL and API key.
            transport: Optional httpx transport (tests pass a MockTransport).
        """
        if not config.api_key:
            raise ValueError("Gladia API key is required")
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
                headers=self._headers(),
                transport=self._transport,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        """Get request headers with the API key."""
        return {"x-gladia-key": self._config.api_key or ""}

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
                    "Invalid Gladia API key", service=SERVICE_NAME, status_code=401
                )
            response.raise_for_status()
            data = response.json()
        except httpx.ConnectError as e:
            raise RemoteServiceError(
                f"Cannot connect to Gladia: {e}", service=SERVICE_NAME
            ) from e
        except httpx.TimeoutException as e:
            raise RemoteServiceError(
                f"Gladia request timed out: {e}", service=SERVICE_NAME
            ) from e
        except httpx.HTTPStatusError as e:
            raise RemoteServiceError(
                f"Gladia HTTP error {e.response.status_code}: {e.response.text[:200]}",
                service=SERVICE_NAME,
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise RemoteServiceError(
                f"Gladia request failed: {e}", service=SERVICE_NAME
            ) from e
        except ValueError as e:
            raise RemoteServiceError(
                f"Gladia returned invalid JSON: {e}", service=SERVICE_NAME
            ) from e

        if not isinstance(data, dict):
            raise RemoteServiceError(
                "Gladia returned an unexpected response body", service=SERVICE_NAME
            )
        return data

    async def upload(self, path: Path) -> str:
        """Upload an audio file.

        Args:
            path: MP3 (or other supported audio) file to upload.

        Returns:
            The audio_url to pass to submit().

        Raises:
            RemoteServiceError: If the upload fails or the response has no URL.
        """
        try:
            content = path.read_bytes()
        except OSError as e:
            raise RemoteServiceError(
                f"Cannot read {path} for upload: {e}", service=SERVICE_NAME
            ) from e

        data = await self._request(
            "POST",
            "/v2/upload",
            files={"audio": (path.name, content, "audio/mpeg")},
        )
        upload = self._parse_upload(data)
        logger.info("Uploaded %s to Gladia", path.name)
        return upload.audio_url

    async def submit(self, audio_ref: str, *, speakers: int = 1) -> str:
        """Create a pre-recorded transcription job.

        Diarization is enabled only for recordings expected to hold more
        than one speaker.

        Args:
            audio_ref: audio_url returned by upload().
            speakers: Expected number of speakers.

        Returns:
            The Gladia job ID.

        Raises:
            RemoteServiceError: If the job cannot be created.
        """
        body: dict[str, Any] = {
            "audio_url": audio_ref,
            "language": self._config.language,
            "diarization": self._config.diarization and speakers > 1,
        }
        if body["diarization"]:
            body["diarization_config"] = {
                "number_of_speakers": speakers,
                "min_speakers": 1,
                "max_speakers": speakers,
            }

        data = await self._request("POST", "/v2/pre-recorded", json=body)
        job_id = data.get("id")
        if not isinstance(job_id, str) or not job_id:
            raise RemoteServiceError(
                "Gladia response has no job id", service=SERVICE_NAME
            )
        logger.debug("Created Gladia job %s (speakers=%d)", job_id, speakers)
        return job_id

    async def poll_status(self, job_id: str) -> RemoteJobStatus:
        """Fetch the state of a transcription job.

        Returns:
            Pending while queued or processing, done with the job's result
            object, or failed with the reported error.

        Raises:
            RemoteServiceError: If the request fails or the status is unknown.
        """
        data = await self._request("GET", f"/v2/pre-recorded/{job_id}")
        job = self._parse_job(data, job_id)

        if job.status in _PENDING_STATES:
            return RemoteJobStatus.pending()
        if job.status == "done":
            if job.result is None:
                raise RemoteServiceError(
                    f"Gladia job {job_id} is done but has no result",
                    service=SERVICE_NAME,
                )
            return RemoteJobStatus.done(job.result)
        if job.status == "error":
            return RemoteJobStatus.failed(
                f"Gladia job error (code {job.error_code})"
                if job.error_code is not None
                else "Gladia job error"
            )
        raise RemoteServiceError(
            f"Unknown Gladia job status {job.status!r}", service=SERVICE_NAME
        )

    def _parse_upload(self, data: dict[str, Any]) -> GladiaUpload:
        """Parse the upload response."""
        audio_url = data.get("audio_url")
        if not isinstance(audio_url, str) or not audio_url:
            raise RemoteServiceError(
                "Gladia upload response has no audio_url", service=SERVICE_NAME
            )
        metadata = data.get("audio_metadata") or {}
        return GladiaUpload(
            audio_url=audio_url,
            audio_duration=metadata.get("audio_duration"),
        )

    def _parse_job(self, data: dict[str, Any], job_id: str) -> GladiaJob:
        """Parse a job status response."""
        status = data.get("status")
        if not isinstance(status, str):
            raise RemoteServiceError(
                f"Gladia job {job_id} response has no status", service=SERVICE_NAME
            )
        result = data.get("result")
        return GladiaJob(
            id=data.get("id", job_id),
            status=status,
            result=result if isinstance(result, dict) else None,
            error_code=data.get("error_code"),
        )

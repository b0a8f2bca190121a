"""Qualtrics response-export client driven as an explicit state machine."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 20
MAX_POLL_ATTEMPTS = 30
POLL_INTERVAL_SECONDS = 1.0
EXPORT_FORMAT_BODY = {"format": "json", "compress": False}

Sleeper = Callable[[float], None]


class QualtricsExportError(RuntimeError):
    """Base class for failures of the create/poll/download export protocol."""


class ExportCreateError(QualtricsExportError):
    """Raised when the export job cannot be created."""


class ExportPollError(QualtricsExportError):
    """Raised when a progress check fails or returns a malformed payload."""


class ExportFailedError(QualtricsExportError):
    """Raised when the platform reports the export job as failed."""


class ExportTimeoutError(QualtricsExportError):
    """Raised when the export does not finish within the polling budget."""


class ExportDownloadError(QualtricsExportError):
    """Raised when the finished export file cannot be downloaded."""


class ExportState(str, Enum):
    """Lifecycle of a single export job."""

    CREATED = "created"
    POLLING = "polling"
    COMPLETE = "complete"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    DOWNLOADED = "downloaded"


_TRANSITIONS: dict[ExportState, frozenset[ExportState]] = {
    ExportState.CREATED: frozenset({ExportState.POLLING}),
    ExportState.POLLING: frozenset({ExportState.COMPLETE, ExportState.FAILED, ExportState.TIMED_OUT}),
    ExportState.COMPLETE: frozenset({ExportState.DOWNLOADED}),
    ExportState.FAILED: frozenset(),
    ExportState.TIMED_OUT: frozenset(),
    ExportState.DOWNLOADED: frozenset(),
}


@dataclass
class ExportJob:
    """Transient record of one export request; never persisted."""

    survey_id: str
    progress_id: str
    state: ExportState = ExportState.CREATED
    file_id: str | None = None
    attempts: int = 0

    def advance(self, state: ExportState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(f"invalid export transition {self.state.value} -> {state.value}")
        logger.info(
            "Export job %s: %s -> %s (survey=%s attempts=%s)",
            self.progress_id,
            self.state.value,
            state.value,
            self.survey_id,
            self.attempts,
        )
        self.state = state


@dataclass(frozen=True)
class QualtricsConfig:
    """Connection settings for the Qualtrics v3 API."""

    base_url: str
    api_token: str

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "QualtricsConfig":
        source = os.environ if env is None else env
        base_url = source.get("QUALTRICS_BASE_URL", "").strip()
        if not base_url:
            datacenter_id = source.get("QUALTRICS_DATACENTER_ID", "").strip()
            if datacenter_id:
                base_url = f"https://{datacenter_id}.qualtrics.com/API/v3"
        api_token = source.get("QUALTRICS_API_TOKEN", "").strip()
        if not base_url or not api_token:
            raise RuntimeError("server misconfiguration: Qualtrics configuration missing")
        return cls(base_url=base_url.rstrip("/"), api_token=api_token)


def _request_json(
    *,
    url: str,
    token: str,
    method: str,
    body: Mapping[str, Any] | None = None,
) -> Any:
    """Issue one request; transport failures raise OSError, bad bodies ValueError."""
    headers = {"X-API-TOKEN": token, "Accept": "application/json"}
    data = None
    if body is not None:
        headers["Content-Type"] = "application/json"
        data = json.dumps(body).encode("utf-8")
    req = Request(url=url, headers=headers, data=data, method=method)
    with urlopen(req, timeout=_DEFAULT_TIMEOUT_SECONDS) as resp:
        raw = resp.read().decode("utf-8")
    return json.loads(raw) if raw.strip() else {}


def _describe_failure(exc: Exception) -> str:
    if isinstance(exc, HTTPError):
        return f"{exc.code} {exc.reason}"
    if isinstance(exc, URLError):
        return str(exc.reason)
    if isinstance(exc, ValueError):
        return "response body is not valid JSON"
    return str(exc) or type(exc).__name__


def _result_of(payload: Any) -> Mapping[str, Any]:
    if isinstance(payload, dict) and isinstance(payload.get("result"), dict):
        return payload["result"]
    return {}


class QualtricsExportClient:
    """
    Drives the three-step response export.

    Create the job, poll its progress (at most 30 attempts, one second
    apart), then download the finished file. No step is retried; the call
    either returns every response record or raises one QualtricsExportError.
    """

    def __init__(self, *, base_url: str, api_token: str, sleep: Sleeper = time.sleep) -> None:
        self._base_url = base_url.strip().rstrip("/")
        self._api_token = api_token
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: QualtricsConfig, *, sleep: Sleeper = time.sleep) -> "QualtricsExportClient":
        return cls(base_url=config.base_url, api_token=config.api_token, sleep=sleep)

    def _exports_url(self, survey_id: str) -> str:
        return f"{self._base_url}/surveys/{survey_id}/export-responses"

    def create_export(self, survey_id: str) -> ExportJob:
        try:
            payload = _request_json(
                url=self._exports_url(survey_id),
                token=self._api_token,
                method="POST",
                body=EXPORT_FORMAT_BODY,
            )
        except (OSError, ValueError) as exc:
            raise ExportCreateError(f"Failed to create export: {_describe_failure(exc)}") from exc

        progress_id = _result_of(payload).get("progressId")
        if not isinstance(progress_id, str) or not progress_id.strip():
            raise ExportCreateError("Failed to create export: no progressId returned")
        return ExportJob(survey_id=survey_id, progress_id=progress_id)

    def poll_export(self, job: ExportJob) -> ExportJob:
        job.advance(ExportState.POLLING)
        url = f"{self._exports_url(job.survey_id)}/{job.progress_id}"

        while job.attempts < MAX_POLL_ATTEMPTS:
            if job.attempts > 0:
                self._sleep(POLL_INTERVAL_SECONDS)
            job.attempts += 1

            try:
                payload = _request_json(url=url, token=self._api_token, method="GET")
            except (OSError, ValueError) as exc:
                raise ExportPollError(f"Failed to check progress: {_describe_failure(exc)}") from exc

            result = _result_of(payload)
            status = result.get("status")
            if status == "complete":
                file_id = result.get("fileId")
                if not isinstance(file_id, str) or not file_id.strip():
                    raise ExportPollError("Failed to check progress: export complete but no fileId returned")
                job.file_id = file_id
                job.advance(ExportState.COMPLETE)
                return job
            if status == "failed":
                job.advance(ExportState.FAILED)
                raise ExportFailedError("Export failed")

        job.advance(ExportState.TIMED_OUT)
        raise ExportTimeoutError("Export timed out")

    def download_export(self, job: ExportJob) -> list[dict[str, Any]]:
        if job.state is not ExportState.COMPLETE or job.file_id is None:
            raise ValueError("export must be complete before download")

        url = f"{self._exports_url(job.survey_id)}/{job.file_id}/file"
        try:
            payload = _request_json(url=url, token=self._api_token, method="GET")
        except (OSError, ValueError) as exc:
            raise ExportDownloadError(f"Failed to download: {_describe_failure(exc)}") from exc

        responses = payload.get("responses") if isinstance(payload, dict) else None
        job.advance(ExportState.DOWNLOADED)
        if not isinstance(responses, list):
            return []
        return [row for row in responses if isinstance(row, dict)]

    def fetch_responses(self, survey_id: str) -> list[dict[str, Any]]:
        """Run the full export for a survey and return its raw response records."""
        job = self.create_export(survey_id)
        self.poll_export(job)
        responses = self.download_export(job)
        logger.info(
            "Downloaded export for survey %s: responses=%s polls=%s",
            survey_id,
            len(responses),
            job.attempts,
        )
        return responses

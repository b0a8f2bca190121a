"""API Gateway Lambda runtime handler for lecturer session and survey routes."""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from typing import Any, Dict, Mapping

from backend.config import PortalConfig, ReferenceDataConfig
from backend.qualtrics_client import QualtricsConfig, QualtricsExportClient, QualtricsExportError
from backend.reference_data import (
    HttpReferenceDocumentSource,
    ReferenceDataCache,
    ReferenceDocumentSource,
    S3ReferenceDocumentSource,
    UpstreamFetchError,
)
from lecturer_portal.access import Identity, authorize_responses, context_for
from surveys.models import normalize_responses

logger = logging.getLogger(__name__)

IDENTITY_HEADER = "cf-access-authenticated-user-email"
_SESSION_PATHS = frozenset({"/api/session", "/session"})
_SURVEY_PATHS = frozenset({"/api/qualtrics", "/qualtrics"})

ERROR_MISSING_IDENTITY = "Missing Cloudflare Access identity."
ERROR_NO_LECTURER_RECORD = "No lecturer record found for your account."
ERROR_INVALID_SURVEY_KEY = "Invalid survey key."


def _configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    logging.getLogger().setLevel(level)


def _json_response(status_code: int, payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            "Cache-Control": "no-store",
        },
        "body": json.dumps(payload),
    }


def _request_method(event: Mapping[str, Any]) -> str:
    if isinstance(event.get("requestContext"), dict):
        context = event["requestContext"]
        if isinstance(context.get("http"), dict):
            method = context["http"].get("method")
            if isinstance(method, str) and method:
                return method.upper()

    method = event.get("httpMethod", "")
    if isinstance(method, str):
        return method.upper()
    return ""


def _request_path(event: Mapping[str, Any]) -> str:
    raw_path = event.get("rawPath")
    if isinstance(raw_path, str) and raw_path:
        return raw_path

    path = event.get("path")
    if isinstance(path, str) and path:
        return path

    return "/"


def _normalized_path(event: Mapping[str, Any], path: str) -> str:
    """Strip API Gateway stage prefixes (for example '/dev') from request paths."""
    context = event.get("requestContext")
    if not isinstance(context, dict):
        return path

    stage = context.get("stage")
    if not isinstance(stage, str) or not stage.strip() or stage.strip() == "$default":
        return path

    stage_prefix = f"/{stage.strip()}"
    if path == stage_prefix:
        return "/"
    if path.startswith(f"{stage_prefix}/"):
        return path[len(stage_prefix) :]
    return path


def _query_params(event: Mapping[str, Any]) -> dict[str, str]:
    raw = event.get("queryStringParameters")
    if not isinstance(raw, dict):
        return {}

    params: dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(key, str) and isinstance(value, str):
            params[key] = value
    return params


def _headers(event: Mapping[str, Any]) -> dict[str, str]:
    raw = event.get("headers")
    if not isinstance(raw, dict):
        return {}

    normalized: dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(key, str) and isinstance(value, str):
            normalized[key.lower()] = value
    return normalized


def _s3_client() -> Any:
    import boto3

    return boto3.client("s3")


def _reference_document_source(config: ReferenceDataConfig) -> ReferenceDocumentSource:
    if config.bucket:
        return S3ReferenceDocumentSource(_s3_client(), bucket=config.bucket, prefix=config.prefix)
    if config.base_url:
        return HttpReferenceDocumentSource(config.base_url)
    raise RuntimeError(
        "server misconfiguration: REFERENCE_DATA_BUCKET or REFERENCE_DATA_BASE_URL missing"
    )


@lru_cache(maxsize=1)
def _reference_cache() -> ReferenceDataCache:
    """One cache per warm Lambda container, shared by every request it serves."""
    config = ReferenceDataConfig.from_env()
    return ReferenceDataCache(
        _reference_document_source(config),
        lecturer_map_key=config.lecturer_map_key,
        enrollment_partition_keys=config.partition_keys,
    )


def _export_client() -> QualtricsExportClient:
    return QualtricsExportClient.from_config(QualtricsConfig.from_env())


def _resolve_identity(
    event: Mapping[str, Any],
    *,
    config: PortalConfig,
    cache: ReferenceDataCache,
) -> tuple[Identity | None, Dict[str, Any] | None]:
    email = _headers(event).get(IDENTITY_HEADER, "").strip()
    if not email:
        return None, _json_response(401, {"error": ERROR_MISSING_IDENTITY})

    identity = Identity.resolve(
        email=email,
        lecturer_map=cache.load_lecturer_map(),
        admin_emails=config.admin_emails,
    )
    if not identity.is_authorized:
        logger.info("Rejected caller without lecturer record or admin status")
        return None, _json_response(403, {"error": ERROR_NO_LECTURER_RECORD})
    return identity, None


def _handle_session(
    event: Mapping[str, Any],
    *,
    config: PortalConfig,
    cache: ReferenceDataCache,
) -> Dict[str, Any]:
    identity, error = _resolve_identity(event, config=config, cache=cache)
    if error is not None or identity is None:
        return error or _json_response(401, {"error": ERROR_MISSING_IDENTITY})
    return _json_response(200, identity.to_payload())


def _handle_survey_data(
    event: Mapping[str, Any],
    *,
    config: PortalConfig,
    cache: ReferenceDataCache,
    export_client: QualtricsExportClient | None = None,
) -> Dict[str, Any]:
    identity, error = _resolve_identity(event, config=config, cache=cache)
    if error is not None or identity is None:
        return error or _json_response(401, {"error": ERROR_MISSING_IDENTITY})

    params = _query_params(event)
    survey_id = config.survey_id_for(params.get("survey"))
    if survey_id is None:
        return _json_response(400, {"error": ERROR_INVALID_SURVEY_KEY})

    client = export_client or _export_client()
    raw_responses = client.fetch_responses(survey_id)
    normalized = normalize_responses(raw_responses, config.fields)

    request_context = context_for(identity, requested_teacher_id=params.get("teacherId"))
    responses = authorize_responses(request_context, normalized, cache.load_enrollment_index)
    logger.info(
        "Survey responses served: survey=%s admin=%s total=%s visible=%s",
        survey_id,
        identity.is_admin,
        len(normalized),
        len(responses),
    )
    return _json_response(200, {"responses": responses})


def _guarded(handler: Any, event: Mapping[str, Any]) -> Dict[str, Any]:
    """Map upstream failures onto structured error bodies at the route boundary."""
    try:
        return handler(event, config=PortalConfig.from_env(), cache=_reference_cache())
    except (UpstreamFetchError, QualtricsExportError) as exc:
        logger.exception("Upstream request failed")
        return _json_response(502, {"error": str(exc)})
    except RuntimeError as exc:
        logger.exception("Runtime configuration error")
        return _json_response(500, {"error": str(exc)})


def lambda_handler(event: Mapping[str, Any], context: Any) -> Dict[str, Any]:
    """API Gateway Lambda entrypoint for session and survey-data routes."""
    _configure_logging()
    method = _request_method(event)
    path = _normalized_path(event, _request_path(event))

    if method == "GET" and path == "/health":
        return _json_response(200, {"status": "ok"})

    if method == "GET" and path in _SESSION_PATHS:
        return _guarded(_handle_session, event)

    if method == "GET" and path in _SURVEY_PATHS:
        return _guarded(_handle_survey_data, event)

    return _json_response(404, {"error": "not found"})

"""Process-lifetime cache for the lecturer map and teacher enrollment index."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT_SECONDS = 20

DEFAULT_LECTURER_MAP_KEY = "data/lecturer-map.json"
DEFAULT_ENROLLMENT_PARTITION_KEYS = (
    "data/enrollment-data.part001.json",
    "data/enrollment-data.part002.json",
    "data/enrollment-data.part003.json",
    "data/enrollment-data.part004.json",
    "data/enrollment-data.part005.json",
)


class UpstreamFetchError(RuntimeError):
    """Raised when a reference document cannot be fetched or parsed."""


@runtime_checkable
class ReferenceDocumentSource(Protocol):
    """Read-only store of static JSON reference documents."""

    def fetch_json(self, key: str) -> Any:
        """Return the decoded JSON document stored under key."""


class S3ReferenceDocumentSource:
    """Reads reference documents from an S3 bucket."""

    def __init__(self, client: Any, *, bucket: str, prefix: str = "") -> None:
        self._client = client
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    def _object_key(self, key: str) -> str:
        if not self._prefix:
            return key.lstrip("/")
        return f"{self._prefix}/{key.lstrip('/')}"

    def fetch_json(self, key: str) -> Any:
        object_key = self._object_key(key)
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=object_key)
            raw = response["Body"].read()
        except Exception as exc:
            raise UpstreamFetchError(
                f"Unable to load {key} from s3://{self._bucket}/{object_key}: {exc}"
            ) from exc

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise UpstreamFetchError(f"Unable to load {key}: document is not valid JSON") from exc


class HttpReferenceDocumentSource:
    """Reads reference documents from a static asset host."""

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url.strip().rstrip("/")

    def fetch_json(self, key: str) -> Any:
        url = f"{self._base_url}/{key.lstrip('/')}"
        req = Request(url=url, headers={"Accept": "application/json"}, method="GET")
        try:
            with urlopen(req, timeout=_DEFAULT_TIMEOUT_SECONDS) as resp:
                raw = resp.read()
        except HTTPError as exc:
            raise UpstreamFetchError(f"Unable to load {key} ({exc.code})") from exc
        except URLError as exc:  # pragma: no cover - network path
            raise UpstreamFetchError(f"Unable to load {key}: {exc.reason}") from exc
        except OSError as exc:
            raise UpstreamFetchError(f"Unable to load {key}: {exc}") from exc

        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise UpstreamFetchError(f"Unable to load {key}: document is not valid JSON") from exc


def _clean_id(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    return str(value).strip()


def _first_non_empty(row: Mapping[str, Any], *names: str) -> str:
    for name in names:
        cleaned = _clean_id(row.get(name))
        if cleaned:
            return cleaned
    return ""


def parse_lecturer_map(document: Any) -> dict[str, str]:
    """Normalize the `emailToTeacherId` object of a lecturer-map document."""
    if not isinstance(document, dict):
        return {}
    raw = document.get("emailToTeacherId")
    if not isinstance(raw, dict):
        return {}

    lecturer_map: dict[str, str] = {}
    for email, teacher_id in raw.items():
        if not isinstance(email, str) or not email.strip():
            continue
        cleaned = _clean_id(teacher_id)
        if cleaned:
            lecturer_map[email.strip().lower()] = cleaned
    return lecturer_map


def enrollment_rows(document: Any) -> list[tuple[str, str]]:
    """Extract valid `(teacherId, courseCode)` pairs from one partition."""
    if not isinstance(document, dict):
        return []
    rows = document.get("enrollmentData")
    if not isinstance(rows, list):
        return []

    pairs: list[tuple[str, str]] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        teacher_id = _first_non_empty(row, "teacherId", "TeacherId")
        course_code = _first_non_empty(row, "CourseCode", "courseCode")
        if not teacher_id or not course_code:
            continue
        pairs.append((teacher_id, course_code))
    return pairs


class ReferenceDataCache:
    """
    Lazily loads and memoizes reference data for the life of the process.

    Each loader builds at most once. A build runs under a lock, and its result
    is only committed after every document loaded, so a failed build is
    retried on the next call instead of leaving a partial index behind.
    """

    def __init__(
        self,
        source: ReferenceDocumentSource,
        *,
        lecturer_map_key: str = DEFAULT_LECTURER_MAP_KEY,
        enrollment_partition_keys: Sequence[str] = DEFAULT_ENROLLMENT_PARTITION_KEYS,
    ) -> None:
        self._source = source
        self._lecturer_map_key = lecturer_map_key
        self._partition_keys = tuple(enrollment_partition_keys)
        self._lecturer_map: Mapping[str, str] | None = None
        self._enrollment_index: Mapping[str, frozenset[str]] | None = None
        self._lecturer_map_lock = threading.Lock()
        self._enrollment_lock = threading.Lock()

    @property
    def partition_keys(self) -> tuple[str, ...]:
        return self._partition_keys

    def load_lecturer_map(self) -> Mapping[str, str]:
        if self._lecturer_map is not None:
            return self._lecturer_map

        with self._lecturer_map_lock:
            if self._lecturer_map is None:
                document = self._source.fetch_json(self._lecturer_map_key)
                lecturer_map = parse_lecturer_map(document)
                logger.info(
                    "Loaded lecturer map: key=%s entries=%s",
                    self._lecturer_map_key,
                    len(lecturer_map),
                )
                self._lecturer_map = lecturer_map
        return self._lecturer_map

    def load_enrollment_index(self) -> Mapping[str, frozenset[str]]:
        if self._enrollment_index is not None:
            return self._enrollment_index

        with self._enrollment_lock:
            if self._enrollment_index is None:
                self._enrollment_index = self._build_enrollment_index()
        return self._enrollment_index

    def _build_enrollment_index(self) -> Mapping[str, frozenset[str]]:
        courses_by_teacher: dict[str, set[str]] = {}
        for key in self._partition_keys:
            try:
                document = self._source.fetch_json(key)
            except UpstreamFetchError:
                logger.error("Enrollment partition fetch failed: key=%s", key)
                raise
            rows = enrollment_rows(document)
            for teacher_id, course_code in rows:
                courses_by_teacher.setdefault(teacher_id, set()).add(course_code)
            logger.info("Loaded enrollment partition: key=%s rows=%s", key, len(rows))

        return {teacher_id: frozenset(codes) for teacher_id, codes in courses_by_teacher.items()}

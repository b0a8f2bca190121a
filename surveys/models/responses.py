"""Survey response normalization onto canonical course/teacher fields."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

FIELD_COURSE_CODE = "CourseCode"
FIELD_TEACHER_ID = "teacherId"

# Literal fallbacks tried after the configured field name, in order.
_COURSE_CODE_FALLBACKS = ("CourseCode", "courseCode")
_TEACHER_ID_FALLBACKS = ("teacherId", "TeacherId")


class ResponseShapeError(ValueError):
    """Raised when an exported response record is not an object."""


@dataclass(frozen=True)
class ResponseFieldMap:
    """Upstream field names that carry the course code and teacher id."""

    course_code_field: str = FIELD_COURSE_CODE
    teacher_id_field: str = FIELD_TEACHER_ID

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ResponseFieldMap":
        source = os.environ if env is None else env
        course_code_field = source.get("QUALTRICS_COURSE_CODE_FIELD", "").strip()
        teacher_id_field = source.get("QUALTRICS_TEACHER_ID_FIELD", "").strip()
        return cls(
            course_code_field=course_code_field or FIELD_COURSE_CODE,
            teacher_id_field=teacher_id_field or FIELD_TEACHER_ID,
        )


def _first_present(values: Mapping[str, Any], names: Iterable[str]) -> Any:
    for name in names:
        value = values.get(name)
        if value not in (None, ""):
            return value
    return None


def normalize_response(record: Mapping[str, Any], fields: ResponseFieldMap) -> dict[str, Any]:
    """
    Flatten one exported record and stamp the canonical fields.

    Every key of the record's `values` object is kept; `CourseCode` and
    `teacherId` are overwritten with the first non-empty candidate, or None.
    """
    if not isinstance(record, Mapping):
        raise ResponseShapeError("survey response record must be an object")

    values = record.get("values")
    if not isinstance(values, Mapping):
        values = {}

    normalized = dict(values)
    normalized[FIELD_COURSE_CODE] = _first_present(
        values, (fields.course_code_field, *_COURSE_CODE_FALLBACKS)
    )
    normalized[FIELD_TEACHER_ID] = _first_present(
        values, (fields.teacher_id_field, *_TEACHER_ID_FALLBACKS)
    )
    return normalized


def normalize_responses(
    records: Iterable[Mapping[str, Any]],
    fields: ResponseFieldMap | None = None,
) -> list[dict[str, Any]]:
    field_map = fields or ResponseFieldMap()
    return [normalize_response(record, field_map) for record in records]

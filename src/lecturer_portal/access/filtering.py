"""Course-level authorization filter for normalized survey responses."""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

from .model import AdminContext, RequestContext, TeacherContext

EnrollmentIndex = Mapping[str, frozenset[str]]
EnrollmentIndexLoader = Callable[[], EnrollmentIndex]


def _courses_for(index: EnrollmentIndex, teacher_id: str) -> frozenset[str]:
    return frozenset(index.get(str(teacher_id), frozenset()))


def _teacher_course_filter(
    context: TeacherContext,
    load_index: EnrollmentIndexLoader,
) -> frozenset[str] | None:
    return _courses_for(load_index(), context.teacher_id)


def _admin_course_filter(
    context: AdminContext,
    load_index: EnrollmentIndexLoader,
) -> frozenset[str] | None:
    if context.target_teacher_id is None:
        return None
    return _courses_for(load_index(), context.target_teacher_id)


_FILTERS_BY_CONTEXT: dict[type, Callable[[Any, EnrollmentIndexLoader], frozenset[str] | None]] = {
    TeacherContext: _teacher_course_filter,
    AdminContext: _admin_course_filter,
}


def course_filter_for(
    context: RequestContext,
    load_index: EnrollmentIndexLoader,
) -> frozenset[str] | None:
    """
    Resolve the course codes a request may see.

    Returns None when the caller is unrestricted (admin without a target
    teacher). The enrollment index is only loaded when a filter applies.
    """
    handler = _FILTERS_BY_CONTEXT.get(type(context))
    if handler is None:
        raise TypeError(f"unsupported request context: {type(context).__name__}")
    return handler(context, load_index)


def filter_responses(
    responses: Sequence[Mapping[str, Any]],
    course_filter: frozenset[str] | None,
) -> list[dict[str, Any]]:
    """Keep rows whose CourseCode is in the filter, preserving order."""
    if course_filter is None:
        return [dict(row) for row in responses]

    kept: list[dict[str, Any]] = []
    for row in responses:
        course_code = row.get("CourseCode")
        # Multi-answer fields come back as lists; only plain codes can match.
        if not isinstance(course_code, str) or not course_code:
            continue
        if course_code in course_filter:
            kept.append(dict(row))
    return kept


def authorize_responses(
    context: RequestContext,
    responses: Sequence[Mapping[str, Any]],
    load_index: EnrollmentIndexLoader,
) -> list[dict[str, Any]]:
    return filter_responses(responses, course_filter_for(context, load_index))

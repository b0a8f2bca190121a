"""Caller identity resolution and course-level response authorization."""

from .filtering import authorize_responses, course_filter_for, filter_responses
from .model import (
    AdminContext,
    Identity,
    RequestContext,
    TeacherContext,
    context_for,
    normalize_email,
    parse_admin_emails,
)

__all__ = [
    "AdminContext",
    "Identity",
    "RequestContext",
    "TeacherContext",
    "authorize_responses",
    "context_for",
    "course_filter_for",
    "filter_responses",
    "normalize_email",
    "parse_admin_emails",
]

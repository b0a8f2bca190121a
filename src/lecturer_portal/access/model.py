"""Caller identity and request-context model for survey access checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Union


def normalize_email(value: str) -> str:
    """Return the canonical (trimmed, lower-cased) form of an email address."""
    return value.strip().lower()


def parse_admin_emails(raw: str | None) -> frozenset[str]:
    """Parse a comma-separated admin list into normalized emails."""
    if not raw:
        return frozenset()
    return frozenset(normalize_email(part) for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class Identity:
    """Verified caller resolved against the lecturer map and admin list."""

    email: str
    teacher_id: str | None
    is_admin: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.email, str) or not self.email.strip():
            raise ValueError("email must not be empty")
        if self.teacher_id is not None and not str(self.teacher_id).strip():
            raise ValueError("teacher_id must be omitted instead of empty")

    @classmethod
    def resolve(
        cls,
        *,
        email: str,
        lecturer_map: Mapping[str, str],
        admin_emails: Iterable[str],
    ) -> "Identity":
        normalized = normalize_email(email)
        teacher_id = lecturer_map.get(normalized) or None
        return cls(
            email=normalized,
            teacher_id=teacher_id,
            is_admin=normalized in set(admin_emails),
        )

    @property
    def is_authorized(self) -> bool:
        """Callers need either a lecturer record or admin status."""
        return self.teacher_id is not None or self.is_admin

    def to_payload(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "teacherId": self.teacher_id,
            "isAdmin": self.is_admin,
        }


@dataclass(frozen=True)
class TeacherContext:
    """Non-admin caller restricted to their own enrolled courses."""

    teacher_id: str


@dataclass(frozen=True)
class AdminContext:
    """Admin caller, optionally viewing responses as another teacher."""

    target_teacher_id: str | None = None


RequestContext = Union[TeacherContext, AdminContext]


def context_for(identity: Identity, *, requested_teacher_id: str | None = None) -> RequestContext:
    """Build the request context; the teacher override is honored for admins only."""
    if identity.is_admin:
        target = (requested_teacher_id or "").strip() or None
        return AdminContext(target_teacher_id=target)
    if identity.teacher_id is None:
        raise ValueError("non-admin identity requires a teacher_id")
    return TeacherContext(teacher_id=identity.teacher_id)

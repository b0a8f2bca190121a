"""Environment-driven settings for the survey portal runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from backend.reference_data import DEFAULT_ENROLLMENT_PARTITION_KEYS, DEFAULT_LECTURER_MAP_KEY
from lecturer_portal.access import parse_admin_emails
from surveys.models import ResponseFieldMap

SURVEY_KEY_ENV_VARS = {
    "courseDesign": "QUALTRICS_COURSE_DESIGN_SURVEY_ID",
    "learningExp": "QUALTRICS_LEARNING_EXP_SURVEY_ID",
}


def _split_csv(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class ReferenceDataConfig:
    """Where the lecturer map and enrollment partitions are read from."""

    bucket: str | None = None
    prefix: str = ""
    base_url: str | None = None
    lecturer_map_key: str = DEFAULT_LECTURER_MAP_KEY
    partition_keys: tuple[str, ...] = DEFAULT_ENROLLMENT_PARTITION_KEYS

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ReferenceDataConfig":
        source = os.environ if env is None else env
        partitions = _split_csv(source.get("ENROLLMENT_PARTITIONS", ""))
        return cls(
            bucket=source.get("REFERENCE_DATA_BUCKET", "").strip() or None,
            prefix=source.get("REFERENCE_DATA_PREFIX", "").strip(),
            base_url=source.get("REFERENCE_DATA_BASE_URL", "").strip() or None,
            lecturer_map_key=source.get("LECTURER_MAP_KEY", "").strip() or DEFAULT_LECTURER_MAP_KEY,
            partition_keys=partitions or DEFAULT_ENROLLMENT_PARTITION_KEYS,
        )


@dataclass(frozen=True)
class PortalConfig:
    """Per-invocation view of admin, survey and field-mapping settings."""

    admin_emails: frozenset[str] = frozenset()
    survey_ids: Mapping[str, str] = field(default_factory=dict)
    fields: ResponseFieldMap = ResponseFieldMap()

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "PortalConfig":
        source = os.environ if env is None else env
        survey_ids: dict[str, str] = {}
        for survey_key, env_var in SURVEY_KEY_ENV_VARS.items():
            survey_id = source.get(env_var, "").strip()
            if survey_id:
                survey_ids[survey_key] = survey_id
        return cls(
            admin_emails=parse_admin_emails(source.get("ADMIN_EMAILS", "")),
            survey_ids=survey_ids,
            fields=ResponseFieldMap.from_env(source),
        )

    def survey_id_for(self, survey_key: str | None) -> str | None:
        """Resolve a recognized survey key to its configured survey id."""
        if survey_key not in SURVEY_KEY_ENV_VARS:
            return None
        return self.survey_ids.get(survey_key)

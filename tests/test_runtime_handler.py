"""Unit tests for API runtime lambda routing, identity checks and survey filtering."""

from __future__ import annotations

import json
import unittest
from unittest.mock import patch

from backend.qualtrics_client import ExportFailedError, ExportTimeoutError
from backend.reference_data import ReferenceDataCache, UpstreamFetchError
from backend.runtime import _reference_cache, lambda_handler

PARTS = ("data/enrollment-data.part001.json", "data/enrollment-data.part002.json")
BASE_ENV = {
    "ADMIN_EMAILS": "Admin@Example.edu, dean@example.edu",
    "QUALTRICS_BASE_URL": "https://fra1.qualtrics.com/API/v3",
    "QUALTRICS_API_TOKEN": "token",
    "QUALTRICS_COURSE_DESIGN_SURVEY_ID": "SV_design",
    "QUALTRICS_LEARNING_EXP_SURVEY_ID": "SV_learning",
}


class _MemoryDocumentSource:
    def __init__(self, documents: dict[str, object]) -> None:
        self.documents = documents
        self.calls: list[str] = []

    def fetch_json(self, key: str) -> object:
        self.calls.append(key)
        if key not in self.documents:
            raise UpstreamFetchError(f"Unable to load {key}")
        return self.documents[key]


class _FakeExportClient:
    def __init__(self, responses: list[dict] | None = None, error: Exception | None = None) -> None:
        self.responses = responses or []
        self.error = error
        self.survey_ids: list[str] = []

    def fetch_responses(self, survey_id: str) -> list[dict]:
        self.survey_ids.append(survey_id)
        if self.error is not None:
            raise self.error
        return self.responses


def _documents() -> dict[str, object]:
    return {
        "data/lecturer-map.json": {
            "emailToTeacherId": {"ada@example.edu": "T1", "admin@example.edu": "T9"}
        },
        PARTS[0]: {"enrollmentData": [{"teacherId": "T1", "CourseCode": "CS101"}]},
        PARTS[1]: {
            "enrollmentData": [
                {"TeacherId": "T2", "courseCode": "MATH200"},
                {"teacherId": "T9", "CourseCode": "CS102"},
            ]
        },
    }


def _raw(course_code: str, response_id: str) -> dict:
    return {"responseId": response_id, "values": {"CourseCode": course_code, "Q1": "5"}}


RAW_RESPONSES = [
    _raw("CS101", "R1"),
    _raw("CS102", "R2"),
    _raw("MATH200", "R3"),
    _raw("CS101", "R4"),
]


def _event(path: str, *, email: str | None = None, query: dict[str, str] | None = None) -> dict:
    event: dict = {"httpMethod": "GET", "path": path}
    if email is not None:
        event["headers"] = {"CF-Access-Authenticated-User-Email": email}
    if query is not None:
        event["queryStringParameters"] = query
    return event


class RuntimeHandlerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.source = _MemoryDocumentSource(_documents())
        self.cache = ReferenceDataCache(self.source, enrollment_partition_keys=PARTS)
        self.export_client = _FakeExportClient(RAW_RESPONSES)

    def _invoke(self, event: dict, env: dict[str, str] | None = None) -> dict:
        env_vars = dict(BASE_ENV)
        if env is not None:
            env_vars.update(env)

        with patch.dict("os.environ", env_vars, clear=True), patch(
            "backend.runtime._reference_cache", return_value=self.cache
        ), patch("backend.runtime._export_client", return_value=self.export_client):
            return lambda_handler(event, None)

    @staticmethod
    def _body(response: dict) -> dict:
        return json.loads(response["body"])

    def test_health_route_returns_ok(self) -> None:
        response = self._invoke({"httpMethod": "GET", "path": "/health"})
        self.assertEqual(response["statusCode"], 200)
        self.assertEqual(self._body(response), {"status": "ok"})

    def test_unknown_route_returns_not_found(self) -> None:
        response = self._invoke(_event("/api/unknown", email="ada@example.edu"))
        self.assertEqual(response["statusCode"], 404)

    def test_responses_are_never_cached(self) -> None:
        response = self._invoke(_event("/api/session", email="ada@example.edu"))
        self.assertEqual(response["headers"]["Cache-Control"], "no-store")
        self.assertEqual(response["headers"]["Content-Type"], "application/json")

    def test_session_returns_identity(self) -> None:
        response = self._invoke(_event("/api/session", email="  Ada@Example.edu "))
        self.assertEqual(response["statusCode"], 200)
        self.assertEqual(
            self._body(response),
            {"email": "ada@example.edu", "teacherId": "T1", "isAdmin": False},
        )

    def test_session_returns_numeric_teacher_id_as_string(self) -> None:
        self.source.documents["data/lecturer-map.json"] = {"emailToTeacherId": {"num@example.edu": 123}}

        response = self._invoke(_event("/api/session", email="num@example.edu"))

        self.assertEqual(response["statusCode"], 200)
        self.assertEqual(self._body(response)["teacherId"], "123")

    def test_session_accepts_lowercase_header_and_stage_prefix(self) -> None:
        event = {
            "requestContext": {"stage": "dev", "http": {"method": "GET"}},
            "rawPath": "/dev/api/session",
            "headers": {"cf-access-authenticated-user-email": "dean@example.edu"},
        }
        response = self._invoke(event)
        self.assertEqual(response["statusCode"], 200)
        self.assertEqual(
            self._body(response),
            {"email": "dean@example.edu", "teacherId": None, "isAdmin": True},
        )

    def test_missing_identity_is_rejected_before_reference_data_loads(self) -> None:
        for path in ("/api/session", "/api/qualtrics"):
            response = self._invoke(_event(path, query={"survey": "courseDesign"}))
            self.assertEqual(response["statusCode"], 401)
            self.assertEqual(self._body(response), {"error": "Missing Cloudflare Access identity."})
        self.assertEqual(self.source.calls, [])
        self.assertEqual(self.export_client.survey_ids, [])

    def test_unknown_caller_gets_forbidden(self) -> None:
        for path in ("/api/session", "/api/qualtrics"):
            response = self._invoke(_event(path, email="stranger@example.edu", query={"survey": "courseDesign"}))
            self.assertEqual(response["statusCode"], 403)
            self.assertEqual(self._body(response), {"error": "No lecturer record found for your account."})
        self.assertEqual(self.export_client.survey_ids, [])

    def test_invalid_survey_key_is_rejected(self) -> None:
        for query in ({"survey": "bogus"}, {}, None):
            response = self._invoke(_event("/api/qualtrics", email="ada@example.edu", query=query))
            self.assertEqual(response["statusCode"], 400)
            self.assertEqual(self._body(response), {"error": "Invalid survey key."})
        self.assertEqual(self.export_client.survey_ids, [])

    def test_unconfigured_survey_id_is_invalid_survey_key(self) -> None:
        env = {key: value for key, value in BASE_ENV.items() if key != "QUALTRICS_LEARNING_EXP_SURVEY_ID"}
        with patch.dict("os.environ", env, clear=True), patch(
            "backend.runtime._reference_cache", return_value=self.cache
        ):
            response = lambda_handler(
                _event("/api/qualtrics", email="ada@example.edu", query={"survey": "learningExp"}),
                None,
            )
        self.assertEqual(response["statusCode"], 400)

    def test_teacher_sees_only_enrolled_course_responses(self) -> None:
        response = self._invoke(
            _event("/api/qualtrics", email="ada@example.edu", query={"survey": "courseDesign"})
        )

        self.assertEqual(response["statusCode"], 200)
        rows = self._body(response)["responses"]
        self.assertEqual([row["CourseCode"] for row in rows], ["CS101", "CS101"])
        self.assertEqual(rows[0], {"CourseCode": "CS101", "Q1": "5", "teacherId": None})
        self.assertEqual(self.export_client.survey_ids, ["SV_design"])

    def test_multi_answer_course_code_rows_are_dropped(self) -> None:
        self.export_client.responses = [
            {"responseId": "R1", "values": {"CourseCode": ["CS101", "CS102"]}},
            _raw("CS101", "R2"),
        ]

        response = self._invoke(
            _event("/api/qualtrics", email="ada@example.edu", query={"survey": "courseDesign"})
        )

        self.assertEqual(response["statusCode"], 200)
        rows = self._body(response)["responses"]
        self.assertEqual([row["CourseCode"] for row in rows], ["CS101"])

    def test_teacher_override_is_ignored_for_non_admins(self) -> None:
        response = self._invoke(
            _event(
                "/api/qualtrics",
                email="ada@example.edu",
                query={"survey": "learningExp", "teacherId": "T2"},
            )
        )
        rows = self._body(response)["responses"]
        self.assertEqual({row["CourseCode"] for row in rows}, {"CS101"})
        self.assertEqual(self.export_client.survey_ids, ["SV_learning"])

    def test_admin_without_target_sees_every_response(self) -> None:
        response = self._invoke(
            _event("/api/qualtrics", email="admin@example.edu", query={"survey": "courseDesign"})
        )
        rows = self._body(response)["responses"]
        self.assertEqual([row["CourseCode"] for row in rows], ["CS101", "CS102", "MATH200", "CS101"])
        self.assertFalse(any(key.startswith("data/enrollment") for key in self.source.calls))

    def test_admin_with_target_sees_only_that_teachers_courses(self) -> None:
        response = self._invoke(
            _event(
                "/api/qualtrics",
                email="admin@example.edu",
                query={"survey": "courseDesign", "teacherId": "T2"},
            )
        )
        rows = self._body(response)["responses"]
        self.assertEqual([row["CourseCode"] for row in rows], ["MATH200"])

    def test_configured_field_names_drive_filtering(self) -> None:
        self.export_client.responses = [
            {"values": {"QID7": "CS101", "QID8": "T1"}},
            {"values": {"QID7": "CS999", "QID8": "T1"}},
        ]
        response = self._invoke(
            _event("/api/qualtrics", email="ada@example.edu", query={"survey": "courseDesign"}),
            env={"QUALTRICS_COURSE_CODE_FIELD": "QID7", "QUALTRICS_TEACHER_ID_FIELD": "QID8"},
        )
        rows = self._body(response)["responses"]
        self.assertEqual(rows, [{"QID7": "CS101", "QID8": "T1", "CourseCode": "CS101", "teacherId": "T1"}])

    def test_reference_data_is_fetched_once_across_requests(self) -> None:
        for _ in range(3):
            self._invoke(_event("/api/qualtrics", email="ada@example.edu", query={"survey": "courseDesign"}))
        self.assertEqual(self.source.calls.count("data/lecturer-map.json"), 1)
        self.assertEqual(self.source.calls.count(PARTS[0]), 1)

    def test_export_failure_returns_bad_gateway(self) -> None:
        self.export_client.error = ExportFailedError("Export failed")
        response = self._invoke(
            _event("/api/qualtrics", email="ada@example.edu", query={"survey": "courseDesign"})
        )
        self.assertEqual(response["statusCode"], 502)
        self.assertEqual(self._body(response), {"error": "Export failed"})

    def test_export_timeout_returns_bad_gateway(self) -> None:
        self.export_client.error = ExportTimeoutError("Export timed out")
        response = self._invoke(
            _event("/api/qualtrics", email="admin@example.edu", query={"survey": "learningExp"})
        )
        self.assertEqual(response["statusCode"], 502)

    def test_reference_data_failure_returns_bad_gateway(self) -> None:
        del self.source.documents[PARTS[1]]
        response = self._invoke(
            _event("/api/qualtrics", email="ada@example.edu", query={"survey": "courseDesign"})
        )
        self.assertEqual(response["statusCode"], 502)
        self.assertIn(PARTS[1], self._body(response)["error"])

    def test_missing_qualtrics_configuration_returns_server_error(self) -> None:
        env = {key: value for key, value in BASE_ENV.items() if key != "QUALTRICS_API_TOKEN"}
        with patch.dict("os.environ", env, clear=True), patch(
            "backend.runtime._reference_cache", return_value=self.cache
        ):
            response = lambda_handler(
                _event("/api/qualtrics", email="ada@example.edu", query={"survey": "courseDesign"}),
                None,
            )
        self.assertEqual(response["statusCode"], 500)
        self.assertIn("server misconfiguration", self._body(response)["error"])


class _FakeBody:
    def __init__(self, payload: bytes) -> None:
        self._payload = payload

    def read(self) -> bytes:
        return self._payload


class _FakeS3Client:
    def __init__(self, documents: dict[str, object]) -> None:
        self.documents = documents
        self.keys: list[str] = []

    def get_object(self, *, Bucket: str, Key: str) -> dict:  # noqa: N803 - boto3 shape
        self.keys.append(f"{Bucket}/{Key}")
        return {"Body": _FakeBody(json.dumps(self.documents[Key.split("/", 1)[1]]).encode("utf-8"))}


class ReferenceCacheWiringTests(unittest.TestCase):
    def setUp(self) -> None:
        _reference_cache.cache_clear()

    def tearDown(self) -> None:
        _reference_cache.cache_clear()

    def test_bucket_configuration_reads_documents_from_s3(self) -> None:
        client = _FakeS3Client(_documents())
        env = dict(BASE_ENV)
        env.update(
            {
                "REFERENCE_DATA_BUCKET": "portal-reference",
                "REFERENCE_DATA_PREFIX": "v1",
                "ENROLLMENT_PARTITIONS": ",".join(PARTS),
            }
        )

        with patch.dict("os.environ", env, clear=True), patch("backend.runtime._s3_client", return_value=client):
            first = lambda_handler(_event("/api/session", email="ada@example.edu"), None)
            second = lambda_handler(_event("/api/session", email="ada@example.edu"), None)

        self.assertEqual(first["statusCode"], 200)
        self.assertEqual(second["statusCode"], 200)
        self.assertEqual(client.keys, ["portal-reference/v1/data/lecturer-map.json"])
        self.assertEqual(_reference_cache().partition_keys, PARTS)

    def test_missing_reference_store_is_server_misconfiguration(self) -> None:
        with patch.dict("os.environ", BASE_ENV, clear=True):
            response = lambda_handler(_event("/api/session", email="ada@example.edu"), None)
        self.assertEqual(response["statusCode"], 500)


if __name__ == "__main__":
    unittest.main()

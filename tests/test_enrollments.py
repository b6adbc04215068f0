import httpx
import pytest

from app.client.enrollments import EnrollmentClient, parse_enrollment
from app.errors import ServiceUnavailable


def test_parse_nested_enrollment():
    enrollment = parse_enrollment({
        "enrollment_id": 12,
        "created_at": "2024-05-01T10:00:00",
        "batches": {
            "batch_name": "GR-B1-MAY",
            "duration": "6 months",
            "courses": {"course_name": "ON-GR-B1", "program": "German"},
        },
    })

    assert enrollment.enrollment_id == "12"
    assert enrollment.course_name == "ON-GR-B1"
    assert enrollment.duration == 6
    assert enrollment.program == "German"


def test_parse_flat_enrollment_defaults_duration():
    enrollment = parse_enrollment({"enrollment_id": "E1", "course_name": "ON-FR-B1"})

    assert enrollment.course_name == "ON-FR-B1"
    assert enrollment.duration == 1


def test_list_enrollments_over_http():
    def handler(request):
        assert request.url.params["registration_number"] == "REG-1"
        assert request.headers["Authorization"] == "Bearer t0k"
        return httpx.Response(200, json={"enrollments": [
            {"enrollment_id": "E1", "course_name": "ON-GR-B1", "duration": 6},
            {"enrollment_id": "E2", "course_name": "ON-FR-B1", "duration": 3},
        ]})

    http = httpx.Client(base_url="http://enrollments.test", transport=httpx.MockTransport(handler))
    enrollments = EnrollmentClient(http=http, token="t0k").list_enrollments("REG-1")

    assert [e.enrollment_id for e in enrollments] == ["E1", "E2"]


def test_enrollment_service_errors_are_transient():
    http = httpx.Client(base_url="http://enrollments.test", transport=httpx.MockTransport(lambda r: httpx.Response(502)))

    with pytest.raises(ServiceUnavailable):
        EnrollmentClient(http=http).get_enrollment("E1")

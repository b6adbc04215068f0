"""Read-only view of the enrollment service."""

import logging
from dataclasses import dataclass
from typing import List, Optional

import httpx

from app import config
from app.errors import ServiceUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Enrollment:
    enrollment_id: str
    course_name: Optional[str]
    duration: int
    batch_name: Optional[str] = None
    program: Optional[str] = None
    created_at: Optional[str] = None


def _duration(value) -> int:
    try:
        return max(int(str(value).split()[0]), 1)
    except (TypeError, ValueError, IndexError):
        return 1


def parse_enrollment(data: dict) -> Enrollment:
    """Accepts both the nested ``batches.courses`` shape and a flat one."""
    batch = data.get("batches") or data.get("batch") or {}
    if not isinstance(batch, dict):
        batch = {}
    course = batch.get("courses") or batch.get("course") or {}
    if not isinstance(course, dict):
        course = {}
    return Enrollment(
        enrollment_id=str(data["enrollment_id"]),
        course_name=course.get("course_name") or data.get("course_name"),
        duration=_duration(batch.get("duration") or data.get("duration")),
        batch_name=batch.get("batch_name") or data.get("batch_name"),
        program=course.get("program") or data.get("program"),
        created_at=data.get("created_at"),
    )


class EnrollmentClient:
    def __init__(self, base_url: str = None, http: httpx.Client = None, token: Optional[str] = None):
        self.http = http or httpx.Client(base_url=base_url or config.ENROLLMENT_SERVICE_URL, timeout=config.HTTP_TIMEOUT)
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}

    def _get(self, path: str, **params):
        try:
            resp = self.http.get(path, params=params or None, headers=self.headers)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("GET %s failed: %s", path, exc)
            raise ServiceUnavailable(f"Enrollment service request failed: {exc}") from exc
        return resp.json()

    def list_enrollments(self, registration_number: str) -> List[Enrollment]:
        body = self._get("/enrollments", registration_number=registration_number)
        items = body.get("enrollments") if isinstance(body, dict) else body
        return [parse_enrollment(item) for item in items or []]

    def get_enrollment(self, enrollment_id: str) -> Enrollment:
        return parse_enrollment(self._get(f"/enrollments/{enrollment_id}"))

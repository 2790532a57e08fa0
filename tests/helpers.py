from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from classroom_digest.services.classroom_pull import BearerSession, ClassroomClient
from classroom_digest.schemas import Credential
from classroom_digest.services.oauth import FormResponse

FIXED_NOW = datetime(2024, 3, 5, 0, 0, 0, tzinfo=timezone.utc)


def course_row(course_id: str = "c1", name: str = "Physics", **extra: Any) -> dict[str, Any]:
    row = {
        "id": course_id,
        "name": name,
        "alternateLink": f"https://classroom.google.com/c/{course_id}",
        "courseState": "ACTIVE",
    }
    row.update(extra)
    return row


def work_row(work_id: str = "w1", course_id: str = "c1", **extra: Any) -> dict[str, Any]:
    row = {
        "id": work_id,
        "courseId": course_id,
        "title": f"Work {work_id}",
        "alternateLink": f"https://classroom.google.com/c/{course_id}/a/{work_id}",
        "workType": "ASSIGNMENT",
        "creationTime": "2024-03-01T01:00:00.000Z",
        "updateTime": "2024-03-01T02:00:00.000Z",
        "state": "PUBLISHED",
    }
    row.update(extra)
    return row


def announcement_row(ann_id: str = "a1", course_id: str = "c1", **extra: Any) -> dict[str, Any]:
    row = {
        "id": ann_id,
        "courseId": course_id,
        "text": f"Announcement {ann_id}",
        "alternateLink": f"https://classroom.google.com/c/{course_id}/p/{ann_id}",
        "creationTime": "2024-03-01T03:00:00.000Z",
        "updateTime": "2024-03-01T04:00:00.000Z",
    }
    row.update(extra)
    return row


class RoutingFetcher:
    """Answers by URL path suffix; an Exception value is raised instead of returned."""

    def __init__(self, routes: dict[str, Any]):
        self.routes = dict(routes)
        self.calls: list[tuple[str, dict[str, Any], dict[str, str]]] = []

    def __call__(self, url: str, params: dict[str, Any], headers: dict[str, str], _timeout_s: float) -> Any:
        self.calls.append((url, dict(params), dict(headers)))
        for suffix, value in self.routes.items():
            if url.endswith(suffix):
                if isinstance(value, Exception):
                    raise value
                return value
        raise AssertionError(f"Unexpected URL {url}")


class FakeFormPoster:
    """Replays queued responses per URL; a callable entry is invoked with the form data."""

    def __init__(self, routes: dict[str, list[Any]]):
        self.routes = {url: list(responses) for url, responses in routes.items()}
        self.calls: list[tuple[str, dict[str, str]]] = []

    def __call__(self, url: str, data: dict[str, str], _timeout_s: float) -> FormResponse:
        self.calls.append((url, dict(data)))
        queue = self.routes.get(url)
        if not queue:
            raise AssertionError(f"No response queued for {url}")
        value = queue[0] if len(queue) == 1 else queue.pop(0)
        if callable(value):
            value = value(data)
        if isinstance(value, Exception):
            raise value
        return value

    def calls_to(self, url: str) -> list[dict[str, str]]:
        return [data for called, data in self.calls if called == url]


def token_response(access_token: str = "access-1", refresh_token: str | None = "refresh-1") -> FormResponse:
    payload: dict[str, Any] = {"access_token": access_token, "expires_in": 3599, "token_type": "Bearer"}
    if refresh_token is not None:
        payload["refresh_token"] = refresh_token
    return FormResponse(status_code=200, payload=payload)


def oauth_error(error: str, status_code: int = 400) -> FormResponse:
    return FormResponse(status_code=status_code, payload={"error": error})


def make_client(routes: dict[str, Any], **kwargs: Any) -> tuple[ClassroomClient, RoutingFetcher]:
    fetcher = RoutingFetcher(routes)
    session = BearerSession(Credential(access_token="token-abc"), now=lambda: FIXED_NOW)
    return ClassroomClient(session, base_url="https://classroom.test/v1", fetch_json=fetcher, **kwargs), fetcher

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from classroom_digest.core.config import Settings
from classroom_digest.enums import FetchKind
from classroom_digest.errors import AuthError, ClassroomFetchError, PartialFetchError, detail_from_exception
from classroom_digest.schemas import Course, Credential, RawAnnouncement, RawWorkItem
from classroom_digest.services.clock import utc_now
from classroom_digest.services.oauth import OAuthClientConfig, PostFormFn, refresh_credential

log = logging.getLogger(__name__)

CLASSROOM_API_BASE = "https://classroom.googleapis.com/v1"
CLASSROOM_REQUEST_TIMEOUT_S = 30.0
COURSEWORK_ORDER_BY = "updateTime desc"
ANNOUNCEMENT_ORDER_BY = "updateTime desc"

FetchJsonFn = Callable[[str, dict[str, Any], dict[str, str], float], Any]
RecordT = TypeVar("RecordT", bound=BaseModel)


def default_json_fetcher(
    url: str,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout_s: float,
) -> Any:
    response = httpx.get(url, params=params, headers=headers, timeout=timeout_s)
    response.raise_for_status()
    payload = response.json()
    if not isinstance(payload, dict):
        raise ValueError({"error_code": "CLASSROOM_FETCH_FAILED", "message": "Upstream JSON payload must be an object"})
    return payload


class BearerSession:
    """Supplies the Authorization header, refreshing an expired access token first."""

    def __init__(
        self,
        credential: Credential,
        *,
        oauth_config: OAuthClientConfig | None = None,
        post_form: PostFormFn | None = None,
        on_refresh: Callable[[Credential], None] | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.credential = credential
        self.oauth_config = oauth_config
        self.post_form = post_form
        self.on_refresh = on_refresh
        self.now = now

    def _refresh(self) -> None:
        assert self.oauth_config is not None
        refreshed = refresh_credential(self.oauth_config, self.credential, post_form=self.post_form)
        log.info("Refreshed access token")
        self.credential = refreshed
        if self.on_refresh is not None:
            self.on_refresh(refreshed)

    def headers(self) -> dict[str, str]:
        if (
            self.credential.is_expired(self.now())
            and self.credential.refresh_token
            and self.oauth_config is not None
        ):
            self._refresh()
        if not self.credential.access_token:
            raise AuthError({"error_code": "AUTH_REFRESH_FAILED", "message": "Credential has no access token"})
        return {"Authorization": f"Bearer {self.credential.access_token}"}


@dataclass(frozen=True)
class FetchOutcome:
    """Result of one (course, kind) listing: records, or the reason there are none."""

    course_id: str
    kind: FetchKind
    items: tuple[Any, ...] = ()
    error: PartialFetchError | None = None
    truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def _parse_rows(model: type[RecordT], rows: Any, *, context: str) -> list[RecordT]:
    if not isinstance(rows, list):
        return []
    parsed: list[RecordT] = []
    for idx, row in enumerate(rows, start=1):
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as exc:
            log.warning("Skipping malformed %s row %d: %d validation errors", context, idx, exc.error_count())
    return parsed


class ClassroomClient:
    """Reads the first page of each Classroom collection, one request at a time."""

    def __init__(
        self,
        session: BearerSession,
        *,
        base_url: str = CLASSROOM_API_BASE,
        fetch_json: FetchJsonFn | None = None,
        timeout_s: float = CLASSROOM_REQUEST_TIMEOUT_S,
        course_page_size: int = 20,
        coursework_page_size: int = 50,
        announcement_page_size: int = 200,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.fetch_json = fetch_json or default_json_fetcher
        self.timeout_s = timeout_s
        self.course_page_size = course_page_size
        self.coursework_page_size = coursework_page_size
        self.announcement_page_size = announcement_page_size

    def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = self.session.headers()
        try:
            payload = self.fetch_json(url, params, headers, self.timeout_s)
        except ValueError as exc:
            # Undecodable bodies and non-object payloads from the fetcher.
            message = detail_from_exception(exc).get("message") or str(exc)
            raise ClassroomFetchError(
                {"error_code": "CLASSROOM_FETCH_FAILED", "message": f"Unreadable response: {message}", "url": url}
            ) from exc
        if not isinstance(payload, dict):
            raise ClassroomFetchError(
                {"error_code": "CLASSROOM_FETCH_FAILED", "message": "Upstream JSON payload must be an object", "url": url}
            )
        if payload.get("nextPageToken"):
            log.info("Only the first page of %s is read", path)
        return payload

    def list_active_courses(self) -> list[Course]:
        payload = self._get("courses", {"courseStates": "ACTIVE", "pageSize": self.course_page_size})
        return _parse_rows(Course, payload.get("courses"), context="course")

    def _list_for_course(
        self,
        course_id: str,
        kind: FetchKind,
        *,
        path: str,
        params: dict[str, Any],
        collection_key: str,
        model: type[BaseModel],
    ) -> FetchOutcome:
        try:
            payload = self._get(path, params)
        except AuthError:
            raise
        except Exception as exc:
            error_detail: dict[str, Any] = {
                "error_code": "PARTIAL_FETCH_FAILED",
                "message": str(detail_from_exception(exc).get("message") or exc),
                "course_id": course_id,
                "kind": kind.value,
            }
            if isinstance(exc, httpx.HTTPStatusError):
                error_detail["status_code"] = exc.response.status_code
            error = PartialFetchError(error_detail)
            log.warning("Fetching %s for course %s failed: %s", kind.value.lower(), course_id, error)
            return FetchOutcome(course_id=course_id, kind=kind, error=error)
        rows = _parse_rows(model, payload.get(collection_key), context=f"{kind.value.lower()} of course {course_id}")
        return FetchOutcome(
            course_id=course_id,
            kind=kind,
            items=tuple(rows),
            truncated=bool(payload.get("nextPageToken")),
        )

    def list_course_work(
        self,
        course_id: str,
        *,
        order_by: str = COURSEWORK_ORDER_BY,
        page_size: int | None = None,
    ) -> FetchOutcome:
        return self._list_for_course(
            course_id,
            FetchKind.COURSEWORK,
            path=f"courses/{course_id}/courseWork",
            params={
                "pageSize": page_size or self.coursework_page_size,
                "courseWorkStates": "PUBLISHED",
                "orderBy": order_by,
            },
            collection_key="courseWork",
            model=RawWorkItem,
        )

    def list_announcements(self, course_id: str) -> FetchOutcome:
        return self._list_for_course(
            course_id,
            FetchKind.ANNOUNCEMENTS,
            path=f"courses/{course_id}/announcements",
            params={"pageSize": self.announcement_page_size, "orderBy": ANNOUNCEMENT_ORDER_BY},
            collection_key="announcements",
            model=RawAnnouncement,
        )


def build_classroom_client(
    settings: Settings,
    oauth_config: OAuthClientConfig,
    credential: Credential,
    *,
    on_refresh: Callable[[Credential], None] | None = None,
    fetch_json: FetchJsonFn | None = None,
) -> ClassroomClient:
    session = BearerSession(credential, oauth_config=oauth_config, on_refresh=on_refresh)
    return ClassroomClient(
        session,
        fetch_json=fetch_json,
        timeout_s=settings.http_timeout_s,
        course_page_size=settings.course_page_size,
        coursework_page_size=settings.coursework_page_size,
        announcement_page_size=settings.announcement_page_size,
    )

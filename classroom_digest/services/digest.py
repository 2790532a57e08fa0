from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime
import logging
import re
from typing import Any

from classroom_digest.enums import ItemSource
from classroom_digest.schemas import Course, NormalizedItem, RawAnnouncement, RawWorkItem
from classroom_digest.services.classroom_pull import FetchOutcome
from classroom_digest.services.clock import DEFAULT_OFFSET_MINUTES, DEFAULT_TIMEZONE, civil_to_instant, day_key, utc_now

log = logging.getLogger(__name__)

COURSEWORK_TOPIC = "COURSEWORK"
ANNOUNCEMENT_TOPIC = "ANNOUNCEMENT"
UNTITLED = "(untitled)"
ELLIPSIS = "…"
DEFAULT_TITLE_MAX = 120

_WHITESPACE_RE = re.compile(r"\s+")


def item_id(source: ItemSource, course_id: str, native_id: str) -> str:
    return f"{source.value}:{course_id}:{native_id}"


def anchor_instant(update_time: datetime | None, creation_time: datetime | None, now: datetime) -> datetime:
    return update_time or creation_time or now


def normalize_text(text: str | None) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def truncate_title(text: str, max_len: int = DEFAULT_TITLE_MAX) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + ELLIPSIS


def matches_keywords(text: str, keywords: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(word.lower() in lowered for word in keywords)


def normalize_course_work(
    course: Course,
    work: RawWorkItem,
    *,
    now: datetime,
    offset_minutes: int = DEFAULT_OFFSET_MINUTES,
) -> NormalizedItem:
    return NormalizedItem(
        id=item_id(ItemSource.COURSEWORK, course.id, work.id),
        title=work.title if work.title.strip() else UNTITLED,
        link=work.alternate_link,
        due_at=civil_to_instant(work.due_date, work.due_time, offset_minutes),
        topic=work.work_type or COURSEWORK_TOPIC,
        created_at=anchor_instant(work.update_time, work.creation_time, now),
    )


def normalize_announcement(
    course: Course,
    announcement: RawAnnouncement,
    *,
    now: datetime,
    title_max: int = DEFAULT_TITLE_MAX,
    keywords: Iterable[str] = (),
) -> NormalizedItem | None:
    """Announcements link to their course page; blank ones yield ``None``."""
    text = normalize_text(announcement.text)
    if not text:
        return None
    keywords = tuple(keywords)
    if keywords and not matches_keywords(text, keywords):
        return None
    return NormalizedItem(
        id=item_id(ItemSource.ANNOUNCEMENT, course.id, announcement.id),
        title=truncate_title(text, title_max),
        link=course.alternate_link,
        due_at=None,
        topic=ANNOUNCEMENT_TOPIC,
        created_at=anchor_instant(announcement.update_time, announcement.creation_time, now),
    )


def order_items(items: Iterable[NormalizedItem]) -> list[NormalizedItem]:
    """Newest first, then title ascending; id settles exact duplicates."""
    ordered = sorted(items, key=lambda item: (item.title, item.id))
    ordered.sort(key=lambda item: item.created_at, reverse=True)
    return ordered


def latest_day(keys: Iterable[str]) -> str | None:
    return max(keys, default=None)


class DayBuckets:
    """day key -> course name -> items, courses kept in first-seen order."""

    def __init__(self, tz: str = DEFAULT_TIMEZONE):
        self.tz = tz
        self._buckets: dict[str, dict[str, list[NormalizedItem]]] = {}

    def add(self, course_name: str, item: NormalizedItem) -> str:
        key = day_key(item.created_at, self.tz)
        self._buckets.setdefault(key, {}).setdefault(course_name, []).append(item)
        return key

    def days(self) -> list[str]:
        return sorted(self._buckets)

    @property
    def latest_day(self) -> str | None:
        return latest_day(self._buckets)

    def groups(self, day: str) -> list[tuple[str, list[NormalizedItem]]]:
        by_course = self._buckets.get(day, {})
        return [(name, order_items(items)) for name, items in by_course.items() if items]

    def item_count(self) -> int:
        return sum(len(items) for by_course in self._buckets.values() for items in by_course.values())

    def __len__(self) -> int:
        return len(self._buckets)


class DigestAggregator:
    def __init__(
        self,
        *,
        tz: str = DEFAULT_TIMEZONE,
        offset_minutes: int = DEFAULT_OFFSET_MINUTES,
        title_max: int = DEFAULT_TITLE_MAX,
        keywords: Iterable[str] = (),
        now: Callable[[], datetime] = utc_now,
    ):
        self.buckets = DayBuckets(tz)
        self.offset_minutes = offset_minutes
        self.title_max = title_max
        self.keywords = tuple(keywords)
        self.now = now
        self.courses_seen = 0
        self.partial_failures: list[dict[str, Any]] = []
        self._seen_ids: set[str] = set()

    def _place(self, course: Course, item: NormalizedItem) -> bool:
        if item.id in self._seen_ids:
            log.debug("Skipping duplicate item %s", item.id)
            return False
        self._seen_ids.add(item.id)
        self.buckets.add(course.name, item)
        return True

    def _record_failure(self, outcome: FetchOutcome) -> None:
        assert outcome.error is not None
        self.partial_failures.append(
            {
                "course_id": outcome.course_id,
                "kind": outcome.kind.value,
                "message": str(outcome.error.detail.get("message") or outcome.error),
            }
        )

    def add_course(self, course: Course, coursework: FetchOutcome, announcements: FetchOutcome) -> int:
        """Normalize one course's records into the buckets; returns how many were placed."""
        self.courses_seen += 1
        now = self.now()
        placed = 0

        if not coursework.ok:
            self._record_failure(coursework)
        for work in coursework.items:
            item = normalize_course_work(course, work, now=now, offset_minutes=self.offset_minutes)
            placed += self._place(course, item)

        if not announcements.ok:
            self._record_failure(announcements)
        for announcement in announcements.items:
            item = normalize_announcement(
                course,
                announcement,
                now=now,
                title_max=self.title_max,
                keywords=self.keywords,
            )
            if item is not None:
                placed += self._place(course, item)

        log.debug("Course %s contributed %d items", course.id, placed)
        return placed

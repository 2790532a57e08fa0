from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
import logging
from pathlib import Path
from typing import Any

from classroom_digest.core.config import Settings
from classroom_digest.services.classroom_pull import ClassroomClient
from classroom_digest.services.clock import DEFAULT_OFFSET_MINUTES, DEFAULT_TIMEZONE, format_instant, utc_now
from classroom_digest.services.digest import DEFAULT_TITLE_MAX, DigestAggregator
from classroom_digest.services.snapshot_writer import write_snapshots

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DigestOptions:
    output_dir: Path = Path("./docs/days")
    tz: str = DEFAULT_TIMEZONE
    offset_minutes: int = DEFAULT_OFFSET_MINUTES
    title_max: int = DEFAULT_TITLE_MAX
    keywords: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, settings: Settings) -> DigestOptions:
        return cls(
            output_dir=settings.digest_output_dir,
            tz=settings.digest_timezone,
            offset_minutes=settings.due_offset_minutes,
            title_max=settings.announcement_title_max,
            keywords=settings.keywords,
        )


def collect(client: ClassroomClient, aggregator: DigestAggregator) -> int:
    """Walk active courses in API order: coursework, then announcements."""
    courses = client.list_active_courses()
    log.info("Courses: %d", len(courses))
    for course in courses:
        coursework = client.list_course_work(course.id)
        announcements = client.list_announcements(course.id)
        aggregator.add_course(course, coursework, announcements)
    return len(courses)


def run_digest(
    client: ClassroomClient,
    options: DigestOptions,
    *,
    now: Callable[[], datetime] = utc_now,
) -> dict[str, Any]:
    started_at = now()
    aggregator = DigestAggregator(
        tz=options.tz,
        offset_minutes=options.offset_minutes,
        title_max=options.title_max,
        keywords=options.keywords,
        now=now,
    )
    courses = collect(client, aggregator)

    generated_at = now()
    written = write_snapshots(aggregator.buckets, options.output_dir, generated_at=generated_at)
    buckets = aggregator.buckets
    return {
        "started_at": format_instant(started_at),
        "finished_at": format_instant(now()),
        "result": "partial" if aggregator.partial_failures else "written",
        "courses": courses,
        "items": buckets.item_count(),
        "days": len(buckets),
        "latest_day": buckets.latest_day,
        "partial_failures": list(aggregator.partial_failures),
        "written": [str(path) for path in written],
    }

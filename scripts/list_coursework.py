#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

import httpx

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from classroom_digest.core.config import get_settings
from classroom_digest.errors import DigestError, detail_from_exception
from classroom_digest.schemas import Course, RawWorkItem
from classroom_digest.services.classroom_pull import build_classroom_client
from classroom_digest.services.clock import civil_to_instant, local_time
from classroom_digest.services.oauth import authorize_from_settings
from classroom_digest.services.token_store import TokenStore

LISTING_PAGE_SIZE = 50
LISTING_ORDER_BY = "dueDate desc"


def format_work_line(course: Course, work: RawWorkItem, *, tz: str, offset_minutes: int) -> str:
    due = civil_to_instant(work.due_date, work.due_time, offset_minutes)
    due_str = local_time(due, tz).strftime("%Y-%m-%d %H:%M %Z") if due else "NO_DUE"
    topic = f"(topicId:{work.topic_id})" if work.topic_id else ""
    detail = " ".join(part for part in (work.title, topic, work.alternate_link) if part)
    return f"- {course.name} | {due_str} | {detail}"


def main() -> int:
    parser = argparse.ArgumentParser(description="Print active courses and their coursework due dates.")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    try:
        settings = get_settings().model_copy(update={"course_page_size": LISTING_PAGE_SIZE})
        oauth_config, credential = authorize_from_settings(settings)
        client = build_classroom_client(
            settings,
            oauth_config,
            credential,
            on_refresh=TokenStore(settings.google_token_path).save,
        )
        courses = client.list_active_courses()
        print(f"Courses: {len(courses)}")
        for course in courses:
            print(f"\n# {course.name} (id={course.id})")
            outcome = client.list_course_work(course.id, order_by=LISTING_ORDER_BY, page_size=LISTING_PAGE_SIZE)
            if not outcome.ok:
                print(f"- {course.name} | ERROR | {outcome.error}")
                continue
            for work in outcome.items:
                print(
                    format_work_line(
                        course,
                        work,
                        tz=settings.digest_timezone,
                        offset_minutes=settings.due_offset_minutes,
                    )
                )
    except (DigestError, httpx.HTTPError) as exc:
        print(json.dumps(detail_from_exception(exc), sort_keys=True, default=str), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from classroom_digest.errors import PersistenceError
from classroom_digest.services.pipeline import DigestOptions, run_digest
from tests.helpers import FIXED_NOW, announcement_row, course_row, make_client, work_row


def _forbidden() -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://classroom.test/v1/courses/c1/courseWork")
    return httpx.HTTPStatusError("403", request=request, response=httpx.Response(403, request=request))


def _routes() -> dict:
    return {
        "/courses": {"courses": [course_row("c1", "Physics"), course_row("c2", "Chemistry")]},
        "/courses/c1/courseWork": {"courseWork": [work_row("w1", "c1")]},
        "/courses/c1/announcements": {"announcements": [announcement_row("a1", "c1")]},
        "/courses/c2/courseWork": {"courseWork": [work_row("w9", "c2", updateTime="2024-03-02T16:00:00Z")]},
        "/courses/c2/announcements": {},
    }


def test_run_writes_snapshots_and_reports(tmp_path: Path):
    client, fetcher = make_client(_routes())
    record = run_digest(client, DigestOptions(output_dir=tmp_path), now=lambda: FIXED_NOW)

    assert record["result"] == "written"
    assert record["courses"] == 2
    assert record["items"] == 3
    assert record["days"] == 2
    assert record["latest_day"] == "2024-03-03"
    assert record["partial_failures"] == []
    assert record["started_at"] == "2024-03-05T00:00:00.000Z"
    assert [Path(p).name for p in record["written"]] == ["2024-03-01.json", "2024-03-03.json", "index.json"]
    assert [call[0].rsplit("/v1/", 1)[1] for call in fetcher.calls] == [
        "courses",
        "courses/c1/courseWork",
        "courses/c1/announcements",
        "courses/c2/courseWork",
        "courses/c2/announcements",
    ]


def test_coursework_failure_still_writes_announcements(tmp_path: Path):
    routes = _routes()
    routes["/courses/c1/courseWork"] = _forbidden()
    client, _ = make_client(routes)

    record = run_digest(client, DigestOptions(output_dir=tmp_path), now=lambda: FIXED_NOW)

    assert record["result"] == "partial"
    assert record["partial_failures"][0]["course_id"] == "c1"
    assert record["partial_failures"][0]["kind"] == "COURSEWORK"
    day = json.loads((tmp_path / "2024-03-01.json").read_text(encoding="utf-8"))
    assert [i["id"] for g in day["groups"] for i in g["items"]] == ["ann:c1:a1"]


def test_repeated_runs_produce_identical_files(tmp_path: Path):
    first_dir, second_dir = tmp_path / "a", tmp_path / "b"
    for out in (first_dir, second_dir):
        client, _ = make_client(_routes())
        run_digest(client, DigestOptions(output_dir=out), now=lambda: FIXED_NOW)

    for path in first_dir.iterdir():
        assert path.read_bytes() == (second_dir / path.name).read_bytes()


def test_unwritable_output_dir_raises(tmp_path: Path):
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory", encoding="utf-8")
    client, _ = make_client(_routes())
    with pytest.raises(PersistenceError):
        run_digest(client, DigestOptions(output_dir=blocker / "days"), now=lambda: FIXED_NOW)

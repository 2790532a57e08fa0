from __future__ import annotations

from datetime import datetime
import logging
from pathlib import Path
from typing import Any

from jsonschema import validate

from classroom_digest.errors import PersistenceError
from classroom_digest.schemas import DaySnapshot, Manifest, ManifestDay, SnapshotGroup
from classroom_digest.services.clock import day_label
from classroom_digest.services.digest import DayBuckets
from classroom_digest.services.token_store import write_json_atomic

log = logging.getLogger(__name__)

MANIFEST_NAME = "index.json"
DAY_KEY_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
INSTANT_PATTERN = r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$"

ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "title": {"type": "string", "minLength": 1},
        "link": {"type": ["string", "null"]},
        "dueAt": {"oneOf": [{"type": "string", "pattern": INSTANT_PATTERN}, {"type": "null"}]},
        "topic": {"type": "string", "minLength": 1},
        "createdAt": {"type": "string", "pattern": INSTANT_PATTERN},
    },
    "required": ["id", "title", "link", "dueAt", "topic", "createdAt"],
    "additionalProperties": False,
}

SNAPSHOT_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "generatedAt": {"type": "string", "pattern": INSTANT_PATTERN},
        "day": {"type": "string", "pattern": DAY_KEY_PATTERN},
        "groups": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "items": {"type": "array", "minItems": 1, "items": ITEM_SCHEMA},
                },
                "required": ["name", "items"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["generatedAt", "day", "groups"],
    "additionalProperties": False,
}

MANIFEST_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "generatedAt": {"type": "string", "pattern": INSTANT_PATTERN},
        "latestDay": {"oneOf": [{"type": "string", "pattern": DAY_KEY_PATTERN}, {"type": "null"}]},
        "days": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "day": {"type": "string", "pattern": DAY_KEY_PATTERN},
                    "label": {"type": "string"},
                },
                "required": ["day", "label"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["generatedAt", "latestDay", "days"],
    "additionalProperties": False,
}


def build_day_snapshot(buckets: DayBuckets, day: str, generated_at: datetime) -> DaySnapshot:
    groups = [SnapshotGroup(name=name, items=list(items)) for name, items in buckets.groups(day)]
    return DaySnapshot(generated_at=generated_at, day=day, groups=groups)


def build_manifest(days: list[str], generated_at: datetime) -> Manifest:
    ordered = sorted(days)
    return Manifest(
        generated_at=generated_at,
        latest_day=ordered[-1] if ordered else None,
        days=[ManifestDay(day=day, label=day_label(day)) for day in ordered],
    )


def day_snapshot_path(output_dir: Path, day: str) -> Path:
    return output_dir / f"{day}.json"


def _write_document(path: Path, document: dict[str, Any], schema: dict[str, Any]) -> None:
    validate(instance=document, schema=schema)
    write_json_atomic(path, document)


def write_snapshots(buckets: DayBuckets, output_dir: Path | str, *, generated_at: datetime) -> list[Path]:
    """Rewrite one file per observed day plus the manifest.

    Day files for days not observed in this run are left in place. A failed
    write does not stop the others; all failures are raised together at the end.
    """
    out_dir = Path(output_dir)
    written: list[Path] = []
    failed: list[dict[str, str]] = []

    def attempt(path: Path, document: dict[str, Any], schema: dict[str, Any]) -> None:
        try:
            _write_document(path, document, schema)
        except OSError as exc:
            log.error("Writing %s failed: %s", path, exc)
            failed.append({"path": str(path), "message": str(exc)})
            return
        written.append(path)

    days = buckets.days()
    for day in days:
        snapshot = build_day_snapshot(buckets, day, generated_at)
        attempt(day_snapshot_path(out_dir, day), snapshot.to_document(), SNAPSHOT_SCHEMA)

    manifest = build_manifest(days, generated_at)
    attempt(out_dir / MANIFEST_NAME, manifest.to_document(), MANIFEST_SCHEMA)

    if failed:
        raise PersistenceError(
            {
                "error_code": "SNAPSHOT_WRITE_FAILED",
                "message": f"{len(failed)} of {len(days) + 1} files could not be written",
                "failed": failed,
                "written": [str(path) for path in written],
            }
        )
    log.info("Wrote %d day files and %s to %s", len(days), MANIFEST_NAME, out_dir)
    return written


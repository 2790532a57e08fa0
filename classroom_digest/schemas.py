from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel

from classroom_digest.services.clock import format_instant


class ApiModel(BaseModel):
    """Remote records: camelCase on the wire, unknown fields ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class DocumentModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Credential(BaseModel):
    model_config = ConfigDict(extra="ignore")

    access_token: str | None = None
    refresh_token: str | None = None
    expiry: datetime | None = None
    token_type: str | None = "Bearer"
    scope: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _accept_expiry_date_ms(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("expiry") is None:
            expiry_ms = data.get("expiry_date")
            if isinstance(expiry_ms, (int, float)) and not isinstance(expiry_ms, bool):
                data = {**data, "expiry": datetime.fromtimestamp(expiry_ms / 1000, tz=timezone.utc)}
        return data

    @field_validator("expiry")
    @classmethod
    def _expiry_is_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def usable(self) -> bool:
        return bool(self.access_token or self.refresh_token)

    def is_expired(self, now: datetime, *, skew_s: float = 60.0) -> bool:
        if not self.access_token:
            return True
        if self.expiry is None:
            return False
        return self.expiry <= now + timedelta(seconds=skew_s)

    def to_document(self) -> dict[str, Any]:
        payload = self.model_dump(mode="json", exclude_none=True)
        if self.expiry is not None:
            payload["expiry"] = format_instant(self.expiry)
        return payload


class CivilDate(ApiModel):
    year: int
    month: int
    day: int


class CivilTime(ApiModel):
    hours: int | None = None
    minutes: int | None = None


class Course(ApiModel):
    id: str
    name: str = ""
    alternate_link: str | None = None
    course_state: str | None = None


class RawWorkItem(ApiModel):
    id: str
    course_id: str | None = None
    title: str = ""
    alternate_link: str | None = None
    work_type: str | None = None
    topic_id: str | None = None
    due_date: CivilDate | None = None
    due_time: CivilTime | None = None
    creation_time: datetime | None = None
    update_time: datetime | None = None
    state: str | None = None


class RawAnnouncement(ApiModel):
    id: str
    course_id: str | None = None
    text: str = ""
    alternate_link: str | None = None
    creation_time: datetime | None = None
    update_time: datetime | None = None


class NormalizedItem(DocumentModel):
    id: str
    title: str = Field(min_length=1)
    link: str | None = None
    due_at: datetime | None = None
    topic: str
    created_at: datetime

    @field_serializer("due_at", "created_at")
    def _serialize_instant(self, value: datetime | None) -> str | None:
        return format_instant(value) if value is not None else None


class SnapshotGroup(DocumentModel):
    name: str
    items: list[NormalizedItem]


class DaySnapshot(DocumentModel):
    generated_at: datetime
    day: str
    groups: list[SnapshotGroup]

    @field_serializer("generated_at")
    def _serialize_generated_at(self, value: datetime) -> str:
        return format_instant(value)


class ManifestDay(DocumentModel):
    day: str
    label: str


class Manifest(DocumentModel):
    generated_at: datetime
    latest_day: str | None = None
    days: list[ManifestDay]

    @field_serializer("generated_at")
    def _serialize_generated_at(self, value: datetime) -> str:
        return format_instant(value)

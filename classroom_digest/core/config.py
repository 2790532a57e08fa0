from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from classroom_digest.enums import AuthMethod
from classroom_digest.errors import ConfigError

DEFAULT_SCOPES = (
    "https://www.googleapis.com/auth/classroom.courses.readonly",
    "https://www.googleapis.com/auth/classroom.coursework.me.readonly",
    "https://www.googleapis.com/auth/classroom.student-submissions.me.readonly",
    "https://www.googleapis.com/auth/classroom.announcements.readonly",
)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False, env_file=".env", extra="ignore")

    google_client_id: str | None = None
    google_client_secret: str | None = None
    google_token_path: Path = Path("./token.json")
    google_auth_method: AuthMethod = AuthMethod.LOCAL
    # Space-separated, the same form the authorization endpoint takes.
    google_scopes: str = " ".join(DEFAULT_SCOPES)

    oauth_redirect_host: str = "127.0.0.1"
    oauth_redirect_port: int = 53682
    oauth_callback_timeout_s: float = 300.0

    digest_output_dir: Path = Path("./docs/days")
    digest_timezone: str = "Asia/Seoul"
    due_offset_minutes: int = 9 * 60
    # Room for at least one character plus the ellipsis.
    announcement_title_max: int = Field(default=120, ge=4)
    announcement_keywords: str = ""

    course_page_size: int = 20
    coursework_page_size: int = 50
    announcement_page_size: int = 200
    http_timeout_s: float = 30.0

    @property
    def scopes(self) -> tuple[str, ...]:
        return tuple(scope for scope in self.google_scopes.split() if scope)

    @property
    def keywords(self) -> tuple[str, ...]:
        return tuple(word.strip() for word in self.announcement_keywords.split(",") if word.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    try:
        return Settings()
    except ValidationError as exc:
        fields = sorted({".".join(str(part) for part in err["loc"]) for err in exc.errors()})
        raise ConfigError(
            {"error_code": "CONFIG_INVALID", "message": "Invalid configuration values", "fields": fields}
        ) from exc


def require_settings(settings: Settings, *names: str) -> None:
    missing = [name.upper() for name in names if not getattr(settings, name)]
    if missing:
        raise ConfigError(
            {"error_code": "CONFIG_MISSING", "message": f"Missing env var: {', '.join(missing)}", "missing": missing}
        )

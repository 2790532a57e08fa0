from __future__ import annotations

from pathlib import Path

import pytest

from classroom_digest.core import config as configmod

DIGEST_ENV_VARS = (
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_TOKEN_PATH",
    "GOOGLE_AUTH_METHOD",
    "GOOGLE_SCOPES",
    "DIGEST_OUTPUT_DIR",
    "DIGEST_TIMEZONE",
    "DUE_OFFSET_MINUTES",
    "ANNOUNCEMENT_KEYWORDS",
    "ANNOUNCEMENT_TITLE_MAX",
    "COURSE_PAGE_SIZE",
)


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> None:
    configmod.get_settings.cache_clear()
    yield
    configmod.get_settings.cache_clear()


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    for name in DIGEST_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path

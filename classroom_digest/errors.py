from __future__ import annotations

from typing import Any


class DigestError(RuntimeError):
    """Base error; ``args[0]`` is a detail dict with at least ``error_code``."""

    default_code = "DIGEST_FAILED"

    def __init__(self, detail: dict[str, Any] | str):
        if not isinstance(detail, dict):
            detail = {"error_code": self.default_code, "message": str(detail)}
        super().__init__(detail)

    @property
    def detail(self) -> dict[str, Any]:
        return self.args[0]

    @property
    def error_code(self) -> str:
        return str(self.detail.get("error_code", self.default_code))

    def __str__(self) -> str:
        message = self.detail.get("message")
        return f"{self.error_code}: {message}" if message else self.error_code


class ConfigError(DigestError):
    default_code = "CONFIG_MISSING"


class AuthError(DigestError):
    default_code = "AUTH_FAILED"


class ClassroomFetchError(DigestError):
    default_code = "CLASSROOM_FETCH_FAILED"


class PartialFetchError(DigestError):
    default_code = "PARTIAL_FETCH_FAILED"


class PersistenceError(DigestError):
    default_code = "PERSISTENCE_FAILED"


def detail_from_exception(exc: BaseException) -> dict[str, Any]:
    if exc.args and isinstance(exc.args[0], dict):
        return exc.args[0]
    return {"error_code": "DIGEST_FAILED", "message": str(exc) or type(exc).__name__}

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile

from pydantic import ValidationError

from classroom_digest.errors import PersistenceError
from classroom_digest.schemas import Credential

log = logging.getLogger(__name__)


def write_json_atomic(path: Path, payload: dict) -> None:
    """Write ``payload`` next to ``path`` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class TokenStore:
    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> Credential | None:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("Ignoring unreadable token file %s: %s", self.path, exc)
            return None
        if not isinstance(raw, dict):
            log.warning("Ignoring token file %s: expected a JSON object", self.path)
            return None
        try:
            credential = Credential.model_validate(raw)
        except ValidationError as exc:
            log.warning("Ignoring malformed token file %s: %s", self.path, exc.error_count())
            return None
        return credential if credential.usable else None

    def save(self, credential: Credential) -> None:
        try:
            write_json_atomic(self.path, credential.to_document())
        except OSError as exc:
            raise PersistenceError(
                {"error_code": "TOKEN_WRITE_FAILED", "message": str(exc), "path": str(self.path)}
            ) from exc
        log.info("Saved tokens to %s", self.path)

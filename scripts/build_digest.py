#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
from typing import Any

import httpx

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from classroom_digest.core.config import Settings, get_settings
from classroom_digest.enums import AuthMethod
from classroom_digest.errors import DigestError, detail_from_exception
from classroom_digest.services.classroom_pull import build_classroom_client
from classroom_digest.services.oauth import authorize_from_settings
from classroom_digest.services.pipeline import DigestOptions, run_digest
from classroom_digest.services.token_store import TokenStore


def _emit_record(record: dict[str, Any], output_path: Path | None) -> None:
    line = json.dumps(record, sort_keys=True, ensure_ascii=False)
    print(line)
    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("a", encoding="utf-8") as f:
            f.write(line)
            f.write("\n")


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    update: dict[str, Any] = {}
    if args.auth_method:
        update["google_auth_method"] = AuthMethod(args.auth_method)
    if args.token_path:
        update["google_token_path"] = args.token_path
    if args.output_dir:
        update["digest_output_dir"] = args.output_dir
    return settings.model_copy(update=update) if update else settings


def run(settings: Settings) -> dict[str, Any]:
    oauth_config, credential = authorize_from_settings(settings)
    store = TokenStore(settings.google_token_path)
    client = build_classroom_client(settings, oauth_config, credential, on_refresh=store.save)
    return run_digest(client, DigestOptions.from_settings(settings))


def main() -> int:
    parser = argparse.ArgumentParser(description="Build day-bucketed Classroom snapshots for the static viewer.")
    parser.add_argument("--auth-method", choices=[m.value for m in AuthMethod])
    parser.add_argument("--token-path", type=Path)
    parser.add_argument("--output-dir", type=Path)
    parser.add_argument("--output-jsonl", type=Path)
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = _apply_overrides(get_settings(), args)
        record = run(settings)
    except (DigestError, httpx.HTTPError) as exc:
        print(json.dumps(detail_from_exception(exc), sort_keys=True, default=str), file=sys.stderr)
        return 1

    _emit_record(record, args.output_jsonl)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path

import pytest

from classroom_digest.enums import AuthMethod
from classroom_digest.errors import AuthError, ConfigError
from classroom_digest.schemas import Credential
from classroom_digest.services.oauth import (
    TOKEN_URI,
    AuthorizationFlow,
    OAuthClientConfig,
    authorize,
    credential_from_token_response,
    refresh_credential,
)
from tests.helpers import FakeFormPoster, oauth_error, token_response

CONFIG = OAuthClientConfig(client_id="cid", client_secret="secret")


class _FakeFlow(AuthorizationFlow):
    def __init__(self, method: AuthMethod, result: Credential | Exception):
        super().__init__(CONFIG)
        self.method = method
        self.result = result
        self.calls = 0

    def obtain(self) -> Credential:
        self.calls += 1
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def _flows(local: Credential | Exception, device: Credential | Exception) -> dict[AuthMethod, _FakeFlow]:
    return {
        AuthMethod.LOCAL: _FakeFlow(AuthMethod.LOCAL, local),
        AuthMethod.DEVICE: _FakeFlow(AuthMethod.DEVICE, device),
    }


def test_stored_credential_is_reused_without_interaction(tmp_path: Path):
    token_path = tmp_path / "token.json"
    token_path.write_text(json.dumps({"access_token": "stale-but-trusted"}), encoding="utf-8")
    flows = _flows(AssertionError("should not run"), AssertionError("should not run"))

    credential = authorize("cid", "secret", token_path, "local", flows=flows)

    assert credential.access_token == "stale-but-trusted"
    assert all(flow.calls == 0 for flow in flows.values())


def test_fresh_credential_is_persisted_before_returning(tmp_path: Path):
    token_path = tmp_path / "token.json"
    fresh = Credential(access_token="a", refresh_token="r")
    flows = _flows(fresh, AssertionError("wrong flow"))

    credential = authorize("cid", "secret", token_path, AuthMethod.LOCAL, flows=flows)

    assert credential == fresh
    assert flows[AuthMethod.LOCAL].calls == 1
    assert json.loads(token_path.read_text(encoding="utf-8"))["refresh_token"] == "r"


def test_device_method_selects_device_flow(tmp_path: Path):
    flows = _flows(AssertionError("wrong flow"), Credential(access_token="dev"))
    credential = authorize("cid", "secret", tmp_path / "token.json", "device", flows=flows)
    assert credential.access_token == "dev"
    assert flows[AuthMethod.DEVICE].calls == 1
    assert flows[AuthMethod.LOCAL].calls == 0


def test_failed_flow_writes_nothing(tmp_path: Path):
    token_path = tmp_path / "token.json"
    flows = _flows(AuthError({"error_code": "AUTH_CALLBACK_TIMEOUT", "message": "late"}), Credential())
    with pytest.raises(AuthError):
        authorize("cid", "secret", token_path, "local", flows=flows)
    assert not token_path.exists()


@pytest.mark.parametrize(("client_id", "client_secret"), [(None, "secret"), ("cid", ""), (None, None)])
def test_missing_client_configuration_is_a_config_error(tmp_path: Path, client_id, client_secret):
    flows = _flows(AssertionError("no network"), AssertionError("no network"))
    with pytest.raises(ConfigError) as exc_info:
        authorize(client_id, client_secret, tmp_path / "token.json", "local", flows=flows)
    assert exc_info.value.error_code == "CONFIG_MISSING"


def test_unknown_method_is_a_config_error(tmp_path: Path):
    with pytest.raises(ConfigError) as exc_info:
        authorize("cid", "secret", tmp_path / "token.json", "carrier-pigeon", flows={})
    assert exc_info.value.error_code == "CONFIG_INVALID"


def test_credential_from_token_response_computes_expiry():
    issued = datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)
    credential = credential_from_token_response({"access_token": "a", "expires_in": 3600}, now=issued)
    assert credential.expiry == datetime(2024, 3, 1, 1, 0, tzinfo=timezone.utc)
    assert credential.refresh_token is None


def test_refresh_keeps_existing_refresh_token_when_omitted():
    poster = FakeFormPoster({TOKEN_URI: [token_response("access-2", refresh_token=None)]})
    original = Credential(access_token="access-1", refresh_token="keep-me")

    refreshed = refresh_credential(CONFIG, original, post_form=poster)

    assert refreshed.access_token == "access-2"
    assert refreshed.refresh_token == "keep-me"
    assert poster.calls_to(TOKEN_URI)[0]["grant_type"] == "refresh_token"


def test_failed_refresh_leaves_credential_untouched():
    poster = FakeFormPoster({TOKEN_URI: [oauth_error("invalid_grant")]})
    original = Credential(access_token="access-1", refresh_token="keep-me")
    with pytest.raises(AuthError) as exc_info:
        refresh_credential(CONFIG, original, post_form=poster)
    assert exc_info.value.error_code == "AUTH_REFRESH_FAILED"
    assert original.refresh_token == "keep-me"
    assert original.access_token == "access-1"

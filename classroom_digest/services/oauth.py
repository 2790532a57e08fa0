from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from pathlib import Path
import time
from typing import Any
from urllib.parse import urlencode
import webbrowser

import httpx

from classroom_digest.core.config import DEFAULT_SCOPES, Settings, require_settings
from classroom_digest.enums import AuthMethod, DeviceFlowState, LoopbackFlowState
from classroom_digest.errors import AuthError, ConfigError
from classroom_digest.schemas import Credential
from classroom_digest.services.callback_server import CALLBACK_PATH, CallbackResult, callback_listener
from classroom_digest.services.clock import utc_now
from classroom_digest.services.token_store import TokenStore

log = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
DEVICE_CODE_URI = "https://oauth2.googleapis.com/device/code"
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

OAUTH_REQUEST_TIMEOUT_S = 30.0
DEFAULT_POLL_INTERVAL_S = 5.0
DEFAULT_DEVICE_EXPIRY_S = 600.0
DEFAULT_REDIRECT_HOST = "127.0.0.1"
DEFAULT_REDIRECT_PORT = 53682
PENDING_ERRORS = {"authorization_pending", "slow_down"}


@dataclass(frozen=True)
class OAuthClientConfig:
    client_id: str
    client_secret: str
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    token_uri: str = TOKEN_URI

    @classmethod
    def from_settings(cls, settings: Settings) -> OAuthClientConfig:
        require_settings(settings, "google_client_id", "google_client_secret")
        return cls(
            client_id=str(settings.google_client_id),
            client_secret=str(settings.google_client_secret),
            scopes=settings.scopes,
        )


@dataclass(frozen=True)
class FormResponse:
    status_code: int
    payload: dict[str, Any]

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


PostFormFn = Callable[[str, dict[str, str], float], FormResponse]
ListenerFactory = Callable[[str, int], AbstractContextManager[CallbackResult]]


def default_form_poster(url: str, data: dict[str, str], timeout_s: float) -> FormResponse:
    response = httpx.post(url, data=data, headers={"Accept": "application/json"}, timeout=timeout_s)
    try:
        payload = response.json()
    except ValueError:
        payload = {"error": "invalid_response", "error_description": response.text[:200]}
    if not isinstance(payload, dict):
        payload = {"error": "invalid_response"}
    return FormResponse(status_code=response.status_code, payload=payload)


def _post(post_form: PostFormFn, url: str, data: dict[str, str], *, error_code: str) -> FormResponse:
    try:
        return post_form(url, data, OAUTH_REQUEST_TIMEOUT_S)
    except httpx.HTTPError as exc:
        raise AuthError({"error_code": error_code, "message": str(exc) or type(exc).__name__, "url": url}) from exc


def _error_detail(error_code: str, response: FormResponse) -> dict[str, Any]:
    return {
        "error_code": error_code,
        "message": str(
            response.payload.get("error_description") or response.payload.get("error") or "token endpoint error"
        ),
        "status_code": response.status_code,
        "oauth_error": response.payload.get("error"),
    }


def credential_from_token_response(
    payload: Mapping[str, Any],
    *,
    now: datetime | None = None,
    previous_refresh_token: str | None = None,
) -> Credential:
    issued_at = now or utc_now()
    expires_in = payload.get("expires_in")
    expiry = None
    if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool):
        expiry = issued_at + timedelta(seconds=float(expires_in))
    return Credential(
        access_token=payload.get("access_token"),
        refresh_token=payload.get("refresh_token") or previous_refresh_token,
        expiry=expiry,
        token_type=payload.get("token_type") or "Bearer",
        scope=payload.get("scope"),
    )


def exchange_code(
    config: OAuthClientConfig,
    code: str,
    redirect_uri: str,
    *,
    post_form: PostFormFn | None = None,
) -> Credential:
    response = _post(
        post_form or default_form_poster,
        config.token_uri,
        {
            "code": code,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        },
        error_code="AUTH_EXCHANGE_FAILED",
    )
    if not response.ok or not response.payload.get("access_token"):
        raise AuthError(_error_detail("AUTH_EXCHANGE_FAILED", response))
    return credential_from_token_response(response.payload)


def refresh_credential(
    config: OAuthClientConfig,
    credential: Credential,
    *,
    post_form: PostFormFn | None = None,
) -> Credential:
    """Return a new credential; ``credential`` itself is never modified."""
    if not credential.refresh_token:
        raise AuthError({"error_code": "AUTH_REFRESH_FAILED", "message": "No refresh token available"})
    response = _post(
        post_form or default_form_poster,
        config.token_uri,
        {
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "refresh_token": credential.refresh_token,
            "grant_type": "refresh_token",
        },
        error_code="AUTH_REFRESH_FAILED",
    )
    if not response.ok or not response.payload.get("access_token"):
        raise AuthError(_error_detail("AUTH_REFRESH_FAILED", response))
    return credential_from_token_response(response.payload, previous_refresh_token=credential.refresh_token)


def _open_in_browser(url: str) -> bool:
    try:
        return webbrowser.open(url)
    except webbrowser.Error:
        return False


class AuthorizationFlow(ABC):
    """Obtains a fresh credential for one client configuration."""

    method: AuthMethod

    def __init__(
        self,
        config: OAuthClientConfig,
        *,
        post_form: PostFormFn | None = None,
        echo: Callable[[str], None] = print,
    ):
        self.config = config
        self.post_form = post_form or default_form_poster
        self.echo = echo

    @abstractmethod
    def obtain(self) -> Credential:
        raise NotImplementedError


class LoopbackAuthorizationFlow(AuthorizationFlow):
    method = AuthMethod.LOCAL

    def __init__(
        self,
        config: OAuthClientConfig,
        *,
        host: str = DEFAULT_REDIRECT_HOST,
        port: int = DEFAULT_REDIRECT_PORT,
        callback_timeout_s: float = 300.0,
        listener: ListenerFactory | None = None,
        open_browser: Callable[[str], bool] | None = None,
        post_form: PostFormFn | None = None,
        echo: Callable[[str], None] = print,
    ):
        super().__init__(config, post_form=post_form, echo=echo)
        self.host = host
        self.port = port
        self.callback_timeout_s = callback_timeout_s
        self.listener = listener or callback_listener
        self.open_browser = open_browser or _open_in_browser
        self.state = LoopbackFlowState.IDLE

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{CALLBACK_PATH}"

    def authorization_url(self) -> str:
        query = urlencode(
            {
                "client_id": self.config.client_id,
                "redirect_uri": self.redirect_uri,
                "response_type": "code",
                "scope": " ".join(self.config.scopes),
                "access_type": "offline",
                "prompt": "consent",
            }
        )
        return f"{AUTH_URI}?{query}"

    def _await_code(self) -> str:
        with self.listener(self.host, self.port) as callback:
            self.state = LoopbackFlowState.SERVER_LISTENING
            url = self.authorization_url()
            self.echo("Google OAuth consent URL (open in a browser):")
            self.echo(url)
            log.info("Waiting for OAuth redirect on %s", self.redirect_uri)
            if not self.open_browser(url):
                log.info("Browser could not be opened; open the URL manually")
            self.state = LoopbackFlowState.AWAITING_REDIRECT
            if not callback.wait(self.callback_timeout_s):
                raise AuthError(
                    {
                        "error_code": "AUTH_CALLBACK_TIMEOUT",
                        "message": f"No OAuth redirect received within {self.callback_timeout_s:g}s",
                    }
                )
            if callback.error or not callback.code:
                raise AuthError(
                    {"error_code": "AUTH_CALLBACK_FAILED", "message": callback.error or "missing_code"}
                )
            self.state = LoopbackFlowState.CODE_RECEIVED
            return callback.code

    def obtain(self) -> Credential:
        self.state = LoopbackFlowState.IDLE
        try:
            code = self._await_code()
            self.state = LoopbackFlowState.EXCHANGING
            credential = exchange_code(self.config, code, self.redirect_uri, post_form=self.post_form)
        except AuthError:
            self.state = LoopbackFlowState.FAILED
            raise
        self.state = LoopbackFlowState.DONE
        return credential


@dataclass(frozen=True)
class DeviceCode:
    device_code: str
    user_code: str
    verification_url: str
    interval_s: float = DEFAULT_POLL_INTERVAL_S
    expires_in_s: float = DEFAULT_DEVICE_EXPIRY_S


def _positive_number(value: Any, default: float) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
        return float(value)
    return default


class DeviceAuthorizationFlow(AuthorizationFlow):
    method = AuthMethod.DEVICE

    def __init__(
        self,
        config: OAuthClientConfig,
        *,
        device_code_uri: str = DEVICE_CODE_URI,
        post_form: PostFormFn | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        echo: Callable[[str], None] = print,
    ):
        super().__init__(config, post_form=post_form, echo=echo)
        self.device_code_uri = device_code_uri
        self.sleep = sleep
        self.clock = clock
        self.state = DeviceFlowState.IDLE

    def request_device_code(self) -> DeviceCode:
        response = _post(
            self.post_form,
            self.device_code_uri,
            {"client_id": self.config.client_id, "scope": " ".join(self.config.scopes)},
            error_code="AUTH_DEVICE_CODE_FAILED",
        )
        payload = response.payload
        verification_url = payload.get("verification_url") or payload.get("verification_uri")
        if not response.ok or not payload.get("device_code") or not payload.get("user_code") or not verification_url:
            raise AuthError(_error_detail("AUTH_DEVICE_CODE_FAILED", response))
        self.state = DeviceFlowState.DEVICE_CODE_REQUESTED
        return DeviceCode(
            device_code=str(payload["device_code"]),
            user_code=str(payload["user_code"]),
            verification_url=str(verification_url),
            interval_s=_positive_number(payload.get("interval"), DEFAULT_POLL_INTERVAL_S),
            expires_in_s=_positive_number(payload.get("expires_in"), DEFAULT_DEVICE_EXPIRY_S),
        )

    def _poll(self, device: DeviceCode) -> Credential:
        deadline = self.clock() + device.expires_in_s
        poll_body = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "device_code": device.device_code,
            "grant_type": DEVICE_GRANT_TYPE,
        }
        while True:
            self.sleep(device.interval_s)
            if self.clock() >= deadline:
                self.state = DeviceFlowState.TIMED_OUT
                raise AuthError(
                    {
                        "error_code": "AUTH_DEVICE_TIMEOUT",
                        "message": f"Device authorization not approved within {device.expires_in_s:g}s",
                    }
                )
            self.state = DeviceFlowState.POLLING
            response = _post(self.post_form, self.config.token_uri, poll_body, error_code="AUTH_EXCHANGE_FAILED")
            if response.ok and response.payload.get("access_token"):
                return credential_from_token_response(response.payload)
            if response.payload.get("error") in PENDING_ERRORS:
                continue
            raise AuthError(_error_detail("AUTH_DEVICE_DENIED", response))

    def obtain(self) -> Credential:
        self.state = DeviceFlowState.IDLE
        try:
            device = self.request_device_code()
            self.echo(f"To sign in, open {device.verification_url} and enter code: {device.user_code}")
            log.info("Device authorization requested; polling every %gs", device.interval_s)
            self.state = DeviceFlowState.AWAITING_APPROVAL
            credential = self._poll(device)
        except AuthError:
            if self.state is not DeviceFlowState.TIMED_OUT:
                self.state = DeviceFlowState.FAILED
            raise
        self.state = DeviceFlowState.DONE
        return credential


def build_default_flows(
    config: OAuthClientConfig,
    *,
    redirect_host: str = DEFAULT_REDIRECT_HOST,
    redirect_port: int = DEFAULT_REDIRECT_PORT,
    callback_timeout_s: float = 300.0,
) -> dict[AuthMethod, AuthorizationFlow]:
    return {
        AuthMethod.LOCAL: LoopbackAuthorizationFlow(
            config,
            host=redirect_host,
            port=redirect_port,
            callback_timeout_s=callback_timeout_s,
        ),
        AuthMethod.DEVICE: DeviceAuthorizationFlow(config),
    }


def _coerce_method(method: AuthMethod | str) -> AuthMethod:
    try:
        return AuthMethod(method)
    except ValueError as exc:
        raise ConfigError(
            {"error_code": "CONFIG_INVALID", "message": f"Unknown auth method: {method}", "allowed": ["local", "device"]}
        ) from exc


def authorize(
    client_id: str | None,
    client_secret: str | None,
    token_store_path: Path | str,
    method: AuthMethod | str = AuthMethod.LOCAL,
    *,
    scopes: tuple[str, ...] = DEFAULT_SCOPES,
    flows: Mapping[AuthMethod, AuthorizationFlow] | None = None,
) -> Credential:
    """Reuse the stored credential or run one interactive flow and persist its result.

    A stored credential is adopted as-is; whether it still works is only
    discovered by the first API call.
    """
    if not client_id or not client_secret:
        missing = [
            name
            for name, value in (("GOOGLE_CLIENT_ID", client_id), ("GOOGLE_CLIENT_SECRET", client_secret))
            if not value
        ]
        raise ConfigError(
            {"error_code": "CONFIG_MISSING", "message": f"Missing env var: {', '.join(missing)}", "missing": missing}
        )
    auth_method = _coerce_method(method)
    store = TokenStore(token_store_path)

    stored = store.load()
    if stored is not None:
        log.info("Using stored credential from %s", store.path)
        return stored

    config = OAuthClientConfig(client_id=client_id, client_secret=client_secret, scopes=tuple(scopes))
    flow_map = flows if flows is not None else build_default_flows(config)
    flow = flow_map[auth_method]
    log.info("No stored credential; starting %s authorization", auth_method.value)
    credential = flow.obtain()
    store.save(credential)
    return credential


def authorize_from_settings(
    settings: Settings,
    *,
    flows: Mapping[AuthMethod, AuthorizationFlow] | None = None,
) -> tuple[OAuthClientConfig, Credential]:
    config = OAuthClientConfig.from_settings(settings)
    if flows is None:
        flows = build_default_flows(
            config,
            redirect_host=settings.oauth_redirect_host,
            redirect_port=settings.oauth_redirect_port,
            callback_timeout_s=settings.oauth_callback_timeout_s,
        )
    credential = authorize(
        config.client_id,
        config.client_secret,
        settings.google_token_path,
        settings.google_auth_method,
        scopes=config.scopes,
        flows=flows,
    )
    return config, credential

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import threading
import time

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
import uvicorn

from classroom_digest.errors import AuthError

CALLBACK_PATH = "/oauth2callback"
LISTENER_STARTUP_TIMEOUT_S = 5.0
LISTENER_SHUTDOWN_TIMEOUT_S = 5.0


class CallbackResult:
    """Resolved once, by the first callback request."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self.code: str | None = None
        self.error: str | None = None

    @property
    def resolved(self) -> bool:
        return self._event.is_set()

    def resolve(self, *, code: str | None = None, error: str | None = None) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self.code = code
            self.error = error
            self._event.set()
            return True

    def wait(self, timeout_s: float | None = None) -> bool:
        return self._event.wait(timeout_s)


def build_callback_app(result: CallbackResult, *, path: str = CALLBACK_PATH) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.get(path, response_class=PlainTextResponse)
    def oauth2callback(code: str | None = None, error: str | None = None) -> PlainTextResponse:
        if result.resolved:
            return PlainTextResponse("Callback already received", status_code=409)
        if error:
            result.resolve(error=error)
            return PlainTextResponse(f"Authorization failed: {error}", status_code=400)
        if not code:
            result.resolve(error="missing_code")
            return PlainTextResponse("Missing code", status_code=400)
        if not result.resolve(code=code):
            return PlainTextResponse("Callback already received", status_code=409)
        return PlainTextResponse("OK. You can close this tab.")

    return app


@contextmanager
def callback_listener(host: str, port: int, *, path: str = CALLBACK_PATH) -> Iterator[CallbackResult]:
    """Serve the callback endpoint until the ``with`` block exits."""
    result = CallbackResult()
    config = uvicorn.Config(
        build_callback_app(result, path=path),
        host=host,
        port=port,
        log_level="warning",
        lifespan="off",
    )
    server = uvicorn.Server(config)
    thread = threading.Thread(target=server.run, name="oauth-callback-listener", daemon=True)
    thread.start()
    try:
        deadline = time.monotonic() + LISTENER_STARTUP_TIMEOUT_S
        while not server.started:
            if not thread.is_alive() or time.monotonic() > deadline:
                raise AuthError(
                    {
                        "error_code": "AUTH_CALLBACK_FAILED",
                        "message": f"Could not listen on {host}:{port}",
                    }
                )
            time.sleep(0.05)
        yield result
    finally:
        server.should_exit = True
        thread.join(timeout=LISTENER_SHUTDOWN_TIMEOUT_S)

import os
import sys
import json
import asyncio
import inspect
from typing import Dict, List

import pytest

# Ensure project root is on sys.path so `import connector` works in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from connector.session.manager import SessionManager
from connector.storage.token_store import MemoryTokenStore


BASE_URL = "http://localhost:8080"


def pytest_pyfunc_call(pyfuncitem):
    """Allow running async tests without pytest-asyncio.

    If the test function is a coroutine, run it in a fresh event loop.
    """
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        funcargs = pyfuncitem.funcargs
        sig = inspect.signature(testfunction)
        # Filter only the parameters that the test function expects
        allowed = {name: funcargs[name] for name in sig.parameters.keys() if name in funcargs}
        asyncio.run(testfunction(**allowed))
        return True
    return None


# ---------------------------------------------------------------------------
# Deterministic time
# ---------------------------------------------------------------------------
class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeTimer:
    def __init__(self, due: float, delay: float, callback):
        self.due = due
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimers:
    """Timer factory that only fires when the test advances the clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: List[FakeTimer] = []

    def __call__(self, delay, callback) -> FakeTimer:
        timer = FakeTimer(self.clock.now + delay, delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.clock.now + seconds
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.clock.now = max(self.clock.now, timer.due)
            timer.fired = True
            timer.callback()
        self.clock.now = target


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timers(clock):
    return FakeTimers(clock)


# ---------------------------------------------------------------------------
# Fake remote API
# ---------------------------------------------------------------------------
def build_fake_api() -> FastAPI:
    api = FastAPI()
    api.state.valid_tokens = {"1234"}
    api.state.renew_status = 200
    api.state.renew_count = 0
    api.state.config = {"env": "DEV"}

    def _authorized(request: Request) -> bool:
        header = request.headers.get("authorization", "")
        return header.startswith("Bearer ") and header[len("Bearer "):] in api.state.valid_tokens

    @api.get("/config")
    async def config():
        return api.state.config

    @api.post("/token")
    async def token(request: Request):
        data = await request.json()
        if data.get("username") == "user" and data.get("password") == "password":
            return {"token": "1234"}
        return JSONResponse({"error": "invalid credentials"}, status_code=401)

    @api.post("/token/renew")
    async def renew(request: Request):
        if not _authorized(request) or api.state.renew_status != 200:
            return JSONResponse({"error": "cannot renew"}, status_code=api.state.renew_status or 401)
        api.state.renew_count += 1
        new_token = f"renewed-{api.state.renew_count}"
        api.state.valid_tokens.add(new_token)
        return {"token": new_token}

    @api.get("/user/current")
    async def current_user(request: Request):
        if not _authorized(request):
            return JSONResponse({"error": "unauthorized"}, status_code=401)
        return {"_id": 1234, "account": 1234}

    @api.post("/user/send-password-reset/{email}")
    async def send_password_reset(email: str, request: Request):
        data = await request.json()
        if not data.get("application"):
            return JSONResponse({"error": "application required"}, status_code=400)
        return Response(status_code=204)

    @api.post("/user/reset-password/{reset_token}")
    async def reset_password(reset_token: str, request: Request):
        data = await request.json()
        if reset_token != "footoken123" or not data.get("newPassword"):
            return JSONResponse({"error": "invalid reset token"}, status_code=400)
        return Response(status_code=204)

    @api.post("/user/update-password/{email}")
    async def update_password(email: str, request: Request):
        if not _authorized(request):
            return JSONResponse({"error": "unauthorized"}, status_code=401)
        data = await request.json()
        if data.get("currentPassword") != "currentPassword123":
            return JSONResponse({"error": "wrong password"}, status_code=422)
        return Response(status_code=204)

    @api.api_route("/foo", methods=["GET", "POST", "PUT", "DELETE"])
    async def foo():
        return {"foo": "bar"}

    @api.get("/broken")
    async def broken():
        return JSONResponse({"error": "boom"}, status_code=500)

    return api


class RecordingTransport(httpx.ASGITransport):
    """ASGI transport that keeps a log of every request it forwards."""

    def __init__(self, app):
        super().__init__(app=app)
        self.calls: List[Dict] = []

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.calls.append({
            "method": request.method,
            "url": str(request.url),
            "path": request.url.path,
            "authorization": request.headers.get("authorization"),
            "json": json.loads(request.content) if request.content else None,
        })
        return await super().handle_async_request(request)

    def paths(self, method: str = None) -> List[str]:
        return [c["path"] for c in self.calls if method is None or c["method"] == method]


@pytest.fixture
def fake_api():
    return build_fake_api()


@pytest.fixture
def transport(fake_api):
    return RecordingTransport(fake_api)


@pytest.fixture
def token_store():
    return MemoryTokenStore()


@pytest.fixture
def make_manager(transport, token_store, clock, timers):
    """Factory for managers wired to the fake API, fake clock and fake timers."""

    def _make(**kwargs) -> SessionManager:
        kwargs.setdefault("transport", transport)
        kwargs.setdefault("token_store", token_store)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("timer_factory", timers)
        kwargs.setdefault("token_duration", 20 * 60)
        kwargs.setdefault("renew_margin", 60)
        kwargs.setdefault("inactivity_check_interval", 60)
        kwargs.setdefault("inactivity_timeout", 15 * 60)
        return SessionManager(**kwargs)

    return _make

"""
SessionManager: client-side session over the remote authentication API.

Responsibilities:
  1. Resolve the environment configuration (direct or fetched) once
  2. Log in, hold the bearer token and persist it for reload survival
  3. Renew the token before expiry while the user is active
  4. Log out on request, on renewal failure, or after inactivity
  5. Expose GET/POST/PUT/DELETE pre-configured with base URL and auth header

Every login and every logout of an active session starts a new session
generation. Timers and in-flight renewals remember the generation they
belong to and are ignored once it has been superseded.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, Union
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from connector.config import Settings, settings as default_settings
from connector.errors import AuthError, ConfigError, RenewalFailure, RequestError
from connector.events import EventBus, INACTIVITY, LOGIN, LOGOUT, RENEW
from connector.http.facade import HttpFacade, fetch_json
from connector.obs.context import session_generation_var
from connector.obs.logger import log_event
from connector.obs.metrics import inc_counter
from connector.session.activity import ActivityMonitor
from connector.session.scheduler import RenewalScheduler, TimerFactory, asyncio_timer_factory
from connector.storage.token_store import MemoryTokenStore, TokenStore
from connector.types import EnvironmentConfig, HttpConfig, InitResult, Session


TOKEN_PATH = "/token"
RENEW_TOKEN_PATH = "/token/renew"
CURRENT_USER_PATH = "/user/current"


def _body(r: httpx.Response) -> Any:
    """Decoded JSON body if there is one, else the raw text (None when empty)."""
    if not r.content:
        return None
    try:
        return r.json()
    except ValueError:
        return r.text


def _origin(url: str) -> str:
    u = httpx.URL(url)
    if not u.scheme or not u.host:
        raise ConfigError(f"config path must be an absolute URL: {url!r}")
    port = f":{u.port}" if u.port else ""
    return f"{u.scheme}://{u.host}{port}"


class SessionManager:
    """
    Usage::

        manager = SessionManager(token_store=RedisTokenStore())
        await manager.init(http_config={"base_url": "https://api.example.com"})
        manager.subscribe("logout", lambda _: print("bye"))
        await manager.login("user", "password")
        profile = await manager.get_session()
        await manager.logout()
    """

    def __init__(
        self,
        token_store: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        timer_factory: TimerFactory = asyncio_timer_factory,
        token_duration: Optional[float] = None,
        renew_margin: Optional[float] = None,
        inactivity_check_interval: Optional[float] = None,
        inactivity_timeout: Optional[float] = None,
        app_settings: Optional[Settings] = None,
    ) -> None:
        self.settings = app_settings or default_settings
        self._token_store = token_store if token_store is not None else MemoryTokenStore()
        self._transport = transport
        self._clock = clock
        self.token_duration = token_duration or self.settings.TOKEN_DURATION_SECONDS

        self._events = EventBus()
        self._session = Session()
        self._generation = 0
        self._env: Optional[EnvironmentConfig] = None
        self._init_result: Optional[InitResult] = None
        self._http: Optional[HttpFacade] = None

        self.activity = ActivityMonitor(clock=clock)
        self.scheduler = RenewalScheduler(
            self.activity,
            renew=self._renew_token,
            expire=self._expire_session,
            token_duration=self.token_duration,
            renew_margin=self.settings.RENEW_MARGIN_SECONDS if renew_margin is None else renew_margin,
            check_interval=inactivity_check_interval or self.settings.INACTIVITY_CHECK_SECONDS,
            inactivity_timeout=inactivity_timeout or self.settings.INACTIVITY_TIMEOUT_SECONDS,
            clock=clock,
            timer_factory=timer_factory,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def token(self) -> Optional[str]:
        return self._session.token

    @property
    def token_expires_at(self) -> Optional[float]:
        return self._session.token_expires_at

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    @property
    def session(self) -> Session:
        return self._session.model_copy()

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def environment_config(self) -> Optional[EnvironmentConfig]:
        return self._env

    @property
    def token_store(self) -> TokenStore:
        return self._token_store

    def subscribe(self, event: str, handler: Callable[[Any], Any]) -> Callable[[], None]:
        return self._events.subscribe(event, handler)

    def unsubscribe(self, event: str, handler: Callable[[Any], Any]) -> None:
        self._events.unsubscribe(event, handler)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    async def init(
        self,
        http_config: Union[HttpConfig, Dict[str, Any], None] = None,
        config_path: Optional[str] = None,
    ) -> InitResult:
        if http_config is not None and config_path is not None:
            raise ConfigError("pass either http_config or config_path, not both")
        if http_config is None and config_path is None:
            if self.settings.CONFIG_PATH:
                config_path = self.settings.CONFIG_PATH
            elif self.settings.BASE_URL:
                http_config = {"base_url": self.settings.BASE_URL}
            else:
                raise ConfigError("no http_config or config_path given and none configured")

        if http_config is not None:
            env = self._resolve_http_config(http_config)
        else:
            env = await self._fetch_config(config_path)

        if self._env is not None:
            if env != self._env:
                raise ConfigError(
                    f"already initialised for {self._env.environment} at {self._env.base_url}; "
                    f"refusing to switch to {env.environment} at {env.base_url}"
                )
            return self._init_result

        self._env = env
        self._http = HttpFacade(
            env.base_url,
            token_provider=lambda: self._session.token,
            headers=env.headers,
            transport=self._transport,
        )

        restored = False
        stored = self._token_store.get()
        if stored:
            self._begin_session(stored)
            restored = True
            self._events.emit(LOGIN, {"restored": True})

        log_event("connector_init", base_url=env.base_url, environment=env.environment, restored=restored)
        self._init_result = InitResult(
            base_url=env.base_url,
            environment=env.environment,
            headers=dict(env.headers),
            restored=restored,
        )
        return self._init_result

    def _resolve_http_config(self, http_config: Union[HttpConfig, Dict[str, Any]]) -> EnvironmentConfig:
        try:
            cfg = http_config if isinstance(http_config, HttpConfig) else HttpConfig.model_validate(http_config)
        except ValidationError as e:
            raise ConfigError(f"invalid http_config: {e}") from e
        return EnvironmentConfig(
            base_url=cfg.base_url.rstrip("/"),
            environment=cfg.environment or self.settings.DEFAULT_ENVIRONMENT,
            headers=cfg.headers,
        )

    async def _fetch_config(self, config_path: str) -> EnvironmentConfig:
        origin = _origin(config_path)
        try:
            r = await fetch_json(config_path, transport=self._transport)
        except httpx.HTTPError as e:
            raise ConfigError(f"could not fetch config from {config_path}: {e}") from e
        if not r.is_success:
            raise ConfigError(f"config fetch from {config_path} returned HTTP {r.status_code}")

        try:
            body = r.json()
        except ValueError as e:
            raise ConfigError(f"config at {config_path} is not valid JSON") from e
        if not isinstance(body, dict):
            raise ConfigError(f"config at {config_path} must be a JSON object")

        # older deployments publish the environment under "env"
        environment = body.get("environment") or body.get("env")
        if not environment:
            raise ConfigError(f"config at {config_path} has no environment")
        headers = body.get("headers") or {}
        if not isinstance(headers, dict):
            raise ConfigError(f"config at {config_path} has malformed headers")

        base_url = body.get("baseUrl") or body.get("base_url") or origin
        return EnvironmentConfig(
            base_url=str(base_url).rstrip("/"),
            environment=str(environment),
            headers={str(k): str(v) for k, v in headers.items()},
        )

    def get_environment(self) -> Optional[str]:
        return self._env.environment if self._env else None

    def is_prod(self) -> bool:
        return self.get_environment() == "PROD"

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    async def login(self, username: str, password: str) -> Dict[str, Any]:
        r = await self._send("POST", TOKEN_PATH, authenticated=False,
                             json={"username": username, "password": password})
        body = _body(r)
        token = body.get("token") if isinstance(body, dict) else None
        if not r.is_success or not token:
            inc_counter("session_logins_total", {"outcome": "failure"})
            log_event("login_failed", level="WARNING", status=r.status_code)
            raise AuthError(f"login failed with HTTP {r.status_code}", status=r.status_code, body=body)

        self._begin_session(token)
        inc_counter("session_logins_total", {"outcome": "success"})
        log_event("login", token=token, token_expires_at=self._session.token_expires_at)
        self._events.emit(LOGIN, body)
        return body

    async def logout(self) -> None:
        """Clear the session. Safe to call at any time, never raises."""
        self._end_session("logout")

    def _begin_session(self, token: str) -> None:
        self._stop_renew_token_loop()
        self._generation += 1
        session_generation_var.set(self._generation)
        self._session = Session(token=token, token_expires_at=self._clock() + self.token_duration)
        self._token_store.set(token)
        self.activity.reset()
        self._start_renew_token_loop()

    def _end_session(self, reason: str) -> None:
        was_active = self._session.is_authenticated or self.scheduler.running
        self._stop_renew_token_loop()
        if was_active:
            self._generation += 1
            session_generation_var.set(self._generation)
        self._session = Session()
        self.activity.consume_activity()
        try:
            self._token_store.clear()
        except Exception as e:
            log_event("token_store_error", level="ERROR", op="clear", error=repr(e))

        inc_counter("session_logouts_total", {"reason": reason})
        log_event("logout", reason=reason, was_active=was_active)
        self._events.emit(LOGOUT, None)

    async def _expire_session(self, reason: str) -> None:
        if reason == "inactivity":
            self._events.emit(INACTIVITY, None)
        self._end_session(reason)

    # ------------------------------------------------------------------
    # Renewal loop
    # ------------------------------------------------------------------
    def watch_for_inactivity(self) -> None:
        if not self.activity.enabled:
            log_event("watch_for_inactivity", inactivity_timeout=self.scheduler.inactivity_timeout)
        self.activity.enable()

    def record_activity(self) -> None:
        self.activity.record_activity()

    def _start_renew_token_loop(self) -> None:
        self.scheduler.start(self._generation)

    def _stop_renew_token_loop(self) -> None:
        self.scheduler.stop()

    async def _renew_token(self) -> None:
        generation = self._generation
        token = self._session.token
        if token is None or self._http is None:
            raise RenewalFailure("no active session to renew")

        try:
            r = await self._http.post(RENEW_TOKEN_PATH)
        except httpx.HTTPError as e:
            inc_counter("session_renewals_total", {"outcome": "failure"})
            raise RenewalFailure(f"renewal request failed: {type(e).__name__}: {e}") from e

        if generation != self._generation:
            inc_counter("session_renewals_total", {"outcome": "discarded"})
            log_event("renewal_discarded", status=r.status_code, generation=generation)
            return

        body = _body(r)
        if not r.is_success:
            inc_counter("session_renewals_total", {"outcome": "failure"})
            raise RenewalFailure(f"renewal rejected with HTTP {r.status_code}", status=r.status_code, body=body)

        new_token = (body.get("token") if isinstance(body, dict) else None) or token
        try:
            if new_token != token:
                self._token_store.set(new_token)
        except Exception as e:
            inc_counter("session_renewals_total", {"outcome": "failure"})
            raise RenewalFailure(f"could not persist renewed token: {e!r}", status=r.status_code) from e
        self._session = Session(token=new_token, token_expires_at=self._clock() + self.token_duration)

        inc_counter("session_renewals_total", {"outcome": "success"})
        log_event("renew", token=new_token, token_expires_at=self._session.token_expires_at)
        self._events.emit(RENEW, {"token_expires_at": self._session.token_expires_at})

    # ------------------------------------------------------------------
    # User endpoints
    # ------------------------------------------------------------------
    async def get_session(self) -> Dict[str, Any]:
        self._require_token("get_session")
        generation = self._generation
        r = await self._send("GET", CURRENT_USER_PATH)
        if r.status_code in (401, 403):
            body = _body(r)
            if generation == self._generation:
                self._end_session("token_rejected")
            raise AuthError(f"token rejected with HTTP {r.status_code}", status=r.status_code, body=body)
        self._raise_for_status(r)
        body = _body(r)
        if not isinstance(body, dict):
            raise RequestError(f"GET {CURRENT_USER_PATH} returned no user object",
                               status=r.status_code, body=body)
        return body

    async def send_password_reset(self, email: str, application: str) -> None:
        r = await self._send("POST", f"/user/send-password-reset/{quote(email, safe='@')}",
                             authenticated=False, json={"application": application})
        self._raise_for_status(r)

    async def reset_password(self, new_password: str, password_reset_token: str) -> None:
        r = await self._send("POST", f"/user/reset-password/{quote(password_reset_token, safe='')}",
                             authenticated=False, json={"newPassword": new_password})
        self._raise_for_status(r)

    async def update_password(self, email: str, current_password: str, new_password: str) -> None:
        self._require_token("update_password")
        r = await self._send("POST", f"/user/update-password/{quote(email, safe='@')}",
                             json={"currentPassword": current_password, "newPassword": new_password})
        self._raise_for_status(r)

    # ------------------------------------------------------------------
    # Generic verbs
    # ------------------------------------------------------------------
    async def get(self, path: str, **options: Any) -> httpx.Response:
        return await self._checked("GET", path, **options)

    async def post(self, path: str, **options: Any) -> httpx.Response:
        return await self._checked("POST", path, **options)

    async def put(self, path: str, **options: Any) -> httpx.Response:
        return await self._checked("PUT", path, **options)

    async def delete(self, path: str, **options: Any) -> httpx.Response:
        return await self._checked("DELETE", path, **options)

    async def _checked(self, method: str, path: str, **options: Any) -> httpx.Response:
        r = await self._send(method, path, **options)
        self._raise_for_status(r)
        return r

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_http(self) -> HttpFacade:
        if self._http is None:
            raise ConfigError("SessionManager.init() must be called first")
        return self._http

    def _require_token(self, op: str) -> None:
        if self._session.token is None:
            raise AuthError(f"{op} requires an authenticated session")

    async def _send(self, method: str, path: str, **options: Any) -> httpx.Response:
        http = self._require_http()
        try:
            return await http.request(method, path, **options)
        except httpx.HTTPError as e:
            raise RequestError(f"{method} {path} failed: {type(e).__name__}: {e}") from e

    @staticmethod
    def _raise_for_status(r: httpx.Response) -> None:
        if not r.is_success:
            raise RequestError(
                f"{r.request.method} {r.request.url.path} returned HTTP {r.status_code}",
                status=r.status_code,
                body=_body(r),
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def aclose(self) -> None:
        """Stop timers and close the HTTP client. The persisted token is kept."""
        self._stop_renew_token_loop()
        await self.scheduler.cancel_pending()
        if self._http is not None:
            await self._http.aclose()

    async def __aenter__(self) -> "SessionManager":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

import time
import uuid
from typing import Any, Callable, Dict, Optional

import httpx

from connector.config import settings
from connector.obs.context import request_id_var
from connector.obs.logger import log_event
from connector.obs.metrics import inc_counter, record_timing


def default_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=settings.HTTP_CONNECT_TIMEOUT,
        read=settings.HTTP_READ_TIMEOUT,
        write=settings.HTTP_READ_TIMEOUT,
        pool=settings.HTTP_READ_TIMEOUT,
    )


class HttpFacade:
    """Thin pass-through to ``httpx.AsyncClient``.

    The base URL and static headers are fixed at construction. The bearer
    header is looked up per request through ``token_provider`` so it always
    reflects the current session and is absent while logged out.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], Optional[str]],
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[httpx.Timeout] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token_provider = token_provider
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Accept": "application/json", **(headers or {})},
            transport=transport,
            timeout=timeout or default_timeout(),
        )

    def auth_headers(self) -> Dict[str, str]:
        token = self._token_provider()
        if not token:
            return {}
        return {"Authorization": f"Bearer {token}"}

    async def request(self, method: str, path: str, *, authenticated: bool = True,
                      headers: Optional[Dict[str, str]] = None, **options: Any) -> httpx.Response:
        merged = dict(self.auth_headers()) if authenticated else {}
        merged.update(headers or {})

        req_id = str(uuid.uuid4())
        request_id_var.set(req_id)
        start = time.monotonic()
        try:
            r = await self._http.request(method, path, headers=merged, **options)
        except httpx.HTTPError as e:
            inc_counter("http_requests_total", {"method": method, "status": "error"})
            log_event("http_request", level="WARNING", method=method, path=path,
                      error=f"{type(e).__name__}: {e}")
            raise
        elapsed_ms = (time.monotonic() - start) * 1000.0
        record_timing("http_request_latency_ms", elapsed_ms, {"method": method})
        inc_counter("http_requests_total", {"method": method, "status": str(r.status_code)})
        log_event(
            "http_request",
            method=method,
            path=path,
            status=r.status_code,
            ms_total=round(elapsed_ms, 2),
        )
        return r

    async def get(self, path: str, **options: Any) -> httpx.Response:
        return await self.request("GET", path, **options)

    async def post(self, path: str, **options: Any) -> httpx.Response:
        return await self.request("POST", path, **options)

    async def put(self, path: str, **options: Any) -> httpx.Response:
        return await self.request("PUT", path, **options)

    async def delete(self, path: str, **options: Any) -> httpx.Response:
        return await self.request("DELETE", path, **options)

    async def aclose(self) -> None:
        await self._http.aclose()


async def fetch_json(url: str, transport: Optional[httpx.AsyncBaseTransport] = None,
                     timeout: Optional[httpx.Timeout] = None) -> httpx.Response:
    """One-off unauthenticated GET, used for the remote configuration document."""
    client = httpx.AsyncClient(transport=transport, timeout=timeout or default_timeout())
    try:
        r = await client.get(url, headers={"Accept": "application/json"})
    finally:
        # a caller-supplied transport is shared with the facade and must stay open
        if transport is None:
            await client.aclose()
    log_event("config_fetch", url=url, status=r.status_code)
    return r

"""
Async Graph API client with pagination, throttling, retry, and read-only
enforcement. Every request is checked before it is sent: GET is always
allowed, POST only for the known read-only endpoints.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, AsyncGenerator, Optional

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    GRAPH_BETA_VERSION,
    MAX_RETRIES,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    BACKOFF_MULTIPLIER,
    DEFAULT_PAGE_SIZE,
    MAX_PAGES_PER_ENDPOINT,
    BATCH_SIZE,
    MAX_CONCURRENT_REQUESTS,
)

logger = logging.getLogger("m365_role_audit.graph")

# POST endpoints that only read
READ_ONLY_POST_PATTERNS = (
    re.compile(r"/(v1\.0|beta)/\$batch$"),
    re.compile(r"/(v1\.0|beta)/directoryObjects/getByIds$"),
)

RETRYABLE_STATUS = frozenset({429, 503, 504})


class GraphAPIError(Exception):
    """Raised when Graph API returns a non-recoverable error."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Graph API Error {status_code} for {url}: {message}")


class ReadOnlyViolation(Exception):
    """Raised for any request that could modify the tenant."""
    pass


def validate_request(method: str, url: str):
    """Reject anything but GET and the allow-listed read-only POSTs."""
    method = method.upper()
    if method == "GET":
        return
    path = url.split("?", 1)[0]
    if method == "POST" and any(p.search(path) for p in READ_ONLY_POST_PATTERNS):
        return
    raise ReadOnlyViolation(f"Blocked {method} {url}: the audit only reads from the tenant")


class GraphClient:
    """
    Async Microsoft Graph API client.

    Use as an async context manager; the underlying httpx client lives for
    the duration of the `async with` block. A 403 raises GraphAPIError so
    callers can tell a missing permission from an empty result.
    """

    def __init__(self, access_token: str, max_concurrency: int = MAX_CONCURRENT_REQUESTS):
        self.access_token = access_token
        self._max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=self._max_concurrency * 2,
                max_keepalive_connections=self._max_concurrency,
            ),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                "ConsistencyLevel": "eventual",
            },
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()

    def _build_url(self, endpoint: str, beta: bool = False) -> str:
        if endpoint.startswith("http"):
            return endpoint
        version = GRAPH_BETA_VERSION if beta else GRAPH_API_VERSION
        return f"{GRAPH_BASE_URL}/{version}/{endpoint.lstrip('/')}"

    # ── Public read operations ──────────────────────────────────────────────

    async def get(self, endpoint: str, params: Optional[dict] = None, beta: bool = False) -> dict:
        return await self._request("GET", self._build_url(endpoint, beta), params=params)

    async def post_read(self, endpoint: str, body: dict, beta: bool = False) -> dict:
        """POST to a read-only endpoint such as directoryObjects/getByIds."""
        return await self._request("POST", self._build_url(endpoint, beta), json_body=body)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
        top: Optional[int] = None,
        skip_top: bool = False,
    ) -> list[dict]:
        """
        Fetch all pages of a collection into a list.
        Set skip_top=True for endpoints that reject $top.
        """
        return [
            item async for item in self.get_all_pages_stream(endpoint, params, beta, top, skip_top)
        ]

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
        top: Optional[int] = None,
        skip_top: bool = False,
    ) -> AsyncGenerator[dict, None]:
        """Yield items page by page, following @odata.nextLink."""
        params = dict(params or {})
        if not skip_top:
            params.setdefault("$top", str(min(top or DEFAULT_PAGE_SIZE, DEFAULT_PAGE_SIZE)))

        url: Optional[str] = self._build_url(endpoint, beta)
        for _ in range(MAX_PAGES_PER_ENDPOINT):
            data = await self._request("GET", url, params=params)
            for item in data.get("value", []):
                yield item
            url = data.get("@odata.nextLink")
            if not url:
                return
            # nextLink already carries the query
            params = None

        logger.warning(f"Stopped after {MAX_PAGES_PER_ENDPOINT} pages of {endpoint}; results are truncated")

    async def batch_get(self, endpoints: list[str], beta: bool = False) -> list[dict]:
        """
        GET many relative URLs through $batch, BATCH_SIZE per request.

        Results keep the order of `endpoints`. A failed sub-request yields
        {"_error": True, "status": ..., "_error_message": ...}.
        """
        batch_url = self._build_url("$batch", beta)
        results = []

        for start in range(0, len(endpoints), BATCH_SIZE):
            chunk = endpoints[start:start + BATCH_SIZE]
            body = {
                "requests": [
                    {"id": str(i), "method": "GET", "url": "/" + ep.lstrip("/")}
                    for i, ep in enumerate(chunk)
                ]
            }
            data = await self._request("POST", batch_url, json_body=body)

            # Responses may arrive in any order
            by_id = {resp.get("id"): resp for resp in data.get("responses", [])}
            for i in range(len(chunk)):
                results.append(_batch_body(by_id.get(str(i), {}), i))

        return results

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }

    # ── Transport ───────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
    ) -> dict:
        """Validate, send with retry and decode one request."""
        validate_request(method, url)
        backoff = INITIAL_BACKOFF_SECONDS
        status = None

        for attempt in range(1, MAX_RETRIES + 2):
            try:
                async with self._semaphore:
                    response = await self._send(method, url, params, json_body)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt > MAX_RETRIES:
                    raise
                logger.warning(f"{type(e).__name__} on {url}, attempt {attempt}/{MAX_RETRIES}")
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                continue

            self._request_count += 1
            status = response.status_code
            if status not in RETRYABLE_STATUS:
                return _decode(response, url)

            self._throttle_count += 1
            if attempt > MAX_RETRIES:
                break
            wait = max(float(response.headers.get("Retry-After", backoff)), backoff)
            logger.warning(f"Throttled ({status}) on {url}. Retry {attempt}/{MAX_RETRIES} in {wait:.1f}s")
            await asyncio.sleep(wait)
            backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

        raise GraphAPIError(status or 0, f"gave up after {MAX_RETRIES} retries", url)

    async def _send(
        self,
        method: str,
        url: str,
        params: Optional[dict],
        json_body: Optional[dict],
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("GraphClient not initialized. Use 'async with' context.")
        if method == "GET":
            return await self._client.get(url, params=params)
        return await self._client.post(url, json=json_body, params=params)


def _decode(response: httpx.Response, url: str) -> dict:
    status = response.status_code
    if status == 200:
        if not response.content.strip():
            return {"value": []}
        try:
            return response.json()
        except ValueError:
            logger.debug(f"200 response with non-JSON body from {url}")
            return {"value": []}
    if status == 204:
        return {}
    if status == 404:
        # Deleted objects (e.g. a group removed mid-audit) read as empty
        logger.debug(f"404 Not Found: {url}")
        return {"value": []}

    message = _error_message(response)
    if status == 403:
        logger.warning(f"403 Forbidden: {url} — {message}")
    raise GraphAPIError(status, message, url)


def _batch_body(resp: dict, index: int) -> dict:
    status = resp.get("status")
    if status == 200:
        return resp.get("body", {})
    message = ((resp.get("body") or {}).get("error") or {}).get("message", "Unknown")
    if status == 403:
        logger.debug(f"Batch sub-request {index} permission denied (403): {message}")
    else:
        logger.warning(f"Batch sub-request {index} failed: {status} {message}")
    return {"_error": True, "status": status, "_error_message": message}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    return (body.get("error") or {}).get("message", response.text[:200])

"""
Async SharePoint Online REST/CSOM client with throttling, retry, and safety
enforcement. One client is bound to one network domain and one credential.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import httpx

from ..config import (
    CONNECT_TIMEOUT_SECONDS,
    HTTP_TIMEOUT_SECONDS,
    MAX_CONCURRENT_REQUESTS,
    ODATA_ACCEPT,
    ThrottlePolicy,
)
from ..models import ListInfo, OperationResult, OperationStatus, SiteInfo
from ..parsing import get_bool, get_collection, get_dict, get_int, get_str, unwrap_verbose
from ..safety.guardian import SafetyGuardian, SafetyViolation
from .throttle import CancellationToken, Sleeper, ThrottleAwareExecutor, interruptible_sleep
from .urls import domain_of

logger = logging.getLogger("spo_reconcile_engine.sharepoint")


class SharePointAPIError(Exception):
    """Raised when SharePoint returns a non-recoverable error."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.message = message
        self.url = url
        super().__init__(f"SharePoint API Error {status_code} for {url}: {message}")


class AuthenticationRequired(SharePointAPIError):
    """The domain has no usable credential, or SharePoint answered 401."""
    def __init__(self, domain: str, message: str = "Authentication required", url: str = ""):
        self.domain = domain
        super().__init__(401, message, url or domain)


def error_message(response: httpx.Response) -> str:
    """Pull the human-readable message out of an OData error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    error = get_dict(body, "odata.error") or get_dict(body, "error") or get_dict(
        get_dict(body, "d"), "error"
    )
    message = error.get("message")
    if isinstance(message, dict):
        return get_str(message, "value") or response.text[:200]
    if isinstance(message, str):
        return message
    return response.text[:200]


class SharePointClient:
    """
    Async SharePoint Online client.
    Features:
      - Safety-validated requests (read-oriented enforcement)
      - Throttle-aware retry on 429/503 with Retry-After support
      - Concurrent request semaphore
      - Cookie (FedAuth/rtFa) or bearer-token authentication
      - Form digest acquisition for CSOM and MERGE requests
    """

    def __init__(
        self,
        domain: str,
        guardian: SafetyGuardian,
        cookies: Optional[dict[str, str]] = None,
        access_token: Optional[str] = None,
        policy: Optional[ThrottlePolicy] = None,
        cancel: Optional[CancellationToken] = None,
        sleeper: Sleeper = interruptible_sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.domain = domain.lower()
        self.guardian = guardian
        self.cookies = cookies or {}
        self.access_token = access_token
        self.cancel = cancel
        self.executor = ThrottleAwareExecutor(policy, sleeper=sleeper)
        self._transport = transport
        self._semaphore = asyncio.Semaphore(MAX_CONCURRENT_REQUESTS)
        self._request_count = 0
        self._digests: dict[str, str] = {}
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    async def open(self) -> None:
        if self._client is not None:
            return
        headers = {"Accept": ODATA_ACCEPT}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        elif self.cookies:
            headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in self.cookies.items())
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(HTTP_TIMEOUT_SECONDS, connect=CONNECT_TIMEOUT_SECONDS),
            limits=httpx.Limits(
                max_connections=MAX_CONCURRENT_REQUESTS * 2,
                max_keepalive_connections=MAX_CONCURRENT_REQUESTS,
            ),
            headers=headers,
            transport=self._transport,
        )

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def throttle_count(self) -> int:
        return self.executor.retry_count

    def _check_domain(self, url: str) -> None:
        host = domain_of(url)
        if host and host != self.domain:
            raise SharePointAPIError(
                0, f"URL host {host} does not belong to client domain {self.domain}", url
            )

    # ─── Raw requests ───────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[Any] = None,
        content: Optional[str] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """
        Send one request through the guardian and the throttle executor.
        Returns the final response whatever its status; see :meth:`_raise_for_status`.
        """
        self._check_domain(url)
        self.guardian.validate_request(method, url, json_body)

        async with self._semaphore:
            return await self.executor.execute(
                lambda: self._execute_raw(method, url, params, json_body, content, headers),
                cancel=self.cancel,
                description=url,
            )

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[Any] = None,
        content: Optional[str] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("SharePointClient not initialized. Use 'async with' context.")
        self._request_count += 1

        if method == "GET":
            return await self._client.get(url, params=params, headers=headers)
        if method == "POST":
            if content is not None:
                return await self._client.post(url, content=content, params=params, headers=headers)
            return await self._client.post(url, json=json_body, params=params, headers=headers)
        if method == "MERGE":
            merge_headers = {
                "X-HTTP-Method": "MERGE",
                "IF-MATCH": "*",
                "Content-Type": "application/json;odata=nometadata",
            }
            merge_headers.update(headers or {})
            return await self._client.post(url, json=json_body, headers=merge_headers)
        raise SafetyViolation(f"Unsupported method at raw level: {method}")

    def _raise_for_status(self, response: httpx.Response, url: str) -> None:
        if response.status_code == 401:
            raise AuthenticationRequired(self.domain, error_message(response), url)
        if response.status_code >= 400:
            raise SharePointAPIError(response.status_code, error_message(response), url)

    @staticmethod
    def _json(response: httpx.Response, url: str) -> Any:
        if not response.content or not response.content.strip():
            return {}
        try:
            return response.json()
        except ValueError:
            logger.debug(f"{response.status_code} response with non-JSON body from {url}")
            return {}

    # ─── JSON helpers ───────────────────────────────────────────────────────

    async def get_json(self, url: str, params: Optional[dict] = None) -> Any:
        response = await self.request("GET", url, params=params)
        self._raise_for_status(response, url)
        return self._json(response, url)

    async def get_result(self, url: str, params: Optional[dict] = None) -> OperationResult[Any]:
        """
        GET that reports 403/404 (and exhausted throttling) as a result value.
        401 still raises AuthenticationRequired: it affects the whole domain.
        """
        response = await self.request("GET", url, params=params)
        if response.status_code == 401:
            raise AuthenticationRequired(self.domain, error_message(response), url)
        if response.status_code >= 400:
            status = OperationStatus.from_http_status(response.status_code)
            return OperationResult.failure(
                status, f"HTTP {response.status_code}: {error_message(response)}"
            )
        return OperationResult.success(self._json(response, url))

    async def post_json(self, url: str, body: Any, headers: Optional[dict] = None) -> Any:
        response = await self.request("POST", url, json_body=body, headers=headers)
        self._raise_for_status(response, url)
        return self._json(response, url)

    async def post_xml(self, url: str, xml: str, form_digest: str) -> Any:
        """Send a CSOM request body; the ProcessQuery answer is a JSON array."""
        headers = {"Content-Type": "text/xml"}
        if form_digest:
            headers["X-RequestDigest"] = form_digest
        response = await self.request("POST", url, content=xml, headers=headers)
        self._raise_for_status(response, url)
        if not response.content:
            return []
        try:
            return json.loads(response.text)
        except ValueError as e:
            raise SharePointAPIError(response.status_code, f"Malformed CSOM response: {e}", url)

    async def merge_json(self, url: str, body: dict, form_digest: str) -> None:
        response = await self.request(
            "MERGE", url, json_body=body, headers={"X-RequestDigest": form_digest}
        )
        self._raise_for_status(response, url)

    async def get_form_digest(self, site_url: str, refresh: bool = False) -> str:
        """Request digest for ``site_url``, cached per site for the client's lifetime."""
        site = site_url.rstrip("/")
        if not refresh and site in self._digests:
            return self._digests[site]
        url = f"{site}/_api/contextinfo"
        data = await self.post_json(url, None)
        digest = get_str(data, "FormDigestValue") or get_str(
            get_dict(unwrap_verbose(data), "GetContextWebInformation"), "FormDigestValue"
        )
        if not digest:
            raise SharePointAPIError(200, "contextinfo returned no FormDigestValue", url)
        self._digests[site] = digest
        return digest

    # ─── Site and list metadata ─────────────────────────────────────────────

    async def get_site_info(self, site_url: str) -> OperationResult[SiteInfo]:
        site = site_url.rstrip("/")
        result = await self.get_result(
            f"{site}/_api/web",
            params={"$select": "Title,Url,ServerRelativeUrl,WebTemplate"},
        )
        if not result.ok:
            return OperationResult.failure(result.status, result.error_message)
        data = unwrap_verbose(result.data)
        return OperationResult.success(SiteInfo(
            url=get_str(data, "Url", site),
            title=get_str(data, "Title"),
            server_relative_url=get_str(data, "ServerRelativeUrl"),
            web_template=get_str(data, "WebTemplate"),
        ))

    async def get_lists(self, site_url: str) -> list[ListInfo]:
        site = site_url.rstrip("/")
        data = await self.get_json(
            f"{site}/_api/web/lists",
            params={
                "$select": "Id,Title,ItemCount,Hidden,BaseTemplate,RootFolder/ServerRelativeUrl",
                "$expand": "RootFolder",
            },
        )
        lists = []
        for row in get_collection(data):
            title = get_str(row, "Title")
            if not title:
                continue
            lists.append(ListInfo(
                id=get_str(row, "Id"),
                title=title,
                item_count=get_int(row, "ItemCount"),
                hidden=get_bool(row, "Hidden"),
                base_template=get_int(row, "BaseTemplate"),
                server_relative_url=get_str(get_dict(row, "RootFolder"), "ServerRelativeUrl"),
            ))
        return lists

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "domain": self.domain,
            "total_requests": self._request_count,
            "throttle_events": self.throttle_count,
        }

"""
HTTP client for Microsoft Graph and Azure Resource Manager.

All tools and resources share one GraphClient. It owns the TokenManager, so
the token cache lives exactly as long as the client does.
"""

import asyncio
import re
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlsplit

import requests

from .auth import AZURE_SCOPE, GRAPH_SCOPE, TokenManager
from .errors import InvalidParamsError, UpstreamError
from .logging_setup import get_logger

logger = get_logger(__name__)

GRAPH_ROOT = "https://graph.microsoft.com"
GRAPH_BASE_URL = f"{GRAPH_ROOT}/v1.0"
AZURE_BASE_URL = "https://management.azure.com"

API_SCOPES = {
    "graph": GRAPH_SCOPE,
    "azure": AZURE_SCOPE,
}

API_ROOTS = {
    "graph": GRAPH_ROOT,
    "azure": AZURE_BASE_URL,
}

RETRY_STATUSES = {429, 500, 502, 503, 504}
MAX_BACKOFF_SECONDS = 60.0
MAX_PAGES = 100

GUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")


def is_guid(value: str) -> bool:
    return bool(GUID_RE.match(value or ""))


def is_absolute_url(value: str) -> bool:
    parts = urlsplit(value or "")
    return bool(parts.scheme or parts.netloc)


def same_origin(url: str, root: str) -> bool:
    """True when `url` has the scheme and host of `root`."""
    a, b = urlsplit(url), urlsplit(root)
    return a.scheme.lower() == b.scheme and (a.hostname or "") == b.hostname and a.port in (None, 443)


def odata_quote(value: str) -> str:
    """OData string literal: single quotes doubled, wrapped in quotes."""
    return "'" + str(value).replace("'", "''") + "'"


def directory_ref(object_id: str) -> Dict[str, str]:
    """Body for the members/$ref and owners/$ref endpoints."""
    return {"@odata.id": f"{GRAPH_BASE_URL}/directoryObjects/{object_id}"}


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def backoff_delay(attempt: int, retry_delay: float, retry_after: Optional[str] = None) -> float:
    """Seconds to wait before retry number `attempt` (0-based).

    A Retry-After header wins over the exponential schedule.
    """
    server_hint = parse_retry_after(retry_after)
    if server_hint is not None:
        return min(server_hint, MAX_BACKOFF_SECONDS)
    return min(retry_delay * (2 ** attempt), MAX_BACKOFF_SECONDS)


def describe_error(response) -> str:
    error_detail = response.text
    try:
        error_json = response.json()
    except ValueError:
        return error_detail or response.reason or ""
    if isinstance(error_json, dict) and isinstance(error_json.get("error"), dict):
        error = error_json["error"]
        error_detail = f"{error.get('code', 'Unknown')}: {error.get('message', 'Unknown error')}"
        inner = error.get("innerError") or error.get("innererror")
        if isinstance(inner, dict) and inner.get("message"):
            error_detail += f" (Inner: {inner['message']})"
    return error_detail


class GraphClient:
    def __init__(
        self,
        tokens: TokenManager,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        sleep=asyncio.sleep,
    ):
        self.tokens = tokens
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_retries = max_retries
        self._sleep = sleep

    def build_url(self, path: str, api: str = "graph", version: Optional[str] = None) -> str:
        if api not in API_ROOTS:
            raise InvalidParamsError(f"Unknown API family '{api}'")
        if is_absolute_url(path):
            # Continuation links must stay on the host the token was issued for.
            if not same_origin(path, API_ROOTS[api]):
                raise UpstreamError(f"Refusing to send credentials to {urlsplit(path).netloc or path}")
            return path
        if not path.startswith("/"):
            path = "/" + path
        if api == "azure":
            return f"{AZURE_BASE_URL}{path}"
        return f"{GRAPH_ROOT}/{version or 'v1.0'}{path}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        api: str = "graph",
        version: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.0,
    ) -> Any:
        """Send one logical request, retrying throttling and transient failures."""
        url = self.build_url(path, api=api, version=version)
        retries = self.max_retries if max_retries is None else max_retries
        token = await self.tokens.get_access_token(API_SCOPES[api])

        request_headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        if json is not None:
            request_headers["Content-Type"] = "application/json"
        if headers:
            request_headers.update(headers)

        method = method.upper()
        attempt = 0
        while True:
            try:
                response = await asyncio.to_thread(
                    self.session.request,
                    method,
                    url,
                    headers=request_headers,
                    params=params,
                    json=json,
                    data=data,
                    timeout=timeout or self.timeout,
                )
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                if attempt < retries:
                    delay = backoff_delay(attempt, retry_delay)
                    logger.warning("request_retry", method=method, url=url, error=type(e).__name__, delay=delay)
                    await self._sleep(delay)
                    attempt += 1
                    continue
                if isinstance(e, requests.exceptions.Timeout):
                    raise UpstreamError(f"Request timeout: The request to {path} took too long to complete")
                raise UpstreamError(f"Connection error: Unable to connect to {url}")
            except requests.exceptions.RequestException as e:
                raise UpstreamError(f"Request failed: {e}")

            status = response.status_code
            if status in RETRY_STATUSES and attempt < retries:
                delay = backoff_delay(attempt, retry_delay, response.headers.get("Retry-After"))
                logger.warning("request_retry", method=method, url=url, status=status, delay=delay)
                await self._sleep(delay)
                attempt += 1
                continue

            if status >= 400:
                detail = describe_error(response)
                family = "Azure Resource Manager" if api == "azure" else "Graph API"
                raise UpstreamError(f"{family} error: {status} - {detail}", status=status, details=detail)

            return self._decode(response)

    @staticmethod
    def _decode(response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"rawResponse": response.text}

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, json: Optional[Any] = None, **kwargs) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    async def patch(self, path: str, json: Optional[Any] = None, **kwargs) -> Any:
        return await self.request("PATCH", path, json=json, **kwargs)

    async def put(self, path: str, json: Optional[Any] = None, **kwargs) -> Any:
        return await self.request("PUT", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)

    async def get_all(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        max_pages: int = MAX_PAGES,
        **kwargs,
    ) -> List[Any]:
        """Follow @odata.nextLink (Graph) or nextLink (ARM) and join the value arrays."""
        items: List[Any] = []
        page = await self.request("GET", path, params=params, **kwargs)
        pages = 1
        while True:
            items.extend(page.get("value", []))
            next_link = page.get("@odata.nextLink") or page.get("nextLink")
            if not next_link:
                break
            if pages >= max_pages:
                logger.warning("paging_limit_reached", path=path, pages=pages)
                break
            page = await self.request("GET", next_link, **kwargs)
            pages += 1
        return items

    async def resolve_user_id(self, identifier: str) -> str:
        """Object IDs pass through; UPNs and email addresses are looked up."""
        if is_guid(identifier):
            return identifier
        user = await self.get(f"/users/{identifier}", params={"$select": "id"})
        return user["id"]

    def close(self):
        self.session.close()

"""Outbound HTTP client used by api nodes."""

import asyncio
import base64
import json
from typing import Any, Dict, Optional

import aiohttp

from ..models.core import ApiAuthentication
from .exceptions import HttpRequestError
from .logging import get_logger

logger = get_logger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


class HttpResponse:
    """Decoded response of an outbound call."""

    def __init__(self, status: int, headers: Dict[str, str], data: Any):
        self.status = status
        self.headers = headers
        self.data = data

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "headers": self.headers, "data": self.data}


def authentication_headers(authentication: Optional[ApiAuthentication]) -> Dict[str, str]:
    """Translate an api node's authentication block into request headers."""
    if authentication is None or authentication.type == "none":
        return {}

    credentials = authentication.credentials
    if authentication.type == "bearer":
        return {"Authorization": f"Bearer {credentials.get('token', '')}"}
    if authentication.type == "basic":
        raw = f"{credentials.get('username', '')}:{credentials.get('password', '')}"
        return {"Authorization": "Basic " + base64.b64encode(raw.encode()).decode()}
    if authentication.type == "api_key":
        header = credentials.get("header", "X-API-Key")
        return {header: credentials.get("key", "")}
    return {}


def _decode_body(raw: bytes) -> Any:
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


class HttpClient:
    """aiohttp based client; one session per request keeps runs independent."""

    def __init__(self, default_timeout: float = 30.0):
        self.default_timeout = default_timeout

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """Send a request and return the decoded response.

        Args:
            method: HTTP method
            url: Target URL
            headers: Optional request headers
            body: JSON-serializable body, only sent for POST, PUT and PATCH
            timeout: Total timeout in seconds

        Raises:
            HttpRequestError: On connection errors, timeouts and non-2xx responses
        """
        method = method.upper()
        total = timeout if timeout is not None else self.default_timeout
        kwargs: Dict[str, Any] = {"headers": headers or None}
        if body is not None and method in BODY_METHODS:
            kwargs["json"] = body

        logger.debug(f"{method} {url} (timeout={total}s)")
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=total)) as session:
                async with session.request(method, url, **kwargs) as response:
                    raw = await response.read()
                    if not 200 <= response.status < 300:
                        raise HttpRequestError(
                            f"API request failed: {response.status} {response.reason}",
                            url=url,
                            status_code=response.status
                        )
                    return HttpResponse(
                        status=response.status,
                        headers=dict(response.headers),
                        data=_decode_body(raw),
                    )
        except HttpRequestError:
            raise
        except asyncio.TimeoutError as e:
            raise HttpRequestError(f"API request timed out after {total} seconds", url=url) from e
        except aiohttp.ClientError as e:
            raise HttpRequestError(f"API execution error: {e}", url=url) from e

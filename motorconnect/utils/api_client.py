# motorconnect/utils/api_client.py

import copy
import logging
from typing import Any, Dict, Optional

import httpx

from motorconnect.core.config import settings
from motorconnect.utils.token_store import TokenStore

logger = logging.getLogger(__name__)


class MarketplaceAPIError(Exception):
    """Raised when the marketplace API answers with a non-2xx status"""

    def __init__(self, status_code: int, message: str, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload


class MarketplaceNetworkError(Exception):
    """Raised when the marketplace API cannot be reached"""
    pass


class SessionExpiredError(Exception):
    """Raised on HTTP 401 after the stored token has been cleared"""

    def __init__(self, redirect_to: str = settings.LOGIN_PATH):
        super().__init__(f"Session expired, redirect to {redirect_to}")
        self.redirect_to = redirect_to


def extract_error_message(payload: Any, fallback: str) -> str:
    """
    Best-effort message from an API error body.
    Looks at "error", then "message", then "detail".
    """
    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    if isinstance(payload, str) and payload.strip():
        return payload
    return fallback


class MarketplaceAPI:
    """
    Async client for the marketplace REST API.
    Attaches the bearer token and treats 401 as an expired session.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_store: Optional[TokenStore] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.api_base_url
        self.token_store = token_store or TokenStore()
        self._bearer_token: Optional[str] = None
        self._token_bound = False

        # HTTP client with connection pooling
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or settings.API_TIMEOUT_SECONDS,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
            headers={"Content-Type": "application/json"},
            transport=transport,
            event_hooks={
                "request": [self._log_request_url]
            }
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _log_request_url(self, request: httpx.Request):
        logger.debug(f"Marketplace request: {request.method} {request.url}")

    def bind_token(self, token: Optional[str]) -> "MarketplaceAPI":
        """
        Return a view of this client that authenticates as one caller.
        A bound view never reads or clears the token store; None means anonymous.
        """
        bound = copy.copy(self)
        bound._bearer_token = token
        bound._token_bound = True
        return bound

    def _resolve_token(self) -> Optional[str]:
        if self._token_bound:
            return self._bearer_token
        return self.token_store.get_token()

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
        include_auth: bool = True
    ) -> Any:
        """Make a request to the marketplace API and return the decoded body"""

        headers = {}
        if include_auth:
            token = self._resolve_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self.client.request(
                method=method,
                url=endpoint,
                json=data,
                params=params,
                headers=headers
            )
        except httpx.RequestError as e:
            logger.error(f"Marketplace network error on {method} {endpoint}: {str(e)}")
            raise MarketplaceNetworkError(f"Network error contacting marketplace API: {str(e)}")

        if response.status_code == 401:
            logger.warning(f"Marketplace API rejected credentials on {method} {endpoint}")
            if self._token_bound:
                self._bearer_token = None
            else:
                self.token_store.remove_token()
            raise SessionExpiredError(settings.LOGIN_PATH)

        payload = self._decode(response)
        if response.is_error:
            message = extract_error_message(payload, f"Request failed with status {response.status_code}")
            logger.error(f"Marketplace API error on {method} {endpoint}: {response.status_code} - {message}")
            raise MarketplaceAPIError(response.status_code, message, payload)

        return payload

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, include_auth: bool = True) -> Any:
        return await self._make_request("GET", endpoint, params=params, include_auth=include_auth)

    async def post(self, endpoint: str, data: Optional[Any] = None, include_auth: bool = True) -> Any:
        return await self._make_request("POST", endpoint, data=data, include_auth=include_auth)

    async def put(self, endpoint: str, data: Optional[Any] = None) -> Any:
        return await self._make_request("PUT", endpoint, data=data)

    async def patch(self, endpoint: str, data: Optional[Any] = None) -> Any:
        return await self._make_request("PATCH", endpoint, data=data)

    async def delete(self, endpoint: str) -> Any:
        return await self._make_request("DELETE", endpoint)

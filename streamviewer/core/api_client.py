"""
Media Server API Client

Async client for the media server's /v3 control API (paths, sessions,
configuration, recordings).

Authentication state lives in an immutable AuthContext. Setting or clearing
the token swaps the client's context instead of mutating shared state, and a
401 response swaps in a cleared context before the error is raised.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp

from ..config.settings import API_BASE_URL, API_TOKEN, API_VERSION_PREFIX, REQUEST_TIMEOUT

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base exception for control API errors"""
    pass


class AuthorizationError(ApiError):
    """Raised on HTTP 401; the held token has been discarded"""
    pass


class RequestError(ApiError):
    """Raised when a request fails or returns a non-success status"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class AuthContext:
    """Immutable authentication state"""
    token: Optional[str] = None

    def with_token(self, token: str) -> "AuthContext":
        return replace(self, token=token)

    def cleared(self) -> "AuthContext":
        return replace(self, token=None)

    def authorization_headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}


class ApiClient:
    """
    Control API client.

    Usage:
        client = ApiClient("http://localhost:9997", AuthContext(token))
        paths = await client.list_paths()
        await client.add_path("camera1", {"source": "rtsp://10.0.0.5/stream"})
        await client.close()
    """

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        context: Optional[AuthContext] = None,
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.context = context if context is not None else AuthContext(API_TOKEN)
        self.timeout = timeout

        self.session = session
        self._owns_session = session is None

        logger.info(f"API client initialized for {self.base_url}")

    # ========================================================================
    # Authentication
    # ========================================================================

    def set_token(self, token: str) -> AuthContext:
        self.context = self.context.with_token(token)
        return self.context

    def clear_token(self) -> AuthContext:
        self.context = self.context.cleared()
        return self.context

    @property
    def is_authenticated(self) -> bool:
        return bool(self.context.token)

    # ========================================================================
    # Requests
    # ========================================================================

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Send a request to the control API.

        Args:
            endpoint: Path below the base URL (e.g. /v3/paths/list)
            method: HTTP method
            params: Query string parameters
            json_body: JSON request body
            headers: Extra headers merged over the JSON defaults

        Returns:
            Parsed JSON body, or None for an empty body

        Raises:
            AuthorizationError: On HTTP 401 (token discarded)
            RequestError: On any other failure
        """
        url = f"{self.base_url}{endpoint}"
        request_headers = {"Content-Type": "application/json"}
        request_headers.update(headers or {})
        request_headers.update(self.context.authorization_headers())

        try:
            session = self._get_session()
            async with session.request(
                method,
                url,
                params=_clean_params(params),
                json=json_body,
                headers=request_headers,
            ) as response:
                if response.status == 401:
                    self.clear_token()
                    raise AuthorizationError("Unauthorized")

                text = await response.text()
                data = _parse_body(text)

                if response.status >= 400:
                    message = None
                    if isinstance(data, dict):
                        message = data.get("error")
                    raise RequestError(message or "Request failed", status=response.status)

                if data is _INVALID:
                    raise RequestError("Invalid JSON in response", status=response.status)

                return data

        except ApiError as e:
            logger.error(f"Request to {endpoint} failed: {e}")
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Request to {endpoint} failed: {e}")
            raise RequestError(f"Request to {endpoint} failed: {e}") from e

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self.session

    async def close(self) -> None:
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    # ========================================================================
    # Paths
    # ========================================================================

    async def list_paths(self, page: Optional[int] = None, items_per_page: Optional[int] = None) -> Any:
        return await self.request(
            f"{API_VERSION_PREFIX}/paths/list",
            params=_page_params(page, items_per_page),
        )

    async def get_path(self, name: str) -> Any:
        return await self.request(f"{API_VERSION_PREFIX}/paths/get/{name}")

    async def add_path(self, name: str, config: Dict[str, Any]) -> Any:
        """Add or update a path configuration"""
        return await self.request(
            f"{API_VERSION_PREFIX}/config/paths/add/{name}",
            method="POST",
            json_body=config,
        )

    async def delete_path(self, name: str) -> Any:
        return await self.request(
            f"{API_VERSION_PREFIX}/config/paths/delete/{name}",
            method="DELETE",
        )

    async def iter_paths(self, items_per_page: int = 100) -> AsyncIterator[Dict[str, Any]]:
        """Yield every path, following pageCount across pages"""
        page = 0
        while True:
            data = await self.list_paths(page=page, items_per_page=items_per_page) or {}
            for item in data.get("items", []):
                yield item
            page += 1
            if page >= data.get("pageCount", 0):
                break

    # ========================================================================
    # Sessions and connections
    # ========================================================================

    async def list_rtsp_sessions(self, page: Optional[int] = None, items_per_page: Optional[int] = None) -> Any:
        return await self.request(
            f"{API_VERSION_PREFIX}/rtspsessions/list",
            params=_page_params(page, items_per_page),
        )

    async def list_rtmp_connections(self, page: Optional[int] = None, items_per_page: Optional[int] = None) -> Any:
        return await self.request(
            f"{API_VERSION_PREFIX}/rtmpconns/list",
            params=_page_params(page, items_per_page),
        )

    async def list_webrtc_sessions(self, page: Optional[int] = None, items_per_page: Optional[int] = None) -> Any:
        return await self.request(
            f"{API_VERSION_PREFIX}/webrtcsessions/list",
            params=_page_params(page, items_per_page),
        )

    # ========================================================================
    # Recordings and configuration
    # ========================================================================

    async def get_recordings(self, name: str) -> Any:
        return await self.request(f"{API_VERSION_PREFIX}/recordings/get/{name}")

    async def get_global_config(self) -> Any:
        return await self.request(f"{API_VERSION_PREFIX}/config/global/get")

    async def update_global_config(self, config: Dict[str, Any]) -> Any:
        return await self.request(
            f"{API_VERSION_PREFIX}/config/global/patch",
            method="POST",
            json_body=config,
        )


# ============================================================================
# Helpers
# ============================================================================

_INVALID = object()


def _parse_body(text: str) -> Any:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except ValueError:
        return _INVALID


def _page_params(page: Optional[int], items_per_page: Optional[int]) -> Dict[str, Any]:
    params = {}
    if page is not None:
        params["page"] = page
    if items_per_page is not None:
        params["itemsPerPage"] = items_per_page
    return params


def _clean_params(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, str]]:
    if not params:
        return None
    return {key: str(value) for key, value in params.items() if value is not None}


# ============================================================================
# Helper context manager
# ============================================================================

class ApiClientContext:
    """
    Context manager for automatic API client lifecycle.

    Usage:
        async with ApiClientContext(base_url) as client:
            paths = await client.list_paths()
        # Session closed on exit
    """

    def __init__(self, base_url: str = API_BASE_URL, context: Optional[AuthContext] = None, **kwargs):
        self.client = ApiClient(base_url, context, **kwargs)

    async def __aenter__(self) -> ApiClient:
        return self.client

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.client.close()
        return False

"""
Generic async HTTP client with bounded retry and exponential backoff.

Every component that talks to a remote API (the KicksDB feed, the
WooCommerce store) goes through ApiClient.request().
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class ApiClientError(Exception):
    """Base exception for remote API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientApiError(ApiClientError):
    """Network failure, rate limit or server error that outlived the retries."""
    pass


class PermanentApiError(ApiClientError):
    """Client error (4xx other than 429). Never retried."""
    pass


class NotFoundError(PermanentApiError):
    """The remote resource does not exist."""
    pass


class ApiClient:
    """
    Async JSON API client.

    Handles timeouts, retries and backoff. Subclasses provide the base URL
    and authentication and expose typed endpoint helpers.
    """

    DEFAULT_TIMEOUT = 30.0  # seconds
    MAX_RETRIES = 3
    BACKOFF_BASE = 2

    def __init__(
        self,
        base_url: str,
        *,
        name: str = "API",
        headers: Optional[Dict[str, str]] = None,
        auth: Optional[httpx.Auth] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        session: Optional[httpx.AsyncClient] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL every request path is joined to
            name: Label used in log messages and errors
            headers: Extra headers sent with every request
            auth: Optional httpx auth (e.g. BasicAuth)
            timeout: Fixed per-call timeout in seconds
            max_retries: Total attempts for transient failures
            session: Pre-built httpx client (tests, shared pools)
            sleep: Awaitable sleep used for backoff (injectable for tests)
        """
        self.base_url = base_url.rstrip("/")
        self.name = name
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._headers = {"Accept": "application/json", **(headers or {})}
        self._auth = auth
        self._sleep = sleep or asyncio.sleep

        self._client: Optional[httpx.AsyncClient] = session
        self._owns_client = session is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers=self._headers,
                auth=self._auth,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Any] = None,
    ) -> Any:
        """
        Perform a request with retry logic.

        Network failures, 429 and 5xx responses are retried up to
        max_retries attempts, sleeping 2^attempt seconds between attempts.
        Any other 4xx fails immediately.

        Args:
            method: HTTP method
            path: Path relative to base_url
            params: Query string parameters
            body: JSON body

        Returns:
            Decoded JSON (an empty dict for 204 or an empty body)

        Raises:
            NotFoundError: On 404
            PermanentApiError: On other non-retryable 4xx
            TransientApiError: When retries are exhausted
            ApiClientError: When a success response is not valid JSON
        """
        client = await self._get_client()
        url = self.build_url(path)
        kwargs: Dict[str, Any] = {"params": params}
        if body is not None:
            kwargs["json"] = body
        if self._auth is not None:
            kwargs["auth"] = self._auth

        last_error: Optional[ApiClientError] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = await client.request(
                    method, url, headers=self._headers, **kwargs
                )
            except httpx.RequestError as e:
                last_error = TransientApiError(f"{self.name} request error: {e}")
                logger.warning(
                    f"{self.name} {method} {path} failed "
                    f"(attempt {attempt}/{self.max_retries}): {e}"
                )
            else:
                status = response.status_code

                if status == 429 or status >= 500:
                    last_error = TransientApiError(
                        f"{self.name} {method} {path} returned {status}",
                        status_code=status,
                    )
                    logger.warning(
                        f"{self.name} {method} {path} returned {status} "
                        f"(attempt {attempt}/{self.max_retries})"
                    )
                elif status == 404:
                    raise NotFoundError(
                        f"{self.name} {method} {path} not found", status_code=404
                    )
                elif status >= 400:
                    raise PermanentApiError(
                        f"{self.name} {method} {path} returned {status}: "
                        f"{response.text[:500]}",
                        status_code=status,
                    )
                else:
                    return self._decode(response, method, path)

            if attempt < self.max_retries:
                delay = self.BACKOFF_BASE ** attempt
                logger.debug(f"Retrying {self.name} {method} {path} in {delay}s")
                await self._sleep(delay)

        raise last_error or TransientApiError(f"{self.name} max retries exceeded")

    def _decode(self, response: httpx.Response, method: str, path: str) -> Any:
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ApiClientError(
                f"{self.name} {method} {path} returned invalid JSON: {e}",
                status_code=response.status_code,
            ) from e

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

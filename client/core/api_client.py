"""HTTP client for the events REST API.

Wraps a connection-pooled ``httpx.AsyncClient`` with the conventions of the
backend:
- Bearer token auth taken from the shared ``AuthSession``
- One transparent token refresh on 401, then the request is replayed
- ``{success, data, message}`` response envelopes unwrapped to ``data``
- Error bodies converted to ``ApiError`` (409 + PAYMENT_IN_PROGRESS is a
  ``PaymentConflictError`` so the registration flow can route it to the user)

SCALABILITY:
- Circuit breaker fails fast when the API is down (5 failures -> 60s)
- Retry with exponential backoff for transient failures (3 attempts), only
  for requests that are safe to repeat: GETs, and calls that opt in with
  ``retry_safe=True``. A POST whose response was lost may already have been
  applied by the server, so it is sent once.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
from circuitbreaker import circuit
from tenacity import (
    RetryCallState,
    retry,
    retry_all,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from core.auth import AuthSession
from core.config import get_settings
from core.logger import get_logger

logger = get_logger(__name__)

PAYMENT_IN_PROGRESS_CODE = "PAYMENT_IN_PROGRESS"

_http_client: httpx.AsyncClient | None = None
_client_lock = asyncio.Lock()

# Backoff parameters, read at call time
_RETRY_INITIAL_WAIT = 0.5
_RETRY_MAX_WAIT = 10.0
_RETRY_JITTER = 1.0


class ApiError(Exception):
    """Raised when the API answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        payload: Any = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.payload = payload
        super().__init__(message)


class ApiServerError(ApiError):
    """Raised when the API returns a 5xx error (retriable)."""


class AuthenticationExpiredError(ApiError):
    """Raised when a 401 survives the token refresh; the session is cleared."""


class PaymentConflictError(ApiError):
    """Raised when the user already has a pending order for the event."""


# Exceptions that should trigger retry and circuit breaker
RETRIABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.RequestError,
    httpx.TimeoutException,
    ApiServerError,
)


async def get_http_client() -> httpx.AsyncClient:
    """Get or create the shared HTTP client for API requests.

    Uses connection pooling to reduce overhead from per-request client creation.
    Thread-safe via asyncio.Lock to prevent race conditions.
    """
    global _http_client

    if _http_client is not None and not _http_client.is_closed:
        return _http_client

    async with _client_lock:
        if _http_client is not None and not _http_client.is_closed:
            return _http_client

        settings = get_settings()
        _http_client = httpx.AsyncClient(
            timeout=settings.http_timeout,
            follow_redirects=True,
            headers={"Accept": "application/json"},
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        return _http_client


async def close_http_client() -> None:
    """Close the shared HTTP client (called on shutdown)."""
    global _http_client
    if _http_client is not None and not _http_client.is_closed:
        await _http_client.aclose()
    _http_client = None


def _wait_exponential(retry_state: RetryCallState) -> float:
    """Exponential backoff with jitter."""
    return wait_exponential_jitter(
        initial=_RETRY_INITIAL_WAIT, max=_RETRY_MAX_WAIT, jitter=_RETRY_JITTER
    )(retry_state)


def _is_retry_safe(retry_state: RetryCallState) -> bool:
    return bool(retry_state.kwargs.get("retry_safe"))


def _error_from_response(response: httpx.Response) -> ApiError:
    try:
        body = response.json()
    except ValueError:
        body = None

    message = response.reason_phrase or "Request failed"
    code = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or message
        code = body.get("code")

    error_cls = ApiError
    if response.status_code == 409 and code == PAYMENT_IN_PROGRESS_CODE:
        error_cls = PaymentConflictError
    elif response.status_code == 401:
        error_cls = AuthenticationExpiredError

    return error_cls(
        message,
        status_code=response.status_code,
        code=code,
        payload=body.get("data") if isinstance(body, dict) else body,
    )


class ApiClient:
    """Thin, typed-error wrapper over the events API."""

    def __init__(
        self,
        session: AuthSession,
        *,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.session = session
        self.base_url = (base_url or get_settings().api_base_url).rstrip("/")
        self._http_client = http_client

    async def _client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client
        return await get_http_client()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _auth_headers(self) -> dict[str, str]:
        if self.session.access_token:
            return {"Authorization": f"Bearer {self.session.access_token}"}
        return {}

    @circuit(
        failure_threshold=5,
        recovery_timeout=60,
        expected_exception=RETRIABLE_EXCEPTIONS,
        name="events_api_circuit",
    )
    @retry(
        stop=stop_after_attempt(3),
        wait=_wait_exponential,
        retry=retry_all(
            retry_if_exception_type(RETRIABLE_EXCEPTIONS), _is_retry_safe
        ),
        reraise=True,
    )
    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
        retry_safe: bool = False,
    ) -> httpx.Response:
        """Send one request, raising ApiServerError on 5xx.

        Only ``retry_safe`` requests are retried; the flag must be passed by
        keyword so the retry predicate can see it.
        """
        client = await self._client()
        response = await client.request(
            method,
            self._url(path),
            json=json,
            params=params,
            headers=self._auth_headers(),
        )
        if response.status_code >= 500:
            raise ApiServerError(
                f"Server returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    async def _refresh_access_token(self) -> bool:
        """Exchange the refresh token for a new access token.

        Returns False when there is no refresh token or the exchange fails;
        the caller then treats the session as expired.
        """
        if not self.session.refresh_token:
            return False

        client = await self._client()
        try:
            response = await client.post(
                self._url("/auth/refresh"),
                json={"refreshToken": self.session.refresh_token},
            )
        except httpx.RequestError as exc:
            logger.warning("api.token_refresh_failed", error=str(exc))
            return False

        if response.status_code != 200:
            logger.warning("api.token_refresh_rejected", status=response.status_code)
            return False

        body = response.json()
        data = body.get("data") if isinstance(body.get("data"), dict) else body
        access_token = data.get("accessToken")
        if not access_token:
            return False

        self.session.update_access_token(access_token)
        logger.info("api.token_refreshed")
        return True

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
        retry_safe: bool | None = None,
    ) -> Any:
        """Send a request and return the unwrapped ``data`` of the envelope.

        ``retry_safe`` defaults to True for GET and False for everything else.

        Raises:
            ApiError: For any non-2xx answer (subclassed for conflicts and 401)
            ApiServerError: When 5xx persists after retries
            httpx.RequestError: For connection errors after retries
            CircuitBreakerError: When the circuit is open
        """
        if retry_safe is None:
            retry_safe = method.upper() == "GET"

        response = await self._send(
            method, path, json=json, params=params, retry_safe=retry_safe
        )

        if response.status_code == 401 and await self._refresh_access_token():
            response = await self._send(
                method, path, json=json, params=params, retry_safe=retry_safe
            )

        if response.status_code == 401:
            self.session.logout()

        if response.is_error:
            error = _error_from_response(response)
            logger.info(
                "api.request_failed",
                method=method,
                path=path,
                status=response.status_code,
                code=error.code,
            )
            raise error

        if not response.content:
            return None
        body = response.json()
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def get(self, path: str, *, params: dict | None = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(
        self, path: str, json: Any = None, *, retry_safe: bool = False
    ) -> Any:
        return await self.request("POST", path, json=json, retry_safe=retry_safe)

    async def put(self, path: str, json: Any = None) -> Any:
        return await self.request("PUT", path, json=json)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

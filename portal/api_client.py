"""
REST API Client with Request Guards.

Every call to the backing REST service goes through :class:`ApiClient`,
which composes two collaborators around a shared ``httpx.AsyncClient``:

- :class:`RequestGuard` attaches the bearer credential to non-public
  requests and, on a 401 for any of them, clears the session and sends
  the router to the login page.
- :class:`ErrorReporter` turns any transport / HTTP failure into a
  human-readable message, logs it and wraps it in :class:`ApiError`.

Successful bodies are returned untouched (decoded JSON, ``None`` for an
empty body).  Failures are always re-raised to the caller after the side
effects above have run.

Usage::

    client = ApiClient(
        base_url=config.API_URL,
        guard=RequestGuard(session, router, logger),
        reporter=ErrorReporter(logger),
        logger=logger,
    )
    products = await client.get("/productos")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

import httpx

from portal.config import AppConfig
from portal.logger import StructuredLogger

if TYPE_CHECKING:
    from portal.auth import SessionManager
    from portal.routing import Router


class ApiError(Exception):
    """A failed call to the REST service.

    Attributes
    ----------
    status_code:
        HTTP status, or ``None`` when no response was received.
    message:
        Normalised description (``"Error 401: ..."`` / ``"Error: ..."``).
    payload:
        Decoded error body, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.message: str = message
        self.status_code: Optional[int] = status_code
        self.payload: Any = payload

    @property
    def server_message(self) -> Optional[str]:
        """The ``message`` field of the error body, verbatim."""
        if isinstance(self.payload, dict):
            return _extract_message(self.payload)
        return None

    @property
    def is_client_side(self) -> bool:
        return self.status_code is None


# ---------------------------------------------------------------------------
# Error reporting
# ---------------------------------------------------------------------------

class ErrorReporter:
    """Normalises and logs HTTP failures."""

    def __init__(self, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger

    def report(self, exc: httpx.HTTPError) -> ApiError:
        """Log *exc* and return the matching :class:`ApiError`."""
        if isinstance(exc, httpx.HTTPStatusError):
            response = exc.response
            payload = _decode_body(response)
            detail = _extract_message(payload) or response.reason_phrase or str(exc)
            message = f"Error {response.status_code}: {detail}"
            self._logger.error(
                message,
                extra={
                    "event": "HTTP_ERROR",
                    "status_code": response.status_code,
                    "url": str(exc.request.url),
                },
            )
            return ApiError(message, status_code=response.status_code, payload=payload)

        message = f"Error: {exc}" if str(exc) else f"Error: {type(exc).__name__}"
        url: Optional[str]
        try:
            url = str(exc.request.url)
        except RuntimeError:
            url = None
        self._logger.error(message, extra={"event": "HTTP_ERROR", "url": url})
        return ApiError(message)


# ---------------------------------------------------------------------------
# Credential guard
# ---------------------------------------------------------------------------

class RequestGuard:
    """Attaches the bearer credential and reacts to authorization loss.

    Parameters
    ----------
    session:
        The shared ``SessionManager``.
    router:
        Router used for the forced redirect on 401.
    logger:
        Structured logger.
    login_path:
        Where a 401 sends the user.
    public_endpoints:
        Auth endpoints that never carry a credential.
    """

    def __init__(
        self,
        session: SessionManager,
        router: Router,
        logger: StructuredLogger,
        login_path: str = "/login",
        public_endpoints: tuple[str, ...] = AppConfig.PUBLIC_AUTH_ENDPOINTS,
    ) -> None:
        self._session: SessionManager = session
        self._router: Router = router
        self._logger: StructuredLogger = logger
        self._login_path: str = login_path
        self._public_endpoints: tuple[str, ...] = public_endpoints

    def is_public(self, url: str) -> bool:
        path = httpx.URL(url).path.rstrip("/")
        return any(path.endswith(endpoint) for endpoint in self._public_endpoints)

    def attach_credential(self, url: str, headers: dict[str, str]) -> Optional[int]:
        """Add ``Authorization`` to *headers* when a live token exists.

        Returns
        -------
        int | None
            The session epoch the request was sent under, or ``None`` for
            requests whose 401 must not end the session (public auth
            endpoints and requests carrying a caller-supplied
            ``Authorization`` header).  Protected requests sent without a
            token still record the epoch.
        """
        if self.is_public(url):
            return None
        if any(name.lower() == "authorization" for name in headers):
            return None
        epoch = self._session.epoch
        token = self._session.access_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return epoch

    def handle_unauthorized(self, sent_epoch: Optional[int]) -> bool:
        """Clear the session and redirect after a 401.

        Only the first 401 for a given session acts; later ones (epoch
        already bumped) and requests exempt from the guard are ignored.

        Returns
        -------
        bool
            ``True`` when the session was cleared by this call.
        """
        if sent_epoch is None:
            return False
        if self._session.epoch != sent_epoch:
            self._logger.debug("401 for a session that was already cleared; ignoring.")
            return False

        self._logger.warning(
            "Authorization lost (401); clearing session.",
            extra={"event": "SESSION_EXPIRED"},
        )
        self._session.clear()
        self._router.navigate(self._login_path)
        return True


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ApiClient:
    """Async JSON client for the portal's REST service.

    Parameters
    ----------
    base_url:
        Root URL of the REST service.
    guard:
        Credential guard.
    reporter:
        Failure normaliser.
    logger:
        Structured logger.
    timeout:
        Transport timeout in seconds.
    transport:
        Optional ``httpx`` transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str,
        guard: RequestGuard,
        reporter: ErrorReporter,
        logger: StructuredLogger,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url: str = base_url.rstrip("/")
        self._guard: RequestGuard = guard
        self._reporter: ErrorReporter = reporter
        self._logger: StructuredLogger = logger
        self._timeout: float = timeout
        self._transport: Optional[httpx.AsyncBaseTransport] = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """Send one request and return the decoded body.

        Raises
        ------
        ApiError
            On any transport failure or non-2xx status.
        """
        request_headers: dict[str, str] = dict(headers or {})
        sent_epoch = self._guard.attach_credential(url, request_headers)

        try:
            response = await self._get_client().request(
                method,
                url,
                json=json,
                params=params,
                headers=request_headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 401:
                self._guard.handle_unauthorized(sent_epoch)
            raise self._reporter.report(exc) from exc
        except httpx.HTTPError as exc:
            raise self._reporter.report(exc) from exc

        self._logger.debug("%s %s -> %d", method, url, response.status_code)
        return _decode_body(response)

    async def get(self, url: str, **kwargs: Any) -> Any:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Any:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> Any:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", url, **kwargs)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------

def _decode_body(response: httpx.Response) -> Any:
    """Return the JSON body, the raw text when it is not JSON, or ``None``."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _extract_message(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return None

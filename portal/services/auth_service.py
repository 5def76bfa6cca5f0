"""
Authentication Service.

Single orchestrator for every authentication concern of the portal:
login, registration, logout, token refresh and the password flows.

Sits between the UI layer and the REST backend so that views remain thin
form handlers.  The service talks HTTP through ``ApiClient`` and hands
every successful session to ``SessionManager``; it never writes to the
storage scopes itself.

All network methods are coroutines returning a typed ``AuthResult``;
callers never inspect raw exceptions.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from pydantic import ValidationError

from portal.api_client import ApiClient, ApiError
from portal.auth import SessionManager
from portal.logger import StructuredLogger
from portal.models.auth_models import (
    AUTH_FAILED_MESSAGE,
    HTTP_STATUS_ERROR_MAP,
    MISSING_REFRESH_TOKEN_MESSAGE,
    PASSWORD_MISMATCH_MESSAGE,
    SESSION_SUPERSEDED_MESSAGE,
    AuthErrorCode,
    AuthResponse,
    AuthResult,
    ChangePassword,
    LoginCredentials,
    PasswordReset,
    RegisterData,
)
from portal.routing import Router

_REQUIRED_FIELDS_MESSAGE: str = "Completa todos los campos requeridos"


class AuthService:
    """Authentication orchestrator.

    Parameters
    ----------
    api:
        REST client (carries the request guard).
    session:
        The shared ``SessionManager``.
    router:
        Used by :meth:`logout` to return to the login page.
    logger:
        Structured JSON logger for audit-grade logging.
    login_path:
        Destination after logout.
    """

    def __init__(
        self,
        api: ApiClient,
        session: SessionManager,
        router: Router,
        logger: StructuredLogger,
        login_path: str = "/login",
    ) -> None:
        self._api: ApiClient = api
        self._session: SessionManager = session
        self._router: Router = router
        self._logger: StructuredLogger = logger
        self._login_path: str = login_path
        self._background_tasks: set[asyncio.Task[None]] = set()

    @staticmethod
    def normalize_email(email: str) -> str:
        """Normalise an email address: strip whitespace and lowercase."""
        return email.strip().lower()

    # ==================================================================
    # Login
    # ==================================================================

    async def login(self, email: str, password: str, remember: bool = False) -> AuthResult:
        """Authenticate against ``POST /auth/login``.

        Parameters
        ----------
        email:
            The raw email entered by the user.
        password:
            The raw password entered by the user.
        remember:
            Persist the session in the durable scope.

        Returns
        -------
        AuthResult
            ``success=True`` with the user, or the server's message
            verbatim on failure.  The session is untouched on failure.
        """
        credentials = LoginCredentials(
            email=self.normalize_email(email), password=password, remember_me=remember
        )
        result = await self._authenticate(
            "/auth/login",
            credentials.model_dump(include={"email", "password"}),
            remember=credentials.remember_me,
            event="LOGIN",
        )
        if not result.success:
            self._session.set_error(result.error_message)
        return result

    # ==================================================================
    # Registration
    # ==================================================================

    async def register(self, data: RegisterData) -> AuthResult:
        """Create an account via ``POST /auth/register`` and sign in.

        The password confirmation and the required fields are checked
        before any network call.  The new session is never remembered.
        """
        if data.password != data.confirm_password:
            self._session.set_error(PASSWORD_MISMATCH_MESSAGE)
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message=PASSWORD_MISMATCH_MESSAGE,
            )

        required = (data.email, data.password, data.nombre, data.apellido)
        if not all(value and value.strip() for value in required):
            self._session.set_error(_REQUIRED_FIELDS_MESSAGE)
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.VALIDATION_ERROR,
                error_message=_REQUIRED_FIELDS_MESSAGE,
            )

        payload: dict[str, Any] = {
            "email": self.normalize_email(data.email),
            "password": data.password,
            "nombre": data.nombre.strip(),
            "apellido": data.apellido.strip(),
        }
        if data.telefono:
            payload["telefono"] = data.telefono.strip()

        result = await self._authenticate(
            "/auth/register", payload, remember=False, event="REGISTER",
        )
        if not result.success:
            self._session.set_error(result.error_message)
        return result

    # ==================================================================
    # Logout
    # ==================================================================

    def logout(self, navigate_to_login: bool = True) -> None:
        """Clear the local session and, optionally, go to the login page.

        The server is notified in the background with the token that was
        live at call time; that notification can never fail the logout.
        """
        token = self._session.stored_token() or self._session.access_token
        user = self._session.current_user

        if token:
            self._notify_logout(token)

        self._session.clear()

        self._logger.info(
            "User logged out: %s",
            user.email if user else "unknown",
            extra={
                "event": "LOGOUT",
                "email": user.email if user else None,
                "user_id": user.id if user else None,
            },
        )

        if navigate_to_login:
            self._router.navigate(self._login_path)

    def _notify_logout(self, token: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.debug("No running event loop; skipping server-side logout.")
            return
        task = loop.create_task(self._post_logout(token))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _post_logout(self, token: str) -> None:
        try:
            await self._api.post(
                "/auth/logout",
                json={},
                headers={"Authorization": f"Bearer {token}"},
            )
        except Exception as exc:
            self._logger.debug("Server-side logout failed (ignored): %s", exc)

    async def wait_for_background_tasks(self) -> None:
        """Wait until every fire-and-forget notification has finished."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    # ==================================================================
    # Token refresh
    # ==================================================================

    async def refresh(self) -> AuthResult:
        """Exchange the stored refresh token for a new session.

        Without a stored refresh token the session is cleared and no
        request is sent.  Any failure clears the session (forces a new
        login).  On success the session stays in its current scope.
        """
        refresh_token = self._session.stored_refresh_token()
        if not refresh_token:
            self._logger.info(
                "No refresh token available; clearing session.",
                extra={"event": "REFRESH_FAILED"},
            )
            self._session.clear()
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.SESSION_EXPIRED,
                error_message=MISSING_REFRESH_TOKEN_MESSAGE,
            )

        epoch = self._session.epoch
        result = await self._authenticate(
            "/auth/refresh",
            {"refreshToken": refresh_token},
            remember=self._session.remember_me,
            event="REFRESH",
        )
        if not result.success and self._session.epoch == epoch:
            self._session.clear()
        return result

    async def refresh_session(self) -> AuthResult:
        """Scheduled-refresh entry point.

        Runs :meth:`refresh`; when it fails and no session survives, the
        user is logged out to the login page.  A session established while
        the refresh was in flight is left alone.
        """
        result = await self.refresh()
        if not result.success and not self._session.is_authenticated:
            self.logout(navigate_to_login=True)
        return result

    # ==================================================================
    # Password flows
    # ==================================================================

    async def request_password_reset(self, email: str) -> AuthResult:
        """Ask the backend to e-mail a reset link."""
        return await self._message_call(
            "/auth/password-reset-request",
            {"email": self.normalize_email(email)},
            event="PASSWORD_RESET_REQUEST",
        )

    async def reset_password(
        self, token: str, new_password: str, confirm_password: str
    ) -> AuthResult:
        """Set a new password using the reset *token*."""
        reset = PasswordReset(
            token=token, new_password=new_password, confirm_password=confirm_password
        )
        if reset.new_password != reset.confirm_password:
            return self._mismatch()
        return await self._message_call(
            "/auth/password-reset",
            reset.model_dump(include={"token", "new_password"}, by_alias=True),
            event="PASSWORD_RESET",
        )

    async def change_password(
        self, current_password: str, new_password: str, confirm_password: str
    ) -> AuthResult:
        """Change the signed-in user's password."""
        change = ChangePassword(
            current_password=current_password,
            new_password=new_password,
            confirm_password=confirm_password,
        )
        if change.new_password != change.confirm_password:
            return self._mismatch()
        return await self._message_call(
            "/auth/change-password",
            change.model_dump(include={"current_password", "new_password"}, by_alias=True),
            event="PASSWORD_CHANGE",
        )

    # ==================================================================
    # Private helpers
    # ==================================================================

    async def _authenticate(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        remember: bool,
        event: str,
    ) -> AuthResult:
        """POST *payload* and adopt the returned session.

        A response that arrives after the session was cleared (logout
        while the call was in flight) is discarded.
        """
        epoch = self._session.epoch
        self._session.set_loading(True)
        self._session.set_error(None)
        try:
            body = await self._api.post(path, json=payload)
            response = AuthResponse.model_validate(body)
        except ApiError as exc:
            return self._classify_error(exc, event)
        except ValidationError as exc:
            self._logger.warning(
                "Malformed %s response: %s", path, exc,
                extra={"event": f"{event}_FAILED", "error_code": "malformed_response"},
            )
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.UNKNOWN_ERROR,
                error_message=AUTH_FAILED_MESSAGE,
            )
        finally:
            self._session.set_loading(False)

        if self._session.epoch != epoch:
            self._logger.info(
                "Discarding %s response: session was cleared while in flight.",
                path,
                extra={"event": f"{event}_SUPERSEDED", "email": response.user.email},
            )
            return AuthResult(
                success=False,
                error_code=AuthErrorCode.SESSION_EXPIRED,
                error_message=SESSION_SUPERSEDED_MESSAGE,
            )

        self._session.apply_success(
            response.user,
            response.token,
            refresh_token=response.refresh_token,
            expires_in_ms=response.expires_in,
            remember=remember,
        )
        self._logger.info(
            "%s succeeded for %s.",
            event.capitalize(),
            response.user.email,
            extra={
                "event": event,
                "email": response.user.email,
                "user_id": response.user.id,
                "remember": remember,
            },
        )
        return AuthResult(success=True, user=response.user)

    async def _message_call(self, path: str, payload: dict[str, Any], event: str) -> AuthResult:
        """POST *payload* to an endpoint that answers ``{message}``."""
        try:
            body = await self._api.post(path, json=payload)
        except ApiError as exc:
            return self._classify_error(exc, event)

        message: Optional[str] = body.get("message") if isinstance(body, dict) else None
        self._logger.info("%s accepted.", path, extra={"event": event})
        return AuthResult(success=True, message=message)

    def _classify_error(self, exc: ApiError, event: str) -> AuthResult:
        """Map an ``ApiError`` to a structured ``AuthResult``.

        The server's own message is passed through verbatim when present.
        """
        if exc.status_code is None:
            error_code = AuthErrorCode.NETWORK_ERROR
        else:
            error_code = HTTP_STATUS_ERROR_MAP.get(exc.status_code, AuthErrorCode.UNKNOWN_ERROR)

        self._logger.warning(
            "%s failed: %s", event, exc.message,
            extra={
                "event": f"{event}_FAILED",
                "error_code": error_code.value,
                "status_code": exc.status_code,
            },
        )
        return AuthResult(
            success=False,
            error_code=error_code,
            error_message=exc.server_message or AUTH_FAILED_MESSAGE,
        )

    @staticmethod
    def _mismatch() -> AuthResult:
        return AuthResult(
            success=False,
            error_code=AuthErrorCode.VALIDATION_ERROR,
            error_message=PASSWORD_MISMATCH_MESSAGE,
        )

"""
Authentication & Session State.

Provides an injectable ``SessionManager``: the single source of truth for
the signed-in user, the bearer token, the loading / error flags and the
persisted copies of the session in the two storage scopes.

Usage::

    from portal.auth import SessionManager
    from portal.storage import MemoryStorage

    session = SessionManager(
        durable=durable_storage,
        ephemeral=MemoryStorage(),
        logger=StructuredLogger(name="portal.session"),
    )
    session.hydrate()
    unsubscribe = session.subscribe(lambda state: print(state.is_authenticated))
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from portal.config import StorageKeys
from portal.jwt_auth import is_token_valid
from portal.logger import StructuredLogger
from portal.models.auth_models import AuthResult, AuthState, StoredAuthRecord
from portal.models.user import User
from portal.storage import KeyValueStorage

RefreshHandler = Callable[[], Awaitable[AuthResult]]
SessionListener = Callable[[AuthState], None]


class SessionManager:
    """Injectable holder for the current session.

    Pass a single ``SessionManager`` through the composition root so every
    component (auth service, request guard, router, UI) shares the same
    state.  No other component writes to the storage scopes.

    Parameters
    ----------
    durable:
        Storage scope that survives restarts (used when "remember me" is
        set).
    ephemeral:
        Storage scope that lives as long as the process.
    logger:
        Structured logger.
    keys:
        Storage key names.
    refresh_lead_ms:
        How long before expiry the refresh timer fires.
    """

    def __init__(
        self,
        durable: KeyValueStorage,
        ephemeral: KeyValueStorage,
        logger: StructuredLogger,
        keys: Optional[StorageKeys] = None,
        refresh_lead_ms: int = 5 * 60 * 1000,
    ) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._durable: KeyValueStorage = durable
        self._ephemeral: KeyValueStorage = ephemeral
        self._logger: StructuredLogger = logger
        self._keys: StorageKeys = keys or StorageKeys()
        self._refresh_lead_ms: int = refresh_lead_ms

        self._current_user: Optional[User] = None
        self._access_token: Optional[str] = None
        self._is_loading: bool = False
        self._last_error: Optional[str] = None
        self._epoch: int = 0

        self._listeners: list[SessionListener] = []
        self._refresh_handler: Optional[RefreshHandler] = None
        self._refresh_handle: Optional[asyncio.TimerHandle] = None
        self._background_tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def hydrate(self) -> bool:
        """Restore a persisted session if its token has not expired.

        Anything persisted that cannot be adopted (expired or undecodable
        token, malformed user payload, half-written record) is purged
        from both scopes.  Never raises.

        Returns
        -------
        bool
            ``True`` when a live session was restored.
        """
        record = self._read_record()
        if record is not None and is_token_valid(record.token):
            with self._lock:
                self._current_user = record.user
                self._access_token = record.token
                self._last_error = None
            self._logger.info(
                "Session restored for %s.",
                record.user.email,
                extra={"event": "SESSION_RESTORED", "remember": record.remember},
            )
            self._publish()
            return True

        if self._has_persisted_state():
            self._logger.info(
                "Persisted session discarded (expired or malformed).",
                extra={"event": "SESSION_DISCARDED"},
            )
            self._purge_storage()
        return False

    def apply_success(
        self,
        user: User,
        token: str,
        refresh_token: Optional[str] = None,
        expires_in_ms: Optional[int] = None,
        remember: bool = False,
    ) -> None:
        """Adopt a freshly issued session.

        Storage is written *before* the new state is published, so any
        subscriber that sees ``is_authenticated`` can also read the token
        back from storage.  A pending refresh timer is always replaced.
        """
        self._persist(user, token, refresh_token, remember)
        with self._lock:
            self._current_user = user
            self._access_token = token
            self._last_error = None
        self._schedule_refresh(expires_in_ms)
        self._publish()

    def clear(self) -> None:
        """End the session: drop live state, purge both scopes, stop the timer.

        Bumps :attr:`epoch` so in-flight operations started under the old
        session can detect that they were superseded.
        """
        with self._lock:
            self._current_user = None
            self._access_token = None
            self._last_error = None
            self._epoch += 1
        self._cancel_refresh()
        self._purge_storage()
        self._publish()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def current_user(self) -> Optional[User]:
        """The signed-in user, or ``None``."""
        with self._lock:
            return self._current_user

    def get_current_user(self) -> User:
        """Return the authenticated user.

        Raises:
            RuntimeError: If no user is currently authenticated.
        """
        with self._lock:
            if self._current_user is None:
                raise RuntimeError(
                    "No user is currently authenticated. Login required."
                )
            return self._current_user

    @property
    def access_token(self) -> Optional[str]:
        """Return the live bearer token, or ``None`` if not set."""
        with self._lock:
            return self._access_token

    @property
    def is_authenticated(self) -> bool:
        """``True`` when both a token and a user are present."""
        with self._lock:
            return self._access_token is not None and self._current_user is not None

    @property
    def is_loading(self) -> bool:
        with self._lock:
            return self._is_loading

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error

    @property
    def epoch(self) -> int:
        """Counter bumped on every :meth:`clear`."""
        with self._lock:
            return self._epoch

    @property
    def remember_me(self) -> bool:
        """``True`` when the live copy sits in the durable scope."""
        return self._durable.get_item(self._keys.remember_me) == "true"

    @property
    def refresh_scheduled(self) -> bool:
        return self._refresh_handle is not None

    def stored_token(self) -> Optional[str]:
        return self._stored_value(self._keys.token)

    def stored_refresh_token(self) -> Optional[str]:
        return self._stored_value(self._keys.refresh_token)

    def snapshot(self) -> AuthState:
        """Return the current state as an immutable-by-convention model."""
        with self._lock:
            return AuthState(
                user=self._current_user,
                token=self._access_token,
                is_authenticated=(
                    self._access_token is not None and self._current_user is not None
                ),
                is_loading=self._is_loading,
                error=self._last_error,
            )

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------

    def set_loading(self, is_loading: bool) -> None:
        with self._lock:
            self._is_loading = is_loading
        self._publish()

    def set_error(self, message: Optional[str]) -> None:
        with self._lock:
            self._last_error = message
        self._publish()

    # ------------------------------------------------------------------
    # Publish / subscribe
    # ------------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener*; it is called at once with the current state.

        Returns
        -------
        Callable[[], None]
            Function that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)
        self._notify(listener, self.snapshot())

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def set_refresh_handler(self, handler: Optional[RefreshHandler]) -> None:
        """Install the coroutine run when the refresh timer fires."""
        self._refresh_handler = handler

    # ------------------------------------------------------------------
    # Refresh timer
    # ------------------------------------------------------------------

    def _schedule_refresh(self, expires_in_ms: Optional[int]) -> None:
        self._cancel_refresh()
        if not expires_in_ms:
            return

        delay_ms = expires_in_ms - self._refresh_lead_ms
        if delay_ms <= 0:
            self._logger.debug(
                "Token lifetime %d ms is within the refresh lead; no refresh scheduled.",
                expires_in_ms,
            )
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.warning("No running event loop; token refresh not scheduled.")
            return

        self._refresh_handle = loop.call_later(delay_ms / 1000, self._on_refresh_due)
        self._logger.debug("Token refresh scheduled in %d ms.", delay_ms)

    def _cancel_refresh(self) -> None:
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None

    def _on_refresh_due(self) -> None:
        self._refresh_handle = None
        if not self.is_authenticated or self._refresh_handler is None:
            return
        task = asyncio.ensure_future(self._run_refresh())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _run_refresh(self) -> None:
        handler = self._refresh_handler
        if handler is None:
            return
        try:
            result = await handler()
        except Exception as exc:
            self._logger.warning(
                "Scheduled token refresh raised: %s. Clearing session.", exc,
                extra={"event": "SESSION_EXPIRED"},
            )
            self.clear()
            return

        if not result.success and self.is_authenticated:
            self._logger.warning(
                "Scheduled token refresh failed: %s. Clearing session.",
                result.error_message,
                extra={"event": "SESSION_EXPIRED"},
            )
            self.clear()

    # ------------------------------------------------------------------
    # Storage helpers
    # ------------------------------------------------------------------

    def _persist(
        self,
        user: User,
        token: str,
        refresh_token: Optional[str],
        remember: bool,
    ) -> None:
        """Write the record to one scope and clear the other."""
        target, other = (
            (self._durable, self._ephemeral) if remember else (self._ephemeral, self._durable)
        )
        try:
            self._write_record(target, user, token, refresh_token, remember)
        except (OSError, sqlite3.Error) as exc:
            if target is self._ephemeral:
                raise
            self._logger.warning(
                "Durable storage unavailable (%s); keeping session for this run only.",
                exc,
            )
            target, other = self._ephemeral, self._durable
            self._write_record(target, user, token, refresh_token, False)
        self._remove_keys(other)

    def _write_record(
        self,
        scope: KeyValueStorage,
        user: User,
        token: str,
        refresh_token: Optional[str],
        remember: bool,
    ) -> None:
        scope.set_item(self._keys.token, token)
        scope.set_item(self._keys.user, user.model_dump_json(by_alias=True))
        if refresh_token:
            scope.set_item(self._keys.refresh_token, refresh_token)
        else:
            scope.remove_item(self._keys.refresh_token)
        if remember:
            scope.set_item(self._keys.remember_me, "true")

    def _read_record(self) -> Optional[StoredAuthRecord]:
        """Read token + user from the durable scope, then the session scope."""
        token = self._stored_value(self._keys.token)
        user_json = self._stored_value(self._keys.user)
        if not token or not user_json:
            return None
        try:
            user = User.model_validate_json(user_json)
        except (ValidationError, ValueError) as exc:
            self._logger.warning("Persisted user payload is malformed: %s", exc)
            return None
        return StoredAuthRecord(
            token=token,
            user=user,
            refresh_token=self._stored_value(self._keys.refresh_token),
            remember=self.remember_me,
        )

    def _stored_value(self, key: str) -> Optional[str]:
        return self._durable.get_item(key) or self._ephemeral.get_item(key)

    def _has_persisted_state(self) -> bool:
        return any(
            scope.get_item(key) is not None
            for scope in (self._durable, self._ephemeral)
            for key in (self._keys.token, self._keys.user, self._keys.refresh_token)
        )

    def _remove_keys(self, scope: KeyValueStorage) -> None:
        for key in (
            self._keys.token,
            self._keys.user,
            self._keys.refresh_token,
            self._keys.remember_me,
        ):
            scope.remove_item(key)

    def _purge_storage(self) -> None:
        self._remove_keys(self._durable)
        self._remove_keys(self._ephemeral)

    # ------------------------------------------------------------------
    # Notification helpers
    # ------------------------------------------------------------------

    def _publish(self) -> None:
        state = self.snapshot()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            self._notify(listener, state)

    def _notify(self, listener: SessionListener, state: AuthState) -> None:
        try:
            listener(state)
        except Exception:
            self._logger.error("Session listener raised.", exc_info=True)

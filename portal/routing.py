"""
Route Access Control.

Guards are plain callables ``(session, request) -> GuardDecision`` that
the :class:`Router` evaluates, in order, every time a navigation is
requested.  The first guard that does not allow the navigation decides
the redirect.

Usage::

    router = Router(session, build_portal_routes(), logger)
    router.navigate("/productos")   # -> "/login?returnUrl=%2Fproductos"
"""

from __future__ import annotations

import threading
from typing import Callable, Iterable, Optional, Sequence, Union
from urllib.parse import parse_qsl, urlencode, urlsplit

from pydantic import BaseModel, ConfigDict, Field

from portal.auth import SessionManager
from portal.logger import StructuredLogger
from portal.models.enums import UserRole


class NavigationError(RuntimeError):
    """Raised when a URL matches no route or redirects never settle."""


# ---------------------------------------------------------------------------
# Guard contracts
# ---------------------------------------------------------------------------

class GuardDecision(BaseModel):
    """Outcome of one guard: allow, or redirect to ``redirect_path``."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    redirect_path: Optional[str] = None
    query: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(allowed=True)

    @classmethod
    def redirect(
        cls, path: str, query: Optional[dict[str, str]] = None
    ) -> "GuardDecision":
        return cls(allowed=False, redirect_path=path, query=query or {})

    @property
    def redirect_url(self) -> Optional[str]:
        if self.redirect_path is None:
            return None
        if not self.query:
            return self.redirect_path
        return f"{self.redirect_path}?{urlencode(self.query)}"


class NavigationRequest(BaseModel):
    """What a guard sees about the navigation being attempted."""

    model_config = ConfigDict(frozen=True)

    url: str
    path: str
    params: dict[str, str] = Field(default_factory=dict)
    query: dict[str, str] = Field(default_factory=dict)
    login_path: str = "/login"
    landing_path: str = "/dashboard"


Guard = Callable[[SessionManager, NavigationRequest], GuardDecision]
NavigationListener = Callable[[str], None]


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

def auth_required(session: SessionManager, request: NavigationRequest) -> GuardDecision:
    """Allow signed-in users; send everyone else to login with ``returnUrl``."""
    if session.is_authenticated:
        return GuardDecision.allow()
    return GuardDecision.redirect(request.login_path, {"returnUrl": request.url})


def guest_only(session: SessionManager, request: NavigationRequest) -> GuardDecision:
    """Allow anonymous users; send signed-in users to the landing page."""
    if not session.is_authenticated:
        return GuardDecision.allow()
    return GuardDecision.redirect(request.landing_path)


def role_required(allowed_roles: Iterable[Union[UserRole, str]]) -> Guard:
    """Build a guard that admits only users whose role is in *allowed_roles*.

    A user without a role is denied whenever *allowed_roles* is non-empty.
    """
    allowed = frozenset(UserRole(role) for role in allowed_roles)

    def _guard(session: SessionManager, request: NavigationRequest) -> GuardDecision:
        user = session.current_user
        if user is None:
            return GuardDecision.redirect(request.login_path)
        if user.role is not None and user.role in allowed:
            return GuardDecision.allow()
        return GuardDecision.redirect(request.landing_path)

    _guard.__name__ = f"role_required({', '.join(sorted(allowed))})"
    return _guard


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

class Route:
    """One entry of the route table.

    Parameters
    ----------
    path:
        Pattern without the leading slash.  ``:name`` segments capture a
        parameter; ``"**"`` matches any URL; ``""`` matches only the root.
    guards:
        Evaluated in order on every navigation to this route.
    redirect_to:
        Absolute path to go to instead (guards are not evaluated).
    """

    def __init__(
        self,
        path: str,
        guards: Sequence[Guard] = (),
        redirect_to: Optional[str] = None,
        title: Optional[str] = None,
    ) -> None:
        self.path: str = path.strip("/")
        self.guards: tuple[Guard, ...] = tuple(guards)
        self.redirect_to: Optional[str] = redirect_to
        self.title: Optional[str] = title
        self._segments: list[str] = self.path.split("/") if self.path else []

    def match(self, path: str) -> Optional[dict[str, str]]:
        """Return the captured parameters if *path* matches, else ``None``."""
        if self.path == "**":
            return {}
        segments = path.strip("/").split("/") if path.strip("/") else []
        if len(segments) != len(self._segments):
            return None

        params: dict[str, str] = {}
        for pattern, segment in zip(self._segments, segments):
            if pattern.startswith(":"):
                params[pattern[1:]] = segment
            elif pattern != segment:
                return None
        return params

    def __repr__(self) -> str:
        return f"Route(path={self.path!r}, redirect_to={self.redirect_to!r})"


def build_portal_routes() -> list[Route]:
    """Return the portal's route table."""
    return [
        Route("", redirect_to="/dashboard"),
        Route("login", guards=[guest_only], title="Iniciar sesión"),
        Route("register", guards=[guest_only], title="Registro"),
        Route("dashboard", guards=[auth_required], title="Dashboard"),
        Route("productos", guards=[auth_required], title="Mis Productos"),
        Route("productos/:id", guards=[auth_required], title="Detalle de Producto"),
        Route(
            "contratacion",
            guards=[auth_required, role_required([UserRole.ADMIN, UserRole.USER])],
            title="Contratar Producto",
        ),
        Route("**", redirect_to="/dashboard"),
    ]


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class Router:
    """Resolves URLs against the route table and enforces guards.

    Parameters
    ----------
    session:
        The shared ``SessionManager`` handed to every guard.
    routes:
        Route table; the first matching route wins.
    logger:
        Structured logger.
    login_path, landing_path:
        Destinations used by the guards.
    max_redirects:
        Upper bound on chained redirects for one navigation.
    """

    def __init__(
        self,
        session: SessionManager,
        routes: Sequence[Route],
        logger: StructuredLogger,
        login_path: str = "/login",
        landing_path: str = "/dashboard",
        max_redirects: int = 10,
    ) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._session: SessionManager = session
        self._routes: tuple[Route, ...] = tuple(routes)
        self._logger: StructuredLogger = logger
        self._login_path: str = login_path
        self._landing_path: str = landing_path
        self._max_redirects: int = max_redirects
        self._current_url: Optional[str] = None
        self._listeners: list[NavigationListener] = []

    @property
    def current_url(self) -> Optional[str]:
        with self._lock:
            return self._current_url

    @property
    def current_path(self) -> Optional[str]:
        url = self.current_url
        return urlsplit(url).path if url is not None else None

    def subscribe(self, listener: NavigationListener) -> Callable[[], None]:
        """Call *listener* with the final URL after every navigation."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def resolve(self, path: str) -> tuple[Route, dict[str, str]]:
        """Return the first route matching *path* and its parameters.

        Raises:
            NavigationError: If no route matches.
        """
        for route in self._routes:
            params = route.match(path)
            if params is not None:
                return route, params
        raise NavigationError(f"No route matches '{path}'.")

    def navigate(self, url: str) -> str:
        """Navigate to *url*, following redirects and guard decisions.

        Returns
        -------
        str
            The URL actually reached.

        Raises
        ------
        NavigationError
            If no route matches or redirects exceed ``max_redirects``.
        """
        target = _normalise_url(url)
        for _ in range(self._max_redirects + 1):
            split = urlsplit(target)
            route, params = self.resolve(split.path)

            if route.redirect_to is not None:
                target = _normalise_url(route.redirect_to)
                continue

            request = NavigationRequest(
                url=target,
                path=split.path,
                params=params,
                query=dict(parse_qsl(split.query)),
                login_path=self._login_path,
                landing_path=self._landing_path,
            )
            decision = self._evaluate(route, request)
            if decision.allowed:
                self._commit(target)
                return target

            self._logger.info(
                "Navigation to %s redirected to %s.",
                target,
                decision.redirect_url,
                extra={"event": "ROUTE_REDIRECT"},
            )
            target = _normalise_url(decision.redirect_url or self._landing_path)

        raise NavigationError(
            f"Navigation to '{url}' exceeded {self._max_redirects} redirects."
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _evaluate(self, route: Route, request: NavigationRequest) -> GuardDecision:
        for guard in route.guards:
            decision = guard(self._session, request)
            if not decision.allowed:
                return decision
        return GuardDecision.allow()

    def _commit(self, url: str) -> None:
        with self._lock:
            self._current_url = url
            listeners = list(self._listeners)
        self._logger.debug("Navigated to %s.", url)
        for listener in listeners:
            try:
                listener(url)
            except Exception:
                self._logger.error("Navigation listener raised.", exc_info=True)


def _normalise_url(url: str) -> str:
    return url if url.startswith("/") else f"/{url}"

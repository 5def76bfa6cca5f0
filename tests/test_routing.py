"""Tests for route guards and the router."""

import pytest

from portal.models.user import User
from portal.routing import (
    GuardDecision,
    NavigationError,
    NavigationRequest,
    Route,
    Router,
    auth_required,
    guest_only,
    role_required,
)
from tests.factories import make_token, user_payload


def _request(url: str = "/productos") -> NavigationRequest:
    return NavigationRequest(url=url, path=url.split("?")[0])


def _sign_in(session, **user_overrides) -> None:
    session.apply_success(User.model_validate(user_payload(**user_overrides)), make_token())


class TestGuardDecision:
    """Tests for redirect URL rendering."""

    def test_allow_has_no_redirect(self):
        assert GuardDecision.allow().redirect_url is None

    def test_redirect_without_query(self):
        assert GuardDecision.redirect("/dashboard").redirect_url == "/dashboard"

    def test_redirect_query_is_encoded(self):
        decision = GuardDecision.redirect("/login", {"returnUrl": "/productos/p1?x=1"})

        assert decision.redirect_url == "/login?returnUrl=%2Fproductos%2Fp1%3Fx%3D1"


class TestGuards:
    """Tests for the individual guard functions."""

    def test_auth_required_allows_signed_in_user(self, session):
        _sign_in(session)

        assert auth_required(session, _request()).allowed

    def test_auth_required_redirects_with_return_url(self, session):
        decision = auth_required(session, _request("/productos/p7"))

        assert not decision.allowed
        assert decision.redirect_path == "/login"
        assert decision.query == {"returnUrl": "/productos/p7"}

    def test_guest_only_allows_anonymous(self, session):
        assert guest_only(session, _request("/login")).allowed

    def test_guest_only_sends_signed_in_user_to_landing(self, session):
        _sign_in(session)

        decision = guest_only(session, _request("/login"))

        assert decision.redirect_path == "/dashboard"

    def test_role_required_admits_listed_role(self, session):
        _sign_in(session, rol="ADMIN")

        assert role_required(["ADMIN"])(session, _request()).allowed

    def test_role_required_rejects_other_role(self, session):
        _sign_in(session, rol="GUEST")

        decision = role_required(["ADMIN", "USER"])(session, _request())

        assert decision.redirect_path == "/dashboard"

    def test_role_required_rejects_user_without_role(self, session):
        _sign_in(session, rol=None)

        assert not role_required(["USER"])(session, _request()).allowed

    def test_role_required_sends_anonymous_to_login(self, session):
        decision = role_required(["USER"])(session, _request())

        assert decision.redirect_path == "/login"


class TestRouteMatching:
    """Tests for path patterns."""

    def test_parameter_capture(self):
        assert Route("productos/:id").match("/productos/p9") == {"id": "p9"}

    def test_segment_count_must_match(self):
        assert Route("productos/:id").match("/productos") is None

    def test_empty_pattern_matches_root_only(self):
        assert Route("").match("/") == {}
        assert Route("").match("/dashboard") is None

    def test_wildcard_matches_anything(self):
        assert Route("**").match("/a/b/c") == {}


class TestRouter:
    """Tests for navigation through the portal route table."""

    def test_protected_route_redirects_anonymous_to_login(self, router):
        assert router.navigate("/productos") == "/login?returnUrl=%2Fproductos"
        assert router.current_path == "/login"

    def test_return_url_keeps_query_string(self, router):
        landed = router.navigate("/productos/p1?tab=movimientos")

        assert landed == "/login?returnUrl=%2Fproductos%2Fp1%3Ftab%3Dmovimientos"

    def test_root_redirects_to_dashboard(self, router, session):
        _sign_in(session)

        assert router.navigate("/") == "/dashboard"

    def test_unknown_url_falls_back_to_dashboard(self, router, session):
        _sign_in(session)

        assert router.navigate("/nope/at/all") == "/dashboard"

    def test_signed_in_user_cannot_see_login(self, router, session):
        _sign_in(session)

        assert router.navigate("/login") == "/dashboard"

    def test_contracting_requires_a_portal_role(self, router, session):
        _sign_in(session, rol="GUEST")

        assert router.navigate("/contratacion") == "/dashboard"

    def test_contracting_allowed_for_user(self, router, session):
        _sign_in(session, rol="USER")

        assert router.navigate("contratacion") == "/contratacion"

    def test_listeners_receive_final_url(self, router):
        seen = []
        unsubscribe = router.subscribe(seen.append)

        router.navigate("/dashboard")
        unsubscribe()
        router.navigate("/register")

        assert seen == ["/login?returnUrl=%2Fdashboard"]
        assert router.current_url == "/register"

    def test_no_matching_route_raises(self, session, logger):
        router = Router(session=session, routes=[Route("login")], logger=logger)

        with pytest.raises(NavigationError):
            router.navigate("/dashboard")

    def test_redirect_loop_raises(self, session, logger):
        routes = [Route("a", redirect_to="/b"), Route("b", redirect_to="/a")]
        router = Router(session=session, routes=routes, logger=logger, max_redirects=5)

        with pytest.raises(NavigationError):
            router.navigate("/a")

    def test_guard_loop_raises(self, session, logger):
        routes = [Route("login", guards=[auth_required])]
        router = Router(session=session, routes=routes, logger=logger, max_redirects=3)

        with pytest.raises(NavigationError):
            router.navigate("/login")

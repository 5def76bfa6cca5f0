"""Tests for the session store."""

import asyncio
import sqlite3

import pytest

from portal.auth import SessionManager
from portal.config import StorageKeys
from portal.models.auth_models import AuthResult
from portal.storage import MemoryStorage
from tests.factories import make_token

KEYS = StorageKeys()


class TestHydrate:
    """Tests for restoring a persisted session at start-up."""

    def test_restores_valid_session_from_durable_scope(self, session, durable, user):
        token = make_token()
        durable.set_item(KEYS.token, token)
        durable.set_item(KEYS.user, user.model_dump_json(by_alias=True))

        assert session.hydrate() is True
        assert session.is_authenticated
        assert session.access_token == token
        assert session.current_user == user

    def test_restores_valid_session_from_session_scope(self, session, ephemeral, user):
        ephemeral.set_item(KEYS.token, make_token())
        ephemeral.set_item(KEYS.user, user.model_dump_json(by_alias=True))

        assert session.hydrate() is True
        assert session.current_user.email == user.email

    @pytest.mark.parametrize("claims", [{"userId": 42}, {"rol": "SUPERVISOR"}])
    def test_unusual_identity_claims_do_not_discard_live_session(
        self, session, durable, user, claims
    ):
        durable.set_item(KEYS.token, make_token(**claims))
        durable.set_item(KEYS.user, user.model_dump_json(by_alias=True))

        assert session.hydrate() is True
        assert session.current_user == user

    def test_expired_token_purges_both_scopes(self, session, durable, ephemeral, user):
        for scope in (durable, ephemeral):
            scope.set_item(KEYS.token, make_token(exp_offset_s=-10))
            scope.set_item(KEYS.user, user.model_dump_json(by_alias=True))
            scope.set_item(KEYS.refresh_token, "r1")
        durable.set_item(KEYS.remember_me, "true")

        assert session.hydrate() is False
        assert not session.is_authenticated
        for scope in (durable, ephemeral):
            assert len(scope) == 0

    @pytest.mark.parametrize("token", ["garbage", "a.b", "a.b.c", "x.y.z.w"])
    def test_undecodable_token_discards_session(self, session, durable, user, token):
        durable.set_item(KEYS.token, token)
        durable.set_item(KEYS.user, user.model_dump_json(by_alias=True))

        assert session.hydrate() is False
        assert durable.get_item(KEYS.token) is None

    def test_malformed_user_payload_is_treated_as_absent(self, session, durable):
        durable.set_item(KEYS.token, make_token())
        durable.set_item(KEYS.user, "{not json")

        assert session.hydrate() is False
        assert not session.is_authenticated
        assert durable.get_item(KEYS.user) is None

    def test_nothing_persisted(self, session):
        assert session.hydrate() is False
        assert session.snapshot().is_authenticated is False


class TestApplySuccess:
    """Tests for adopting a new session."""

    def test_remember_persists_to_durable_and_clears_session_scope(
        self, session, durable, ephemeral, user
    ):
        ephemeral.set_item(KEYS.token, "stale")
        token = make_token()

        session.apply_success(user, token, refresh_token="r1", remember=True)

        assert durable.get_item(KEYS.token) == token
        assert durable.get_item(KEYS.refresh_token) == "r1"
        assert durable.get_item(KEYS.remember_me) == "true"
        assert ephemeral.get_item(KEYS.token) is None
        assert session.remember_me is True

    def test_without_remember_persists_to_session_scope(self, session, durable, ephemeral, user):
        durable.set_item(KEYS.token, "stale")
        durable.set_item(KEYS.remember_me, "true")
        token = make_token()

        session.apply_success(user, token)

        assert ephemeral.get_item(KEYS.token) == token
        assert ephemeral.get_item(KEYS.remember_me) is None
        assert durable.get_item(KEYS.token) is None
        assert session.remember_me is False

    def test_sets_live_state(self, session, user):
        token = make_token()
        session.set_error("old error")

        session.apply_success(user, token)

        assert session.is_authenticated
        assert session.access_token == token
        assert session.get_current_user() == user
        assert session.last_error is None

    def test_storage_is_written_before_subscribers_see_authenticated(self, session, user):
        token = make_token()
        seen = []

        def listener(state):
            if state.is_authenticated:
                seen.append(session.stored_token())

        session.subscribe(listener)
        session.apply_success(user, token)

        assert seen == [token]

    @pytest.mark.parametrize(
        "error", [OSError("disk full"), sqlite3.OperationalError("database is locked")]
    )
    def test_durable_failure_falls_back_to_session_scope(self, ephemeral, logger, user, error):
        class BrokenStorage(MemoryStorage):
            """Accepts the token, then fails on the next write."""

            def set_item(self, key, value):
                if key != KEYS.token:
                    raise error
                super().set_item(key, value)

        durable = BrokenStorage()
        session = SessionManager(durable=durable, ephemeral=ephemeral, logger=logger)
        token = make_token()

        session.apply_success(user, token, remember=True)

        assert session.is_authenticated
        assert ephemeral.get_item(KEYS.token) == token
        assert ephemeral.get_item(KEYS.remember_me) is None
        assert durable.get_item(KEYS.token) is None

    def test_user_round_trips_through_storage(self, durable, ephemeral, logger, user):
        first = SessionManager(durable=durable, ephemeral=ephemeral, logger=logger)
        first.apply_success(user, make_token(), remember=True)

        second = SessionManager(durable=durable, ephemeral=MemoryStorage(), logger=logger)

        assert second.hydrate() is True
        assert second.current_user == user


class TestClear:
    """Tests for ending a session."""

    def test_clears_state_and_both_scopes(self, session, durable, ephemeral, user):
        session.apply_success(user, make_token(), refresh_token="r1", remember=True)
        ephemeral.set_item(KEYS.token, "other")

        session.clear()

        assert not session.is_authenticated
        assert session.current_user is None
        assert session.access_token is None
        assert len(durable) == 0
        assert len(ephemeral) == 0

    def test_bumps_epoch(self, session):
        before = session.epoch

        session.clear()

        assert session.epoch == before + 1

    def test_get_current_user_raises_when_logged_out(self, session):
        with pytest.raises(RuntimeError):
            session.get_current_user()


class TestSubscribe:
    """Tests for the publish / subscribe primitive."""

    def test_new_subscriber_receives_current_state(self, session, user):
        session.apply_success(user, make_token())
        received = []

        session.subscribe(received.append)

        assert len(received) == 1
        assert received[0].is_authenticated

    def test_receives_every_transition(self, session, user):
        received = []
        session.subscribe(received.append)

        session.apply_success(user, make_token())
        session.clear()

        assert [s.is_authenticated for s in received] == [False, True, False]

    def test_unsubscribe_stops_updates(self, session, user):
        received = []
        unsubscribe = session.subscribe(received.append)

        unsubscribe()
        session.apply_success(user, make_token())

        assert len(received) == 1

    def test_failing_listener_does_not_break_others(self, session, user):
        received = []

        def broken(state):
            raise ValueError("boom")

        session.subscribe(broken)
        session.subscribe(received.append)
        session.apply_success(user, make_token())

        assert received[-1].is_authenticated

    def test_loading_and_error_flags_are_published(self, session):
        received = []
        session.subscribe(received.append)

        session.set_loading(True)
        session.set_error("Credenciales inválidas")

        assert received[-1].is_loading is True
        assert received[-1].error == "Credenciales inválidas"


class TestRefreshTimer:
    """Tests for the scheduled token refresh."""

    @pytest.fixture
    def fast_session(self, durable, ephemeral, logger) -> SessionManager:
        return SessionManager(
            durable=durable, ephemeral=ephemeral, logger=logger, refresh_lead_ms=1_000
        )

    async def test_fires_refresh_handler_before_expiry(self, fast_session, user):
        calls = []

        async def handler():
            calls.append(True)
            return AuthResult(success=True)

        fast_session.set_refresh_handler(handler)
        fast_session.apply_success(user, make_token(), expires_in_ms=1_020)
        assert fast_session.refresh_scheduled

        await asyncio.sleep(0.1)

        assert calls == [True]
        assert fast_session.is_authenticated

    async def test_no_timer_when_lifetime_within_lead(self, fast_session, user):
        fast_session.apply_success(user, make_token(), expires_in_ms=900)

        assert not fast_session.refresh_scheduled

    async def test_no_timer_without_expiry(self, fast_session, user):
        fast_session.apply_success(user, make_token())

        assert not fast_session.refresh_scheduled

    async def test_new_session_replaces_pending_timer(self, fast_session, user):
        calls = []

        async def handler():
            calls.append(True)
            return AuthResult(success=True)

        fast_session.set_refresh_handler(handler)
        fast_session.apply_success(user, make_token(), expires_in_ms=1_020)
        fast_session.apply_success(user, make_token(), expires_in_ms=1_040)

        await asyncio.sleep(0.15)

        assert calls == [True]

    async def test_clear_cancels_timer(self, fast_session, user):
        calls = []

        async def handler():
            calls.append(True)
            return AuthResult(success=True)

        fast_session.set_refresh_handler(handler)
        fast_session.apply_success(user, make_token(), expires_in_ms=1_020)
        fast_session.clear()

        await asyncio.sleep(0.1)

        assert calls == []
        assert not fast_session.refresh_scheduled

    async def test_failed_refresh_clears_session(self, fast_session, user):
        async def handler():
            return AuthResult(success=False, error_message="expired")

        fast_session.set_refresh_handler(handler)
        fast_session.apply_success(user, make_token(), expires_in_ms=1_020)

        await asyncio.sleep(0.1)

        assert not fast_session.is_authenticated

    async def test_raising_refresh_clears_session(self, fast_session, user):
        async def handler():
            raise RuntimeError("network down")

        fast_session.set_refresh_handler(handler)
        fast_session.apply_success(user, make_token(), expires_in_ms=1_020)

        await asyncio.sleep(0.1)

        assert not fast_session.is_authenticated

    def test_without_running_loop_no_timer_is_armed(self, fast_session, user):
        fast_session.apply_success(user, make_token(), expires_in_ms=60_000)

        assert fast_session.is_authenticated
        assert not fast_session.refresh_scheduled

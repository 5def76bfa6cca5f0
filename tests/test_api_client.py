"""Tests for the REST client, request guard and error reporter."""

import asyncio
import json

import httpx
import pytest

from portal.api_client import ApiError
from tests.factories import make_token


@pytest.fixture
def signed_in(session, user):
    token = make_token()
    session.apply_success(user, token)
    return token


class TestCredentialAttachment:
    """Tests for the bearer header added to outgoing requests."""

    async def test_attaches_bearer_to_protected_call(self, api, backend, signed_in):
        backend.add("GET", "/productos", json=[])

        await api.get("/productos")

        request = backend.calls("GET", "/productos")[0]
        assert request.headers["Authorization"] == f"Bearer {signed_in}"

    @pytest.mark.parametrize(
        "path",
        ["/auth/login", "/auth/register", "/auth/password-reset-request", "/auth/password-reset"],
    )
    async def test_public_auth_endpoints_carry_no_credential(self, api, backend, signed_in, path):
        backend.add("POST", path, json={"message": "ok"})

        await api.post(path, json={})

        assert "Authorization" not in backend.calls("POST", path)[0].headers

    async def test_no_credential_without_session(self, api, backend):
        backend.add("GET", "/productos", json=[])

        await api.get("/productos")

        assert "Authorization" not in backend.calls("GET", "/productos")[0].headers

    async def test_explicit_authorization_header_is_kept(self, api, backend, signed_in):
        backend.add("POST", "/auth/logout", json={})

        await api.post("/auth/logout", json={}, headers={"Authorization": "Bearer old"})

        assert backend.calls("POST", "/auth/logout")[0].headers["Authorization"] == "Bearer old"


class TestUnauthorized:
    """Tests for the forced logout on 401."""

    async def test_401_clears_session_and_redirects_to_login(
        self, api, backend, session, router, signed_in
    ):
        backend.add("GET", "/productos", status=401, json={"message": "Token expirado"})

        with pytest.raises(ApiError) as excinfo:
            await api.get("/productos")

        assert excinfo.value.status_code == 401
        assert not session.is_authenticated
        assert session.stored_token() is None
        assert router.current_path == "/login"

    async def test_concurrent_401s_clear_and_redirect_once(
        self, api, backend, session, router, signed_in
    ):
        arrived = []
        release = asyncio.Event()

        async def reject(request: httpx.Request) -> httpx.Response:
            arrived.append(request)
            if len(arrived) == 2:
                release.set()
            await release.wait()
            return httpx.Response(401, json={"message": "Token expirado"})

        backend.add("GET", "/productos", handler=reject)
        backend.add("GET", "/movimientos", handler=reject)
        navigations = []
        router.subscribe(navigations.append)
        epoch = session.epoch

        results = await asyncio.gather(
            api.get("/productos"), api.get("/movimientos"), return_exceptions=True
        )

        assert all(isinstance(r, ApiError) and r.status_code == 401 for r in results)
        assert session.epoch == epoch + 1
        assert navigations == ["/login"]

    async def test_anonymous_401_on_protected_endpoint_redirects_to_login(
        self, api, backend, session, router
    ):
        backend.add("GET", "/productos", status=401, json={"message": "No autorizado"})
        epoch = session.epoch

        with pytest.raises(ApiError) as excinfo:
            await api.get("/productos")

        assert excinfo.value.status_code == 401
        assert "Authorization" not in backend.calls("GET", "/productos")[0].headers
        assert session.epoch == epoch + 1
        assert router.current_path == "/login"

    async def test_401_from_public_auth_endpoint_leaves_session_alone(
        self, api, backend, session, router, signed_in
    ):
        backend.add("POST", "/auth/login", status=401, json={"message": "Credenciales inválidas"})

        with pytest.raises(ApiError):
            await api.post("/auth/login", json={})

        assert session.is_authenticated
        assert router.current_url is None

    async def test_401_for_explicit_header_is_ignored(self, api, backend, session, signed_in):
        backend.add("POST", "/auth/logout", status=401)

        with pytest.raises(ApiError):
            await api.post("/auth/logout", json={}, headers={"Authorization": "Bearer old"})

        assert session.is_authenticated

    async def test_other_errors_do_not_touch_session(self, api, backend, session, signed_in):
        backend.add("GET", "/productos", status=403, json={"message": "Prohibido"})

        with pytest.raises(ApiError):
            await api.get("/productos")

        assert session.is_authenticated


class TestErrorNormalisation:
    """Tests for the messages carried by ``ApiError``."""

    async def test_server_message_is_used(self, api, backend):
        backend.add("GET", "/productos", status=500, json={"message": "Fallo interno"})

        with pytest.raises(ApiError) as excinfo:
            await api.get("/productos")

        assert excinfo.value.message == "Error 500: Fallo interno"
        assert excinfo.value.server_message == "Fallo interno"
        assert excinfo.value.payload == {"message": "Fallo interno"}

    async def test_reason_phrase_when_body_is_empty(self, api, backend):
        backend.add("GET", "/productos", status=503)

        with pytest.raises(ApiError) as excinfo:
            await api.get("/productos")

        assert excinfo.value.message == "Error 503: Service Unavailable"
        assert excinfo.value.server_message is None

    async def test_plain_text_body(self, api, backend):
        backend.add(
            "GET", "/productos",
            handler=lambda request: httpx.Response(502, text="upstream down"),
        )

        with pytest.raises(ApiError) as excinfo:
            await api.get("/productos")

        assert excinfo.value.message == "Error 502: upstream down"

    async def test_unknown_route_is_404(self, api):
        with pytest.raises(ApiError) as excinfo:
            await api.get("/no-such-thing")

        assert excinfo.value.status_code == 404
        assert excinfo.value.message == "Error 404: Not found"

    async def test_transport_failure_has_no_status(self, api, backend):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        backend.add("GET", "/productos", handler=refuse)

        with pytest.raises(ApiError) as excinfo:
            await api.get("/productos")

        assert excinfo.value.status_code is None
        assert excinfo.value.is_client_side
        assert excinfo.value.message == "Error: connection refused"
        assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


class TestResponseBodies:
    """Tests for successful body decoding."""

    async def test_json_body(self, api, backend):
        backend.add("GET", "/productos", json=[{"id": "p1"}])

        assert await api.get("/productos") == [{"id": "p1"}]

    async def test_empty_body_is_none(self, api, backend):
        backend.add("DELETE", "/productos/p1", status=204)

        assert await api.delete("/productos/p1") is None

    async def test_query_params_are_sent(self, api, backend):
        backend.add("GET", "/movimientos", json=[])

        await api.get("/movimientos", params={"productoId": "p1"})

        assert backend.calls("GET", "/movimientos")[0].url.params["productoId"] == "p1"

    async def test_put_sends_json(self, api, backend):
        backend.add("PUT", "/productos/p1", json={"id": "p1"})

        await api.put("/productos/p1", json={"nombre": "Nueva"})

        assert json.loads(backend.calls("PUT", "/productos/p1")[0].read()) == {"nombre": "Nueva"}

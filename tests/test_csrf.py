from datetime import datetime, timedelta, timezone

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import API, DEFAULT_PASSWORD, bearer
from quakewatch.core.csrf import CSRF_HEADER, CsrfGuard
from quakewatch.db.base import Base
from quakewatch.main import create_app

CSRF_SECRET = "csrf-secret-for-guard-tests-0123456789"

REGISTER_BODY = {
    "email": "a@x.com",
    "password": DEFAULT_PASSWORD,
    "firstName": "Ada",
    "lastName": "Lovelace",
}


@pytest.fixture
def guard() -> CsrfGuard:
    return CsrfGuard(CSRF_SECRET)


# ============================================================================
# GUARD TESTS
# ============================================================================


def test_issued_token_verifies(guard: CsrfGuard):
    assert guard.verify(guard.issue()) is True


def test_missing_token_fails(guard: CsrfGuard):
    assert guard.verify(None) is False
    assert guard.verify("") is False


def test_tokens_are_unique(guard: CsrfGuard):
    assert guard.issue() != guard.issue()


def test_bound_token_only_verifies_for_its_user(guard: CsrfGuard):
    token = guard.issue("12")
    assert guard.verify(token, "12") is True
    assert guard.verify(token, "13") is False
    assert guard.verify(token) is False


def test_anonymous_token_verifies_for_any_caller(guard: CsrfGuard):
    assert guard.verify(guard.issue(), "12") is True


def test_expired_token_fails():
    guard = CsrfGuard(CSRF_SECRET, ttl=timedelta(seconds=-5))
    assert guard.verify(guard.issue()) is False


def test_token_signed_elsewhere_fails(guard: CsrfGuard):
    other = CsrfGuard("another-csrf-secret-0123456789abcdef")
    assert guard.verify(other.issue()) is False


def test_non_csrf_token_fails(guard: CsrfGuard):
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"nonce": "abc", "type": "access", "iat": now, "exp": now + timedelta(minutes=5)},
        CSRF_SECRET,
        algorithm="HS256",
    )
    assert guard.verify(token) is False


# ============================================================================
# API TESTS
# ============================================================================


@pytest.mark.asyncio
async def test_every_response_carries_a_token(anonymous_client, app):
    response = await anonymous_client.get("/health")
    assert response.status_code == 200
    assert app.state.csrf.verify(response.headers[CSRF_HEADER]) is True


@pytest.mark.asyncio
async def test_state_change_without_token_is_rejected(anonymous_client):
    response = await anonymous_client.post(f"{API}/auth/register", json=REGISTER_BODY)
    assert response.status_code == 403
    assert response.json()["code"] == "CSRF_VALIDATION_FAILED"
    assert response.json()["detail"] == "CSRF token is missing"
    # Rejected responses still hand out a fresh token.
    assert CSRF_HEADER in response.headers


@pytest.mark.asyncio
async def test_state_change_with_bad_token_is_rejected(anonymous_client):
    response = await anonymous_client.post(
        f"{API}/auth/register", json=REGISTER_BODY, headers={CSRF_HEADER: "forged"}
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid CSRF token"


@pytest.mark.asyncio
async def test_token_from_response_header_is_accepted(anonymous_client):
    first = await anonymous_client.get("/health")
    token = first.headers[CSRF_HEADER]

    response = await anonymous_client.post(
        f"{API}/auth/register", json=REGISTER_BODY, headers={CSRF_HEADER: token}
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_token_endpoint(anonymous_client, app):
    response = await anonymous_client.get(f"{API}/auth/csrf-token")
    assert response.status_code == 200
    assert app.state.csrf.verify(response.json()["csrfToken"]) is True


@pytest.mark.asyncio
async def test_token_in_body_field_is_accepted(anonymous_client, app):
    body = {**REGISTER_BODY, "_csrf": app.state.csrf.issue()}
    response = await anonymous_client.post(f"{API}/auth/register", json=body)
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_token_in_query_is_accepted(anonymous_client, app):
    response = await anonymous_client.post(
        f"{API}/auth/register",
        json=REGISTER_BODY,
        params={"_csrf": app.state.csrf.issue()},
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_safe_methods_need_no_token(anonymous_client, user_token: str):
    response = await anonymous_client.get(f"{API}/auth/profile", headers=bearer(user_token))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_bearer_requests_are_exempt_by_default(anonymous_client, user_token: str):
    response = await anonymous_client.post(f"{API}/auth/logout", headers=bearer(user_token))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_authenticated_responses_carry_bound_token(
    anonymous_client, app, regular_user: dict, user_token: str
):
    response = await anonymous_client.get(f"{API}/auth/profile", headers=bearer(user_token))
    token = response.headers[CSRF_HEADER]
    assert app.state.csrf.verify(token, regular_user["id"]) is True
    assert app.state.csrf.verify(token, "someone-else") is False


# ============================================================================
# STRICT MODE (NO BEARER EXEMPTION)
# ============================================================================


@pytest_asyncio.fixture
async def strict_app(test_settings, outbox):
    app = create_app(
        test_settings.model_copy(update={"csrf_exempt_bearer": False}),
        send_reset_email=outbox,
    )
    async with app.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield app
    await app.state.engine.dispose()


@pytest_asyncio.fixture
async def strict_client(strict_app):
    transport = ASGITransport(app=strict_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _login(strict_app, client: AsyncClient) -> tuple[str, str]:
    csrf = strict_app.state.csrf.issue()
    registered = await client.post(
        f"{API}/auth/register", json=REGISTER_BODY, headers={CSRF_HEADER: csrf}
    )
    assert registered.status_code == 201
    data = registered.json()
    return data["user"]["id"], data["accessToken"]


@pytest.mark.asyncio
async def test_strict_mode_requires_token_for_bearer_requests(strict_app, strict_client):
    _, access_token = await _login(strict_app, strict_client)

    response = await strict_client.post(f"{API}/auth/logout", headers=bearer(access_token))
    assert response.status_code == 403
    assert response.json()["code"] == "CSRF_VALIDATION_FAILED"


@pytest.mark.asyncio
async def test_strict_mode_accepts_token_bound_to_caller(strict_app, strict_client):
    user_id, access_token = await _login(strict_app, strict_client)
    token = strict_app.state.csrf.issue(user_id)

    response = await strict_client.post(
        f"{API}/auth/logout", headers={**bearer(access_token), CSRF_HEADER: token}
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_strict_mode_rejects_token_bound_to_someone_else(strict_app, strict_client):
    user_id, access_token = await _login(strict_app, strict_client)
    token = strict_app.state.csrf.issue(user_id + "0")

    response = await strict_client.post(
        f"{API}/auth/logout", headers={**bearer(access_token), CSRF_HEADER: token}
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid CSRF token"


@pytest.mark.asyncio
async def test_internal_errors_still_carry_a_token(app, regular_user: dict, user_token: str):
    async def explode():
        raise RuntimeError("boom")

    app.add_api_route("/explode", explode)
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        response = await ac.get("/explode", headers=bearer(user_token))

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error", "code": "INTERNAL_ERROR"}
    assert app.state.csrf.verify(response.headers[CSRF_HEADER], regular_user["id"]) is True

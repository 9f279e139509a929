from datetime import timedelta

from fastapi import BackgroundTasks

from dpm_api.api.v1.auth import forgot_password
from dpm_api.schemas.auth import ForgotPasswordIn
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD, CLINIC_ID


async def _login(client, email=ADMIN_EMAIL, password=ADMIN_PASSWORD):
    return await client.post("/auth/login", json={"email": email, "password": password})


async def _bearer(client):
    r = await _login(client)
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['tokens']['access_token']}"}


async def test_health(client):
    r = await client.get("/health")
    assert r.json() == {"status": "ok"}


async def test_demo_admin_login_returns_tokens(client, admin):
    r = await client.post(
        "/auth/login",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD, "remember_me": True},
        headers={"User-Agent": "pytest-browser"},
    )

    assert r.status_code == 200
    body = r.json()
    assert "requires_2fa" not in body
    assert body["user"]["email"] == ADMIN_EMAIL
    assert body["user"]["clinic_id"] == CLINIC_ID
    assert "password_hash" not in body["user"]
    assert body["tokens"]["token_type"] == "bearer"


async def test_wrong_password_is_unauthorized(client, admin):
    r = await _login(client, password="Wrong@123")

    assert r.status_code == 401
    assert r.json()["code"] == "InvalidCredentials"


async def test_sixth_attempt_with_correct_password_is_locked(client, admin):
    for _ in range(5):
        assert (await _login(client, password="Wrong@123")).status_code == 401

    r = await _login(client)

    assert r.status_code == 401
    assert r.json()["code"] == "AccountLocked"
    assert r.json()["minutes_remaining"] > 0


async def test_forgot_password_response_does_not_reveal_account(client, admin, store):
    known = await client.post("/auth/forgot-password", json={"email": ADMIN_EMAIL})
    unknown = await client.post("/auth/forgot-password", json={"email": "unknown@nowhere.test"})

    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()
    assert len(store.password_resets) == 1


async def test_reset_password_flow(client, admin, notifier):
    await client.post("/auth/forgot-password", json={"email": ADMIN_EMAIL})
    token = notifier.sent[-1][1]

    weak = await client.post("/auth/reset-password", json={"token": token, "password": "weak"})
    assert weak.status_code == 422

    r = await client.post("/auth/reset-password", json={"token": token, "password": "Fresh@Pass9"})
    assert r.status_code == 200

    again = await client.post("/auth/reset-password", json={"token": token, "password": "Fresh@Pass9"})
    assert again.status_code == 400
    assert again.json()["code"] == "ResetTokenUsed"


async def test_me_requires_bearer(client, admin):
    assert (await client.get("/auth/me")).status_code in (401, 403)

    r = await client.get("/auth/me", headers=await _bearer(client))
    assert r.status_code == 200
    assert r.json()["id"] == admin.id


async def test_expired_access_token_is_rejected(client, admin, clock):
    headers = await _bearer(client)
    clock.advance(minutes=16)

    r = await client.get("/auth/me", headers=headers)
    assert r.status_code == 401
    assert r.json()["code"] == "TokenExpired"


async def test_refresh_endpoint_rotates(client, admin):
    tokens = (await _login(client)).json()["tokens"]

    r = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 200
    assert r.json()["refresh_token"] != tokens["refresh_token"]

    stale = await client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert stale.status_code == 401
    assert stale.json()["code"] == "TokenInvalid"


async def test_sessions_listing_and_revocation(client, admin):
    headers = await _bearer(client)

    r = await client.get("/auth/sessions", headers=headers)
    assert r.status_code == 200
    [session] = r.json()
    assert session["is_current"] is True

    missing = await client.delete("/auth/sessions/does-not-exist", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["code"] == "SessionNotFound"

    ok = await client.delete(f"/auth/sessions/{session['id']}", headers=headers)
    assert ok.status_code == 200
    assert (await client.get("/auth/sessions", headers=headers)).json() == []


async def test_logout_and_logout_all(client, admin, store):
    first = await _bearer(client)
    await _bearer(client)

    assert (await client.post("/auth/logout", headers=first)).status_code == 200
    assert len(await store.list_sessions(admin.id)) == 1

    assert (await client.post("/auth/logout-all", headers=first)).status_code == 200
    assert await store.list_sessions(admin.id) == []


async def test_two_factor_flow_over_http(client, admin, totp, clock):
    headers = await _bearer(client)

    setup = await client.post("/auth/2fa/enable", json={"password": ADMIN_PASSWORD}, headers=headers)
    assert setup.status_code == 200
    secret = setup.json()["secret"]

    bad_format = await client.post("/auth/2fa/confirm", json={"code": "12ab56"}, headers=headers)
    assert bad_format.status_code == 422

    confirm = await client.post("/auth/2fa/confirm", json={"code": totp(secret)}, headers=headers)
    assert confirm.status_code == 200

    login = await _login(client)
    assert login.status_code == 200
    assert login.json() == {
        "requires_2fa": True,
        "user_id": admin.id,
        "message": login.json()["message"],
    }

    clock.advance(seconds=30)
    verify = await client.post("/auth/2fa/verify", json={"user_id": admin.id, "code": totp(secret)})
    assert verify.status_code == 200
    assert verify.json()["access_token"]

    again = await client.post("/auth/2fa/verify", json={"user_id": admin.id, "code": totp(secret)})
    assert again.status_code == 401
    assert again.json()["code"] == "TwoFactorSessionExpired"


async def test_two_factor_setup_expired_is_bad_request(client, admin, clock, totp):
    headers = await _bearer(client)
    secret = (await client.post("/auth/2fa/enable", json={"password": ADMIN_PASSWORD}, headers=headers)).json()["secret"]

    clock.advance(minutes=10, seconds=1)
    # el access token sigue vigente con 15 min
    r = await client.post("/auth/2fa/confirm", json={"code": totp(secret)}, headers=headers)
    assert r.status_code == 400
    assert r.json()["code"] == "TwoFactorSetupExpired"


async def test_change_password_revokes_sessions(client, admin, store):
    headers = await _bearer(client)

    r = await client.post(
        "/auth/change-password",
        json={"current_password": ADMIN_PASSWORD, "new_password": "Brand@New1"},
        headers=headers,
    )
    assert r.status_code == 200
    assert await store.list_sessions(admin.id) == []


async def test_register_requires_admin(client, admin, dentist):
    payload = {
        "clinic_id": CLINIC_ID,
        "email": "reception@demo.dpm.local",
        "password": "Reception@123",
        "name": "Reception User",
        "role": "RECEPTIONIST",
    }
    dentist_headers = await _bearer_for(client, "dentist@demo.dpm.local", "Dentist@123")
    assert (await client.post("/auth/register", json=payload, headers=dentist_headers)).status_code == 403

    admin_headers = await _bearer(client)
    created = await client.post("/auth/register", json=payload, headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["role"] == "RECEPTIONIST"

    dup = await client.post("/auth/register", json=payload, headers=admin_headers)
    assert dup.status_code == 409
    assert dup.json()["code"] == "EmailAlreadyRegistered"


async def _bearer_for(client, email, password):
    r = await _login(client, email=email, password=password)
    return {"Authorization": f"Bearer {r.json()['tokens']['access_token']}"}


async def test_session_expiry_is_seven_days(client, admin, store, clock):
    await _login(client)
    [session] = await store.list_sessions(admin.id)
    assert session.expires_at - clock.now() == timedelta(days=7)


async def test_forgot_password_route_schedules_delivery_in_background(auth, admin, notifier):
    known_tasks, unknown_tasks = BackgroundTasks(), BackgroundTasks()

    await forgot_password(ForgotPasswordIn(email=ADMIN_EMAIL), known_tasks, auth)
    await forgot_password(ForgotPasswordIn(email="unknown@nowhere.test"), unknown_tasks, auth)

    assert notifier.sent == []
    assert len(known_tasks.tasks) == 1
    assert unknown_tasks.tasks == []

    await known_tasks()
    assert [email for email, _ in notifier.sent] == [ADMIN_EMAIL]

from eth_account import Account
from eth_account.messages import encode_defunct

from certmanager.core.config import settings
from tests.conftest import PASSWORD

AUTH = "/api/v1/auth"


def _register(client, **overrides):
    payload = {
        "username": "new_user",
        "email": "new.user@example.com",
        "password": "Sup3rSecret!",
        "first_name": "New",
        "last_name": "User",
    }
    payload.update(overrides)
    return client.post(f"{AUTH}/register", json=payload)


def _login(client, email, password=PASSWORD):
    return client.post(f"{AUTH}/login", json={"email": email, "password": password})


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def _sign(account, message):
    signed = Account.sign_message(encode_defunct(text=message), private_key=account.key)
    return "0x" + bytes(signed.signature).hex()


def test_register_then_login(client):
    resp = _register(client, email="New.User@Example.com")
    assert resp.status_code == 201
    data = resp.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["email"] == "new.user@example.com"
    assert data["user"]["role"] == "creator"
    assert data["user"]["permissions"] == ["create_certificates"]

    resp = _login(client, "new.user@example.com", "Sup3rSecret!")
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    me = client.get(f"{AUTH}/me", headers=_bearer(token)).json()
    assert me["username"] == "new_user"
    assert me["last_login"] is not None


def test_register_rejects_admin_role_and_duplicates(client):
    resp = _register(client, role="admin")
    assert resp.status_code == 400

    assert _register(client).status_code == 201
    resp = _register(client, username="another_one")
    assert resp.status_code == 409
    resp = _register(client, email="other@example.com")
    assert resp.status_code == 409


def test_register_validates_payload(client):
    assert _register(client, password="short").status_code == 422
    assert _register(client, username="no spaces").status_code == 422
    assert _register(client, wallet_address="0x123").status_code == 422


def test_login_failures(client, make_user):
    user = make_user("verifier")
    make_user("creator", username="sleepy", is_active=False)

    resp = _login(client, user.email, "wrong-password")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid email or password"

    assert _login(client, "nobody@example.com").status_code == 401

    resp = _login(client, "sleepy@example.com")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Account is deactivated"


def test_login_is_rate_limited(client, make_user):
    user = make_user("creator")
    for _ in range(settings.AUTH_RATE_LIMIT_ATTEMPTS):
        assert _login(client, user.email, "wrong-password").status_code == 401

    resp = _login(client, user.email)
    assert resp.status_code == 429
    body = resp.json()
    assert body["code"] == "RATE_LIMITED"
    assert body["details"]["retry_after_seconds"] > 0


def test_me_requires_valid_bearer(client):
    assert client.get(f"{AUTH}/me").status_code == 401
    assert client.get(f"{AUTH}/me", headers={"Authorization": "Token abc"}).status_code == 401
    assert client.get(f"{AUTH}/me", headers=_bearer("garbage")).status_code == 401


def test_refresh_rotation(client, make_user):
    user = make_user("issuer")
    first = _login(client, user.email).json()

    resp = client.post(f"{AUTH}/refresh", json={"token": first["refresh_token"]})
    assert resp.status_code == 200
    second = resp.json()
    assert second["refresh_token"] != first["refresh_token"]
    assert second["user"]["id"] == user.id

    # o refresh antigo não pode ser reutilizado
    resp = client.post(f"{AUTH}/refresh", json={"token": first["refresh_token"]})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Refresh token revoked"

    # access token não serve como refresh
    resp = client.post(f"{AUTH}/refresh", json={"token": second["access_token"]})
    assert resp.status_code == 401


def test_logout_revokes_refresh_token(client, make_user):
    user = make_user("creator")
    tokens = _login(client, user.email).json()

    resp = client.post(f"{AUTH}/logout", json={"token": tokens["refresh_token"]})
    assert resp.status_code == 200
    assert resp.json()["message"] == "Logged out"

    assert client.post(f"{AUTH}/refresh", json={"token": tokens["refresh_token"]}).status_code == 401


def test_update_me(client, users):
    headers = users.creator.headers

    resp = client.patch(f"{AUTH}/update-me", json={"password": "NewPassword1!"}, headers=headers)
    assert resp.status_code == 400
    resp = client.patch(f"{AUTH}/update-me", json={"role": "admin"}, headers=headers)
    assert resp.status_code == 400

    resp = client.patch(f"{AUTH}/update-me", json={"email": users.verifier.email}, headers=headers)
    assert resp.status_code == 409

    resp = client.patch(
        f"{AUTH}/update-me",
        json={"first_name": "Carla", "organization": "University of Technology"},
        headers=headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["first_name"] == "Carla"
    assert data["organization"] == "University of Technology"
    assert data["role"] == "creator"


def test_update_password(client, users):
    tokens = _login(client, users.creator.email).json()
    headers = users.creator.headers

    resp = client.patch(
        f"{AUTH}/update-password",
        json={"password_current": "wrong", "password": "NewPassword1!", "password_confirm": "NewPassword1!"},
        headers=headers,
    )
    assert resp.status_code == 401

    resp = client.patch(
        f"{AUTH}/update-password",
        json={"password_current": PASSWORD, "password": "NewPassword1!", "password_confirm": "Different1!"},
        headers=headers,
    )
    assert resp.status_code == 400

    resp = client.patch(
        f"{AUTH}/update-password",
        json={"password_current": PASSWORD, "password": "NewPassword1!", "password_confirm": "NewPassword1!"},
        headers=headers,
    )
    assert resp.status_code == 200
    fresh = resp.json()
    assert client.get(f"{AUTH}/me", headers=_bearer(fresh["access_token"])).status_code == 200

    # refresh tokens anteriores foram revogados
    assert client.post(f"{AUTH}/refresh", json={"token": tokens["refresh_token"]}).status_code == 401
    assert _login(client, users.creator.email).status_code == 401
    assert _login(client, users.creator.email, "NewPassword1!").status_code == 200


def test_forgot_and_reset_password(client, make_user, monkeypatch):
    user = make_user("verifier")
    monkeypatch.setattr(settings, "ENVIRONMENT", "development")

    assert client.post(f"{AUTH}/forgot-password", json={"email": "ghost@example.com"}).status_code == 404

    resp = client.post(f"{AUTH}/forgot-password", json={"email": user.email})
    assert resp.status_code == 200
    token = resp.json()["reset_token"]
    assert token

    body = {"password": "Brand-new-pass1", "password_confirm": "Brand-new-pass1"}
    assert client.patch(f"{AUTH}/reset-password/not-a-token", json=body).status_code == 400

    resp = client.patch(f"{AUTH}/reset-password/{token}", json=body)
    assert resp.status_code == 200
    assert resp.json()["user"]["id"] == user.id

    # token de uso único
    assert client.patch(f"{AUTH}/reset-password/{token}", json=body).status_code == 400
    assert _login(client, user.email, "Brand-new-pass1").status_code == 200


def test_forgot_password_hides_token_outside_development(client, make_user):
    user = make_user("creator")
    resp = client.post(f"{AUTH}/forgot-password", json={"email": user.email})
    assert resp.status_code == 200
    assert resp.json()["reset_token"] is None


def test_wallet_login(client):
    account = Account.create()
    other = Account.create()
    assert _register(client, wallet_address=account.address).status_code == 201

    message = "Sign in to Certificate Manager: nonce 123"
    resp = client.post(
        f"{AUTH}/wallet-login",
        json={"wallet_address": account.address, "message": message, "signature": _sign(account, message)},
    )
    assert resp.status_code == 200
    assert resp.json()["user"]["wallet_address"] == account.address.lower()

    resp = client.post(
        f"{AUTH}/wallet-login",
        json={"wallet_address": account.address, "message": message, "signature": _sign(other, message)},
    )
    assert resp.status_code == 401

    resp = client.post(
        f"{AUTH}/wallet-login",
        json={"wallet_address": account.address, "message": message, "signature": "not-a-signature"},
    )
    assert resp.status_code == 400

    resp = client.post(
        f"{AUTH}/wallet-login",
        json={"wallet_address": other.address, "message": message, "signature": _sign(other, message)},
    )
    assert resp.status_code == 404


def test_admin_user_management(client, users):
    admin = users.admin.headers

    assert client.get(f"{AUTH}/users", headers=users.verifier.headers).status_code == 403

    resp = client.get(f"{AUTH}/users", params={"role": "creator"}, headers=admin)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 2
    assert {u["role"] for u in data["items"]} == {"creator"}

    resp = client.patch(f"{AUTH}/users/{users.verifier.id}/role", json={"role": "issuer"}, headers=admin)
    assert resp.status_code == 200
    assert resp.json()["role"] == "issuer"
    assert "issue_certificates" in resp.json()["permissions"]

    assert client.patch(f"{AUTH}/users/{users.admin.id}/role", json={"role": "creator"}, headers=admin).status_code == 400
    assert client.patch(f"{AUTH}/users/9999/role", json={"role": "creator"}, headers=admin).status_code == 404

    resp = client.patch(f"{AUTH}/users/{users.creator.id}/status", json={"is_active": False}, headers=admin)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False
    assert client.get(f"{AUTH}/me", headers=users.creator.headers).status_code == 401

    resp = client.patch(f"{AUTH}/users/{users.admin.id}/status", json={"is_active": False}, headers=admin)
    assert resp.status_code == 400

    resp = client.get(f"{AUTH}/users", params={"is_active": False}, headers=admin)
    assert [u["id"] for u in resp.json()["items"]] == [users.creator.id]


def test_init_db_seeds_admin_once(client, db, monkeypatch):
    from sqlalchemy import func, select

    from certmanager.db.init_db import init_db
    from certmanager.models.user import User, UserRole

    monkeypatch.setattr(settings, "ADMIN_EMAIL", "Root@Example.com")
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "RootPass123!")
    init_db(db)
    init_db(db)

    admins = db.scalars(select(User).where(User.role == UserRole.admin)).all()
    assert [a.email for a in admins] == ["root@example.com"]
    assert db.scalar(select(func.count()).select_from(User)) == 1
    assert _login(client, "root@example.com", "RootPass123!").status_code == 200


def test_token_issued_before_password_change_is_rejected(client, users, session_factory):
    from datetime import datetime, timedelta, timezone

    from certmanager.models.user import User

    headers = users.creator.headers
    assert client.get(f"{AUTH}/me", headers=headers).status_code == 200

    with session_factory() as session:
        user = session.get(User, users.creator.id)
        user.password_changed_at = datetime.now(timezone.utc) + timedelta(seconds=5)
        session.commit()

    resp = client.get(f"{AUTH}/me", headers=headers)
    assert resp.status_code == 401
    assert "Password changed" in resp.json()["detail"]

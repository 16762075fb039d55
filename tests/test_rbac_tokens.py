import pytest

from certmanager.core import rbac
from certmanager.core.config import Settings
from certmanager.core.errors import RateLimitedError
from certmanager.core.rate_limit import AuthRateLimiter
from certmanager.core.tokens import create_access_token, create_refresh_token, decode_access, decode_refresh
from certmanager.models.user import UserRole


def test_role_permissions():
    assert rbac.permissions_for("creator") == {rbac.PERM_CREATE}
    assert rbac.has_permission(UserRole.verifier, rbac.PERM_VERIFY)
    assert rbac.has_permission("issuer", rbac.PERM_VIEW_ALL)
    assert not rbac.has_permission("creator", rbac.PERM_VIEW_ALL)
    assert not rbac.has_permission("verifier", rbac.PERM_ISSUE)
    assert rbac.permissions_for("unknown") == frozenset()


def test_admin_has_every_permission():
    everything = set().union(*rbac.ROLE_PERMISSIONS.values())
    assert rbac.permissions_for("admin") == everything
    assert rbac.is_admin(UserRole.admin)
    assert not rbac.is_admin("issuer")


def test_access_token_roundtrip():
    token = create_access_token(sub="42", role="verifier")
    payload = decode_access(token)
    assert payload["sub"] == "42"
    assert payload["role"] == "verifier"
    assert payload["type"] == "access"


def test_token_types_are_not_interchangeable():
    access = create_access_token(sub="1", role="creator")
    refresh = create_refresh_token(sub="1")
    assert decode_refresh(access) is None
    assert decode_access(refresh) is None
    assert decode_refresh(refresh)["sub"] == "1"


def test_expired_and_garbage_tokens_are_rejected():
    assert decode_access(create_access_token(sub="1", role="creator", expires_minutes=-1)) is None
    assert decode_access("not-a-jwt") is None


def test_rate_limiter_blocks_after_max_attempts():
    now = [1000.0]
    limiter = AuthRateLimiter(max_attempts=3, window_seconds=60, clock=lambda: now[0])
    for _ in range(3):
        limiter.hit("127.0.0.1:user@example.com")

    with pytest.raises(RateLimitedError) as exc:
        limiter.hit("127.0.0.1:user@example.com")
    assert exc.value.status_code == 429
    assert exc.value.details["retry_after_seconds"] == 61

    # outras chaves não são afetadas
    limiter.hit("127.0.0.1:other@example.com")


def test_rate_limiter_window_resets():
    now = [0.0]
    limiter = AuthRateLimiter(max_attempts=1, window_seconds=10, clock=lambda: now[0])
    limiter.hit("key")
    with pytest.raises(RateLimitedError):
        limiter.hit("key")

    now[0] = 11.0
    limiter.hit("key")


def test_rate_limiter_purges_expired_windows():
    now = [0.0]
    limiter = AuthRateLimiter(max_attempts=5, window_seconds=10, clock=lambda: now[0])
    limiter.hit("10.0.0.1:a@example.com")
    limiter.hit("10.0.0.2:b@example.com")
    assert len(limiter._hits) == 2

    now[0] = 30.0
    limiter.hit("10.0.0.3:c@example.com")
    assert list(limiter._hits) == ["10.0.0.3:c@example.com"]


def test_environment_defaults_to_production(monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    fresh = Settings()
    assert fresh.ENVIRONMENT == "production"
    assert fresh.is_development is False

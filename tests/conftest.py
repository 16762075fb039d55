"""
Fixtures compartilhadas: banco SQLite em memória, IPFS local em tmp_path,
blockchain mockada e usuários de cada papel com tokens prontos.
"""
import os
import tempfile
from types import SimpleNamespace
from unittest.mock import MagicMock

# Variáveis de ambiente antes de importar a aplicação
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="certmanager-tests-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("VALID_API_KEYS", "integration-key")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import certmanager.models  # noqa: E402,F401
from certmanager.api.deps import get_chain, get_db, get_ipfs  # noqa: E402
from certmanager.core.rate_limit import auth_rate_limiter  # noqa: E402
from certmanager.core.security_password import hash_password  # noqa: E402
from certmanager.core.tokens import create_access_token  # noqa: E402
from certmanager.db.base import Base  # noqa: E402
from certmanager.main import api  # noqa: E402
from certmanager.models.user import User, UserRole  # noqa: E402
from certmanager.services.ipfs import LocalIPFSStore  # noqa: E402

PASSWORD = "Password123!"
CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    auth_rate_limiter.reset()
    yield
    auth_rate_limiter.reset()


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def ipfs(tmp_path):
    return LocalIPFSStore(str(tmp_path / "ipfs"))


@pytest.fixture
def chain():
    mock = MagicMock(name="chain")
    mock.contract_address = CONTRACT_ADDRESS
    mock.network = "Ganache"
    return mock


@pytest.fixture
def client(session_factory, ipfs, chain):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    api.dependency_overrides[get_db] = _get_db
    api.dependency_overrides[get_ipfs] = lambda: ipfs
    api.dependency_overrides[get_chain] = lambda: chain
    with TestClient(api) as c:
        yield c
    api.dependency_overrides.clear()


def _headers(user: User) -> dict:
    token = create_access_token(sub=str(user.id), role=user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(session_factory):
    def _make(role: str = "creator", username: str | None = None, **fields) -> SimpleNamespace:
        username = username or f"{role}_user"
        with session_factory() as session:
            user = User(
                username=username,
                email=fields.pop("email", f"{username}@example.com"),
                hashed_password=hash_password(fields.pop("password", PASSWORD)),
                role=UserRole(role),
                is_active=fields.pop("is_active", True),
                **fields,
            )
            session.add(user)
            session.commit()
            session.refresh(user)
            return SimpleNamespace(id=user.id, email=user.email, username=user.username, role=role, headers=_headers(user))

    return _make


@pytest.fixture
def users(make_user):
    return SimpleNamespace(
        creator=make_user("creator"),
        other_creator=make_user("creator", username="other_creator"),
        verifier=make_user("verifier"),
        issuer=make_user("issuer"),
        admin=make_user("admin"),
    )


def certificate_payload(**overrides) -> dict:
    payload = {
        "title": "Blockchain Fundamentals",
        "type": "academic",
        "recipient": {"student_id": "STU001", "name": "John Doe", "email": "john.doe@example.com"},
        "institution": {"name": "University of Technology", "department": "Computer Science"},
        "course": {"subject": "Blockchain Fundamentals", "grade": "A", "credits": 3},
        "completion_date": "2024-01-15",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def create_certificate(client, users):
    def _create(headers=None, **overrides) -> dict:
        resp = client.post(
            "/api/v1/certificates", json=certificate_payload(**overrides), headers=headers or users.creator.headers
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _create


@pytest.fixture
def issued_certificate(client, users, create_certificate):
    cert = create_certificate()
    cid = cert["certificate_id"]
    assert client.post(f"/api/v1/certificates/{cid}/submit", headers=users.creator.headers).status_code == 200
    assert client.post(
        f"/api/v1/certificates/{cid}/verify", json={"approved": True}, headers=users.verifier.headers
    ).status_code == 200
    resp = client.post(f"/api/v1/certificates/{cid}/issue", json={}, headers=users.issuer.headers)
    assert resp.status_code == 200, resp.text
    return resp.json()

import os
import tempfile

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def _rsa_pem_pair():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


PRIVATE_PEM, PUBLIC_PEM = _rsa_pem_pair()

# Settings and the engine are built at import time, so configure before
# anything under memberbridge is imported.
os.environ.update({
    "ENVIRONMENT": "test",
    "DATABASE_BACKEND": "sqlite",
    "DATABASE_URL": "sqlite:///:memory:",
    "DB_INIT_MODE": "off",
    "REDIS_URL": "",
    "JWT_ALGORITHM": "RS256",
    "JWT_PRIVATE_KEY": PRIVATE_PEM,
    "JWT_PUBLIC_KEY": PUBLIC_PEM,
    "LOG_FILE": os.path.join(tempfile.gettempdir(), "memberbridge-tests.log"),
})

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from memberbridge.core.database import Base  # noqa: E402
from memberbridge.core.security import TokenSigner  # noqa: E402
from memberbridge.core.exceptions import UpstreamUnavailableError  # noqa: E402
from memberbridge.services.identity_gateway import IdentityUser  # noqa: E402


@pytest.fixture(scope="session")
def rsa_keys():
    return PRIVATE_PEM, PUBLIC_PEM


@pytest.fixture
def signer(rsa_keys):
    private_pem, public_pem = rsa_keys
    return TokenSigner(public_key=public_pem, private_key=private_pem, algorithm="RS256")


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class FakeIdentityGateway:
    """In-memory stand-in for WordPress: username -> (password, user, active membership)"""

    def __init__(self):
        self.accounts = {}
        self.authenticate_calls = 0
        # When set, every call fails the way a WordPress timeout does
        self.outage = None

    def add_account(self, user_id, username, password, email=None, display_name=None, active=True):
        user = IdentityUser(
            id=user_id,
            username=username,
            email=f"{username}@example.com" if email is None else email,
            display_name=display_name or username.title(),
        )
        self.accounts[username] = (password, user, active)
        return user

    def _check_outage(self):
        if self.outage:
            raise UpstreamUnavailableError("wordpress", self.outage)

    def authenticate(self, username, password):
        self.authenticate_calls += 1
        self._check_outage()
        account = self.accounts.get(username)
        if account is None or account[0] != password:
            return None
        return account[1]

    def has_active_membership(self, user_id):
        self._check_outage()
        for _, user, active in self.accounts.values():
            if user.id == user_id:
                return active
        return False

    def close(self):
        pass


@pytest.fixture
def gateway():
    return FakeIdentityGateway()


@pytest.fixture
def client(signer, gateway):
    """TestClient against the app's own in-memory database with fresh guards per test"""
    from fastapi.testclient import TestClient

    from memberbridge.api import deps
    from memberbridge.core import database
    from memberbridge.main import app
    from memberbridge.services.ephemeral_store import InMemoryKeyValueStore
    from memberbridge.services.login_guard import LoginGuard
    from memberbridge.services.rate_limiter import RateLimiter

    database.Base.metadata.create_all(bind=database.engine)
    store = InMemoryKeyValueStore()
    app.dependency_overrides[deps.get_signer] = lambda: signer
    app.dependency_overrides[deps.get_identity_gateway] = lambda: gateway
    app.dependency_overrides[deps.get_login_guard] = lambda: LoginGuard(store)
    app.dependency_overrides[deps.get_rate_limiter] = lambda: RateLimiter(store)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        database.Base.metadata.drop_all(bind=database.engine)

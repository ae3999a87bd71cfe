import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import storefront.models  # noqa: F401  registers the tables on Base
from storefront.config import Settings
from storefront.database import Base
from storefront.gateway import RazorpayGateway
from storefront.main import create_app

KEY_ID = "rzp_test_abc12345"
KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "whsec_test"
JWT_SECRET = "jwt-test-secret"

# Setup test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_storefront.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        razorpay_key_id=KEY_ID,
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        jwt_secret=JWT_SECRET,
        database_url=SQLALCHEMY_DATABASE_URL,
    )


@pytest.fixture
def gateway(mocker):
    return mocker.Mock(spec=RazorpayGateway)


@pytest.fixture
def make_client(gateway):
    clients = []

    def _make(settings):
        app = create_app(settings, gateway=gateway, session_factory=TestingSessionLocal)
        c = TestClient(app)
        c.__enter__()
        clients.append(c)
        return c

    yield _make
    for c in clients:
        c.__exit__(None, None, None)


@pytest.fixture
def client(make_client, settings):
    return make_client(settings)


def bearer(subject="user-1"):
    token = jwt.encode({"sub": subject}, JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return bearer()

"""
Shared fixtures for the MathBridge test suite

Key components:
1. A throwaway SQLite database per test (file-backed so several sessions can share it)
2. User / package / contract factories
3. A TestClient wired to the test database
4. Outgoing email captured instead of sent
"""

import os

# Configure before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SEPAY_WEBHOOK_API_KEY"] = "test-sepay-key"
os.environ["SEPAY_ORDER_REFERENCE_PREFIX"] = "MB"
os.environ["PAYOS_CHECKSUM_KEY"] = "test-checksum-key"
os.environ["PAYOS_CLIENT_ID"] = "test-client"
os.environ["PAYOS_API_KEY"] = "test-api-key"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

import itertools
from datetime import date, time
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from mathbridge.auth import create_access_token
from mathbridge.database import Base, build_engine, get_db
from mathbridge.main import app
from mathbridge.models import Contract, PaymentPackage, User

_sequence = itertools.count(1)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'mathbridge-test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def sent_emails():
    """Capture outgoing mail; every helper funnels through send_email"""
    with patch("mathbridge.email_service.send_email", new=AsyncMock(return_value={"id": "test"})) as mock:
        yield mock


@pytest.fixture
def make_user(db):
    def _make_user(role="parent", balance="0", status="active", full_name=None):
        n = next(_sequence)
        user = User(
            full_name=full_name or f"{role.title()} {n}",
            email=f"{role}{n}@example.com",
            phone_number=f"09000000{n:02d}",
            role=role,
            status=status,
            wallet_balance=Decimal(balance),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_package(db):
    def _make_package(price="2000000", session_count=8, max_reschedule=2, sessions_per_week=2):
        package = PaymentPackage(
            package_name=f"Grade 9 Math {next(_sequence)}",
            grade="9",
            price=Decimal(price),
            session_count=session_count,
            sessions_per_week=sessions_per_week,
            max_reschedule=max_reschedule,
        )
        db.add(package)
        db.commit()
        db.refresh(package)
        return package

    return _make_package


@pytest.fixture
def make_contract(db):
    def _make_contract(parent, tutor, package, status="unpaid", **overrides):
        fields = dict(
            parent_id=parent.id,
            child_name="Minh",
            package_id=package.id,
            main_tutor_id=tutor.id,
            days_of_week=0b0010010,  # Mon, Thu
            start_date=date(2024, 1, 1),
            end_date=date(2024, 1, 31),
            start_time=time(16, 0),
            end_time=time(17, 30),
            is_online=True,
            video_call_platform="meet",
            reschedule_count=0,
            status=status,
        )
        fields.update(overrides)
        contract = Contract(**fields)
        db.add(contract)
        db.commit()
        db.refresh(contract)
        return contract

    return _make_contract


@pytest.fixture
def parent(make_user):
    return make_user("parent")


@pytest.fixture
def tutor(make_user):
    return make_user("tutor")


@pytest.fixture
def staff(make_user):
    return make_user("staff")


@pytest.fixture
def package(make_package):
    return make_package()


@pytest.fixture
def auth_headers():
    def _auth_headers(user):
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

"""
Test configuration and fixtures for the clinic backend tests.
"""

import pytest
from datetime import datetime
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from main import create_app
from app.db.base import Base
from app.db.session import build_engine, build_session_factory, get_db
from app.db.audit_store import SqlAlchemyAuditStore
from app.db.models import AuditLog, User, UserRole
from app.core.security import create_access_token, hash_password
from app.services.audit import AuditService


# Use in-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = build_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = build_session_factory(engine)


def override_get_db() -> Generator[Session, None, None]:
    """Override database dependency for tests."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def app(db: Session):
    """Application wired to the test database."""
    application = create_app(session_factory=TestingSessionLocal)
    application.dependency_overrides[get_db] = override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client(app) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def audit_service(db: Session) -> AuditService:
    """Audit service over the test database."""
    return AuditService(SqlAlchemyAuditStore(TestingSessionLocal), export_limit=10000)


def audit_rows(db: Session, **filters) -> list[AuditLog]:
    """Audit rows in insertion-independent, newest-first order."""
    db.expire_all()
    query = db.query(AuditLog)
    for field, value in filters.items():
        query = query.filter(getattr(AuditLog, field) == value)
    return query.order_by(AuditLog.created_at.desc()).all()


def make_log(db: Session, **values) -> AuditLog:
    """Insert an audit row directly, with an explicit timestamp if given."""
    values.setdefault("action", "READ")
    values.setdefault("resource", "patients")
    values.setdefault("created_at", datetime.utcnow())
    log = AuditLog(**values)
    db.add(log)
    db.commit()
    db.refresh(log)
    return log


def _make_user(db: Session, email: str, password: str, first_name: str, role: UserRole) -> User:
    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name="Tester",
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_user(db: Session) -> User:
    """Create a test doctor."""
    return _make_user(db, "doctor@example.com", "doctorpass123", "Dana", UserRole.DOCTOR)


@pytest.fixture
def test_admin(db: Session) -> User:
    """Create a test admin user."""
    return _make_user(db, "admin@example.com", "adminpass123", "Ada", UserRole.ADMIN)


def token_for(user: User) -> str:
    return create_access_token(
        data={"sub": str(user.user_id), "email": user.email, "role": user.role.value}
    )


@pytest.fixture
def user_token(test_user):
    """Get an access token for the test doctor."""
    return token_for(test_user)


@pytest.fixture
def admin_token(test_admin):
    """Get an access token for the test admin."""
    return token_for(test_admin)


@pytest.fixture
def auth_headers(user_token: str) -> dict:
    """Get authorization headers for the test doctor."""
    return {"Authorization": f"Bearer {user_token}"}


@pytest.fixture
def admin_headers(admin_token: str) -> dict:
    """Get authorization headers for the test admin."""
    return {"Authorization": f"Bearer {admin_token}"}

"""
Test configuration and fixtures for task manager tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database and file store dependency overrides
- Authentication helpers (JWT token generation)
- Common fixtures for users and tasks
"""

import os
import sys
import logging
from datetime import timedelta
from typing import Callable, Dict, Generator

# Configure the app for tests before it is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["SEED_ADMIN_USER"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
from auth.security import hash_password, create_access_token
from storage import LocalFileStore, get_file_store
from time_utils import utc_now

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def file_store(tmp_path) -> LocalFileStore:
    """File store rooted in a per-test temporary directory."""
    return LocalFileStore(tmp_path / "uploads")


@pytest.fixture(scope="function")
def client(test_db: Session, file_store: LocalFileStore) -> Generator[TestClient, None, None]:
    """
    Create FastAPI test client with database and file store overrides.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_file_store] = lambda: file_store

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _create_user(db: Session, name: str, email: str, password: str, role: models.Role, is_active: bool = True) -> models.User:
    user = models.User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role.value} user {email} with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def admin_user(test_db: Session) -> models.User:
    return _create_user(test_db, "Admin User", "admin@example.com", "admin123", models.Role.admin)


@pytest.fixture(scope="function")
def regular_user(test_db: Session) -> models.User:
    return _create_user(test_db, "Regular User", "user@example.com", "user123", models.Role.user)


@pytest.fixture(scope="function")
def another_user(test_db: Session) -> models.User:
    """Create another user for testing multi-user scenarios."""
    return _create_user(test_db, "Another User", "another@example.com", "another123", models.Role.user)


@pytest.fixture(scope="function")
def inactive_user(test_db: Session) -> models.User:
    return _create_user(test_db, "Inactive User", "inactive@example.com", "inactive123", models.Role.user, is_active=False)


def create_auth_token(user: models.User, expires_delta: timedelta = None) -> str:
    """
    Helper to create JWT access token for a user.

    Args:
        user: User to create token for
        expires_delta: Optional expiration time override

    Returns:
        JWT access token string
    """
    token_data = {
        "sub": str(user.id),
        "role": models.Role(user.role).value,
        "email": user.email
    }
    return create_access_token(token_data, expires_delta)


def bearer(user: models.User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_auth_token(user)}"}


@pytest.fixture(scope="function")
def auth_headers(admin_user: models.User) -> Dict[str, str]:
    """Authorization headers with admin token."""
    return bearer(admin_user)


@pytest.fixture(scope="function")
def user_auth_headers(regular_user: models.User) -> Dict[str, str]:
    return bearer(regular_user)


@pytest.fixture(scope="function")
def another_user_auth_headers(another_user: models.User) -> Dict[str, str]:
    return bearer(another_user)


@pytest.fixture(scope="function")
def make_task(test_db: Session) -> Callable[..., models.Task]:
    """
    Factory creating tasks directly in the database.

    Example:
        task = make_task(creator=regular_user, assignee=another_user, status=models.TaskStatus.completed)
    """
    def factory(creator: models.User, assignee: models.User = None, tags=None, **fields) -> models.Task:
        fields.setdefault("title", "Test Task")
        fields.setdefault("description", "A task for testing")
        fields.setdefault("due_date", utc_now() + timedelta(days=7))
        task = models.Task(
            created_by_id=creator.id,
            assigned_to_id=(assignee or creator).id,
            **fields,
        )
        task.tags = tags or []
        test_db.add(task)
        test_db.commit()
        test_db.refresh(task)
        return task

    return factory


def pdf_upload(name: str = "report.pdf", content: bytes = PDF_BYTES):
    """A multipart `attachments` entry for TestClient."""
    return ("attachments", (name, content, "application/pdf"))


def task_form(assignee_id: int, **overrides) -> Dict[str, str]:
    """Multipart form fields for creating a task."""
    form = {
        "title": "Write report",
        "description": "Quarterly numbers",
        "due_date": (utc_now() + timedelta(days=3)).isoformat(),
        "assigned_to": str(assignee_id),
    }
    form.update(overrides)
    return form

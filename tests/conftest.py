"""Pytest configuration and shared fixtures."""
import os
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite:///./test.db")
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["SENTRY_ENABLE_ALERTS"] = "false"
os.environ.pop("SENTRY_DSN", None)

from fastapi.testclient import TestClient

from app.config.database import Base, get_db, get_session_factory
from app.config.settings import PostingSettings, get_posting_settings
from app.main import app
from app.models.database import EraFile
from tests.factories import ClaimFactory, EraFileFactory, PayerFactory

SAMPLES_DIR = Path(__file__).resolve().parent.parent / "samples"


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached; tests that patch the environment need a fresh read."""
    get_posting_settings.cache_clear()
    yield
    get_posting_settings.cache_clear()


# Test database setup
@pytest.fixture(scope="function")
def test_engine():
    """SQLite in-memory engine shared by every session of one test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine) -> sessionmaker:
    """Session factory handed to the posting engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def test_db(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """Create a test database session."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def db_session(test_db: Session) -> Generator[Session, None, None]:
    """Provide a database session for tests, with factories bound to it."""
    PayerFactory._meta.sqlalchemy_session = test_db
    ClaimFactory._meta.sqlalchemy_session = test_db
    EraFileFactory._meta.sqlalchemy_session = test_db

    yield test_db
    test_db.rollback()


@pytest.fixture(scope="function")
def posting_settings() -> PostingSettings:
    """Serial posting keeps the shared in-memory connection single-threaded."""
    return PostingSettings(
        reconciliation_tolerance_per_claim="0.01",
        posting_concurrency=1,
        posting_max_retries=1,
    )


@pytest.fixture(scope="function")
def override_get_db(db_session: Session):
    """Override the get_db dependency."""
    def _get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close in tests

    return _get_db


@pytest.fixture(scope="function")
def client(override_get_db, session_factory) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI app."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    # 500 errors return responses instead of raising
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# Sample files
@pytest.fixture
def sample_835_content() -> str:
    """Two-claim 835 that reconciles: CLM001 paid in full, CLM002 partially paid."""
    return (SAMPLES_DIR / "sample_835.txt").read_text()


@pytest.fixture
def sample_claims(db_session: Session):
    """Internal claims matching the two claims of the sample 835."""
    payer = PayerFactory(payer_id="87726", name="UNITED HEALTHCARE")
    paid = ClaimFactory(
        claim_control_number="CLM001",
        payer=payer,
        patient_member_id="MEM001",
        patient_last_name="DOE",
        patient_first_name="JANE",
        total_charge_amount=Decimal("500.00"),
    )
    partial = ClaimFactory(
        claim_control_number="CLM002",
        payer=payer,
        patient_member_id="MEM002",
        patient_last_name="SMITH",
        patient_first_name="JOHN",
        total_charge_amount=Decimal("1000.00"),
    )
    return paid, partial


@pytest.fixture
def uploaded_era_file(db_session: Session, sample_835_content: str) -> EraFile:
    """ERA file record as stored by the upload endpoint."""
    return EraFileFactory(file_name="sample_835.txt", file_content=sample_835_content)


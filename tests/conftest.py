"""Pytest configuration and fixtures."""

import io
import threading
import time
import zipfile

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.dependencies import ROLE_SUPERADMIN, ROLE_WORKER
from app.errors import GatewayUnavailableError
from app.models.message import Message, MessageEmotion, MessageTheme, Theme  # noqa: F401
from app.services.blob_store import build_key
from app.services.ingestion import IngestionService
from app.services.message_store import MessageStore

PROJECT_ID = "project-1"
OTHER_PROJECT_ID = "project-2"


class InMemoryBlobStore:
    """Blob store double that records uploads and tracks upload concurrency."""

    def __init__(self, fail_on: set[str] | None = None, delay: float = 0.0) -> None:
        self.blobs: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_on = fail_on or set()
        self.delay = delay
        self.in_flight = 0
        self.peak_in_flight = 0
        self._lock = threading.Lock()

    def upload(self, scope_id: str, filename: str, data: bytes, mime_type: str) -> str:
        with self._lock:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if filename in self.fail_on:
                raise GatewayUnavailableError(f"Failed to store audio '{filename}': boom")
            key = build_key(scope_id, filename)
            with self._lock:
                self.blobs[key] = data
            return key
        finally:
            with self._lock:
                self.in_flight -= 1

    def delete(self, key: str) -> None:
        self.deleted.append(key)
        self.blobs.pop(key, None)

    def download(self, key: str) -> bytes:
        if key not in self.blobs:
            raise GatewayUnavailableError(f"Failed to read audio '{key}': missing")
        return self.blobs[key]


class RecordingJobQueue:
    """Job queue double that records submissions."""

    def __init__(self) -> None:
        self.enqueued: list[tuple[str, str]] = []
        self.retried: list[tuple[str, str]] = []
        self.fail = False

    def enqueue_processing(self, message_id: str, scope_id: str) -> None:
        if self.fail:
            raise GatewayUnavailableError("Job queue unavailable: connection refused")
        self.enqueued.append((message_id, scope_id))

    def retry(self, message_id: str, scope_id: str) -> None:
        if self.fail:
            raise GatewayUnavailableError("Job queue unavailable: connection refused")
        self.retried.append((message_id, scope_id))


class FailingMessageStore(MessageStore):
    """Message store that fails inserts for chosen filenames, or every update."""

    def __init__(self, fail_create: set[str] | None = None, fail_update: bool = False) -> None:
        self.fail_create = fail_create or set()
        self.fail_update = fail_update

    def create(self, db, project_id, filename, **kwargs):
        if filename in self.fail_create:
            raise SQLAlchemyError(f"insert failed for {filename}")
        return super().create(db, project_id, filename, **kwargs)

    def update(self, db, message, patch):
        if self.fail_update:
            raise SQLAlchemyError("update failed")
        return super().update(db, message, patch)


def build_zip(files: dict[str, bytes | str]) -> bytes:
    """Build an in-memory ZIP archive from a name -> content mapping."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture(name="db_session")
def db_session_fixture():
    """Create an in-memory SQLite database for tests."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    testing_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="blob_store")
def blob_store_fixture() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture(name="job_queue")
def job_queue_fixture() -> RecordingJobQueue:
    return RecordingJobQueue()


@pytest.fixture(name="service")
def service_fixture(blob_store: InMemoryBlobStore, job_queue: RecordingJobQueue):
    """Ingestion service wired to the in-memory gateways and installed as the singleton."""
    from app.services import ingestion as ingestion_module

    service = IngestionService(blob_store, job_queue, store=MessageStore(), upload_concurrency=5)
    ingestion_module._ingestion_service = service
    yield service
    ingestion_module._ingestion_service = None


@pytest.fixture(name="client")
def client_fixture(db_session: Session, service: IngestionService):
    """Create a test client with overridden DB dependency and disabled rate limiting."""
    from app.rate_limit import limiter
    from main import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture(name="admin_headers")
def admin_headers_fixture() -> dict:
    from app.services.jwt import get_jwt_service

    token = get_jwt_service().create_token("admin-1", ROLE_SUPERADMIN)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(name="worker_headers")
def worker_headers_fixture() -> dict:
    from app.services.jwt import get_jwt_service

    token = get_jwt_service().create_token("worker-1", ROLE_WORKER)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(name="theme")
def theme_fixture(db_session: Session) -> Theme:
    theme = Theme(project_id=PROJECT_ID, name="Accueil")
    db_session.add(theme)
    db_session.commit()
    db_session.refresh(theme)
    return theme

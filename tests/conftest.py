"""
Root conftest.py: shared fixtures for ALL tests (unit + integration)

Fixture hierarchy (all function-scoped; every test gets a fresh world):
  test_settings   Settings pointing at a temp SQLite file and a temp blob dir
  database        Database with tables created, disposed after the test
  records         DocumentRecordStore over `database`
  blob_store      LocalBlobStore rooted at tmp_path
  engines         ScriptedEngine per mime class (no tesseract, no PyMuPDF)
  container       build_container(...) wired with the above and a
                  BackgroundDispatcher; closed after the test
  make_document   insert a Document row in any state
  make_token      signed HS256 bearer token for an owner

Environment strategy:
  - SQLite via aiosqlite replaces PostgreSQL; every lifecycle UPDATE is
    portable, so the state machine is exercised for real.
  - Extraction engines are scripted: each call pops the next outcome
    (a (text, confidence) tuple or an exception to raise).
  - Celery is never contacted; the background dispatcher runs the worker
    in the test's event loop.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # API tests (httpx ASGITransport, no server)
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Environment BEFORE any docdump imports so module-level settings reads are safe
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("DATABASE_URL",          "sqlite+aiosqlite:///./docdump-test.db")
os.environ.setdefault("STORAGE_BACKEND",       "local")
os.environ.setdefault("DISPATCH_BACKEND",      "background")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("JWT_SECRET",            "test-secret")
os.environ.setdefault("APP_ENV",               "development")

from docdump.container import ServiceContainer, build_container  # noqa: E402
from docdump.core.config import Settings  # noqa: E402
from docdump.db.session import Database  # noqa: E402
from docdump.extraction.base import ExtractionEngine  # noqa: E402
from docdump.models.documents import Document, MimeClass  # noqa: E402
from docdump.search.indexer import SearchIndexUpdater  # noqa: E402
from docdump.services.records import DocumentRecordStore  # noqa: E402
from docdump.storage.local import LocalBlobStore  # noqa: E402

OWNER_A = "owner-alice"
OWNER_B = "owner-bob"
JWT_SECRET = "test-secret"


# ─────────────────────────────────────────────────────────────────────────────
# Sample file bytes (magic-byte correct; content is irrelevant to fake engines)
# ─────────────────────────────────────────────────────────────────────────────

PNG_BYTES  = b"\x89PNG\r\n\x1a\n" + b"\x00" * 120
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 120
TIFF_BYTES = b"II*\x00" + b"\x00" * 120
PDF_BYTES  = b"%PDF-1.4\n" + b"%fake body\n" * 10 + b"%%EOF"


# ─────────────────────────────────────────────────────────────────────────────
# Scripted extraction engine
# ─────────────────────────────────────────────────────────────────────────────

class ScriptedEngine(ExtractionEngine):
    """
    Returns or raises the scripted outcomes in order; the last one repeats.
    Records every byte payload it was given.
    """

    def __init__(self, name: str, outcomes: list) -> None:
        super().__init__(timeout_seconds=5.0)
        self._name = name
        self.outcomes = list(outcomes)
        self.calls: list[bytes] = []

    @property
    def name(self) -> str:
        return self._name

    def script(self, *outcomes) -> None:
        self.outcomes = list(outcomes)

    def _extract_sync(self, data: bytes) -> tuple[str, float]:
        self.calls.append(data)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


# ─────────────────────────────────────────────────────────────────────────────
# Settings / database / stores
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'docdump.db'}",
        storage_backend="local",
        local_storage_root=str(tmp_path / "blobs"),
        dispatch_backend="background",
        background_max_concurrency=4,
        shutdown_drain_seconds=5.0,
        max_extraction_retries=3,
        fetch_timeout_seconds=5.0,
        extraction_timeout_seconds=5.0,
        max_file_size_bytes=1024 * 1024,
        max_files_per_batch=5,
        jwt_secret=JWT_SECRET,
        app_env="development",
    )


@pytest_asyncio.fixture
async def database(test_settings) -> AsyncGenerator[Database, None]:
    db = Database.from_settings(test_settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def records(database) -> DocumentRecordStore:
    return DocumentRecordStore(database)


@pytest.fixture
def blob_store(test_settings) -> LocalBlobStore:
    return LocalBlobStore(test_settings.local_storage_root)


@pytest.fixture
def image_engine() -> ScriptedEngine:
    return ScriptedEngine("fake-ocr", [("Nota fiscal número 4521 total R$ 310,00", 87.5)])


@pytest.fixture
def pdf_engine() -> ScriptedEngine:
    return ScriptedEngine("fake-pdf", [("Contrato de locação residencial", 95.0)])


@pytest.fixture
def engines(image_engine, pdf_engine) -> dict[MimeClass, ExtractionEngine]:
    return {MimeClass.IMAGE: image_engine, MimeClass.PDF: pdf_engine}


@pytest_asyncio.fixture
async def container(test_settings, database, blob_store, engines) -> AsyncGenerator[ServiceContainer, None]:
    c = build_container(
        test_settings,
        database=database,
        blob_store=blob_store,
        engines=engines,
    )
    yield c
    await c.dispatcher.close(5.0)


# ─────────────────────────────────────────────────────────────────────────────
# Row factory
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_document(records, blob_store):
    """
    Insert one Document in any state and return it.

        doc = await make_document(status="failed", retry_count=2)
        doc = await make_document(extracted_text="hello", status="completed")

    A completed row gets its search index built from text + file name unless
    search_index is passed explicitly. With store_bytes, the blob is written
    to the local store so the worker can fetch it.
    """
    indexer = SearchIndexUpdater()

    async def _make(
        *,
        owner_id: str = OWNER_A,
        file_name: str = "scan.png",
        content_type: str = "image/png",
        byte_size: int | None = None,
        status: str = "pending",
        created_at: datetime | None = None,
        store_bytes: bytes | None = None,
        **fields,
    ) -> Document:
        if store_bytes is not None:
            source_ref = await blob_store.store(store_bytes, owner_id, file_name, content_type)
        else:
            source_ref = fields.pop("source_ref", f"file:///nonexistent/{uuid.uuid4()}")

        if status == "completed" and "search_index" not in fields:
            fields["search_index"] = indexer.build(fields.get("extracted_text") or "", file_name)
            fields.setdefault("extracted_text", "")
        if status in ("completed", "failed"):
            fields.setdefault("processing_started_at", datetime.now(timezone.utc) - timedelta(seconds=5))
            fields.setdefault("processing_completed_at", datetime.now(timezone.utc))

        doc = Document(
            id=fields.pop("id", uuid.uuid4()),
            owner_id=owner_id,
            source_ref=source_ref,
            file_name=file_name,
            content_type=content_type,
            mime_class=MimeClass.from_content_type(content_type).value,
            byte_size=byte_size or (len(store_bytes) if store_bytes else 1024),
            status=status,
            created_at=created_at or datetime.now(timezone.utc),
            **fields,
        )
        await records.create_batch([doc])
        return doc

    return _make


# ─────────────────────────────────────────────────────────────────────────────
# JWT token factory
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def make_token(test_settings):
    """
    Factory fixture: returns a function that builds signed test JWTs.

        token = make_token()                 # OWNER_A
        token = make_token(OWNER_B)
        token = make_token(expired=True)
    """
    from docdump.auth.token import create_access_token

    def _build(owner_id: str = OWNER_A, *, expired: bool = False) -> str:
        return create_access_token(
            owner_id,
            test_settings,
            expires_in_seconds=-60 if expired else 3600,
        )

    return _build


@pytest.fixture
def auth_headers(make_token) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI test client
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def async_client(container) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client bound to an app that uses the test container.
    ASGITransport does not run the lifespan; the container is injected.
    """
    from docdump.main import create_app

    app = create_app(container.settings, container=container)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

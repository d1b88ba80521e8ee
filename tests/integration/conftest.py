"""
Fixtures for integration tests against the Firestore Emulator.

The whole package is skipped unless ``FIRESTORE_EMULATOR_HOST`` points at a
running emulator, e.g. ``FIRESTORE_EMULATOR_HOST=localhost:8080``.
"""

import logging
import os

import httpx
import pytest
import pytest_asyncio
from faker import Faker

from firestore_graph_odm import FirestoreDB, init_firestore_odm
from firestore_graph_odm.models import Comment, Post, User

logger = logging.getLogger(__name__)

# ── Environment detection ────────────────────────────────────────────────────

EMULATOR_HOST = os.environ.get("FIRESTORE_EMULATOR_HOST", "").strip()
DATABASE = os.environ.get("DATABASE", None) or None

# An unset CI secret expands to "", so fall back with ``or``.
PROJECT_ID = os.environ.get("GOOGLE_CLOUD_PROJECT") or "test-project"

ALL_MODELS = [User, Post, Comment]


def pytest_collection_modifyitems(config, items):
    if EMULATOR_HOST:
        return
    skip = pytest.mark.skip(reason="FIRESTORE_EMULATOR_HOST is not set")
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(skip)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture()
def firestore_db():
    """FirestoreDB bound to the emulator.

    Function-scoped so each test gets a fresh AsyncClient bound to the
    current event loop (avoids 'Event loop is closed' with gRPC).
    """
    return FirestoreDB(project_id=PROJECT_ID, database=DATABASE, emulator_host=EMULATOR_HOST)


@pytest.fixture()
def raw_client(firestore_db):
    """Raw AsyncClient pointing to the same backend as the ODM."""
    return firestore_db.client


@pytest.fixture()
def faker():
    return Faker()


@pytest_asyncio.fixture(autouse=True)
async def clean_firestore():
    """Wipe all emulator data before and after each test."""
    await _perform_cleanup()
    yield
    await _perform_cleanup()


async def _perform_cleanup():
    db_name = DATABASE or "(default)"
    url = (
        f"http://{EMULATOR_HOST}/emulator/v1/projects/"
        f"{PROJECT_ID}/databases/{db_name}/documents"
    )
    async with httpx.AsyncClient() as client:
        response = await client.delete(url)
    if response.status_code >= 400:
        logger.warning(f"Emulator cleanup returned {response.status_code}: {response.text}")


@pytest_asyncio.fixture
async def initialized_models(firestore_db):
    """Register all models with the database and return them as a dict."""
    init_firestore_odm(firestore_db, ALL_MODELS)
    return {cls.__name__: cls for cls in ALL_MODELS}

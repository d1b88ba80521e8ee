import pytest
from google.auth.credentials import AnonymousCredentials

from firestore_graph_odm import FirestoreDB, init_firestore_odm
from firestore_graph_odm.models import Comment, Post, User

from .fake_firestore import FakeFirestore

ALL_MODELS = [User, Post, Comment]


@pytest.fixture
def firestore_db(monkeypatch):
    """FirestoreDB whose client is replaced by an in-memory fake."""
    # FirestoreDB clears the emulator variable; restore it after the test.
    monkeypatch.setenv("FIRESTORE_EMULATOR_HOST", "")
    monkeypatch.delenv("FIRESTORE_EMULATOR_HOST")
    db = FirestoreDB(project_id="test-project", credentials=AnonymousCredentials())
    db.client = FakeFirestore()
    return db


@pytest.fixture
def fake(firestore_db) -> FakeFirestore:
    return firestore_db.client


@pytest.fixture
def initialized_models(firestore_db):
    """Register all models with the fake database and return them as a dict."""
    init_firestore_odm(firestore_db, ALL_MODELS)
    return {cls.__name__: cls for cls in ALL_MODELS}

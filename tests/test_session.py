"""
Session and transaction lifecycle against the in-memory Firestore fake.
"""

import pytest
from google.api_core.exceptions import Aborted, ServiceUnavailable

from firestore_graph_odm import (
    ReferenceIntegrityError,
    TransactionError,
    UniquenessViolation,
)
from firestore_graph_odm.models import Post, User
from firestore_graph_odm.references import Reference
from firestore_graph_odm.session import UNIQUE_KEYS_COLLECTION, unique_key_id


def test_unique_key_id_quotes_values():
    assert unique_key_id("users", "email", "jane@example.com") == "users:email:jane%40example.com"
    assert unique_key_id("posts", "slug", "a/b") == "posts:slug:a%2Fb"


@pytest.mark.asyncio
async def test_start_transaction_twice_raises(firestore_db):
    session = firestore_db.start_session()
    await session.start_transaction()

    with pytest.raises(TransactionError):
        await session.start_transaction()

    await session.end_session()


@pytest.mark.asyncio
async def test_commit_without_transaction_raises(firestore_db):
    session = firestore_db.start_session()
    with pytest.raises(TransactionError):
        await session.commit_transaction()


@pytest.mark.asyncio
async def test_transaction_is_opened_without_retries(firestore_db, fake):
    session = firestore_db.start_session()
    await session.start_transaction()

    assert fake.transactions[0].max_attempts == 1
    assert fake.transactions[0].begun == 1
    assert session.in_transaction

    await session.end_session()


@pytest.mark.asyncio
async def test_insert_buffers_document_and_unique_guard(firestore_db, fake):
    user = User(email="jane@example.com", first_name="Jane", last_name="Doe")

    async with firestore_db.start_session() as session:
        await session.start_transaction()
        session.insert(user)

        writes = fake.transactions[0].writes
        assert user.id is not None
        assert writes[0][:2] == ("create", f"users/{user.id}")
        assert writes[0][2]["firstName"] == "Jane"
        assert writes[1][:2] == (
            "create",
            f"{UNIQUE_KEYS_COLLECTION}/users:email:jane%40example.com",
        )
        assert writes[1][2]["documentId"] == user.id
        # Nothing is visible before the commit.
        assert fake.documents("users") == {}

        await session.commit_transaction()

    assert fake.get_data("users", user.id)["email"] == "jane@example.com"


@pytest.mark.asyncio
async def test_commit_applies_pushes_to_owner(firestore_db, fake):
    user = User(email="jane@example.com")

    async with firestore_db.start_session() as session:
        async with session.transaction():
            session.insert(user)
            session.push(user, "posts", "p1")
            assert user.posts == []

    assert user.posts == [Reference("p1")]
    assert fake.get_data("users", user.id)["posts"] == ["p1"]


@pytest.mark.asyncio
async def test_push_requires_owner_id(firestore_db):
    async with firestore_db.start_session() as session:
        await session.start_transaction()
        with pytest.raises(ValueError):
            session.push(User(email="jane@example.com"), "posts", "p1")


@pytest.mark.asyncio
async def test_duplicate_unique_key_raises_uniqueness_violation(firestore_db, fake):
    first = User(email="jane@example.com")
    second = User(email="jane@example.com")

    async with firestore_db.start_session() as session:
        async with session.transaction():
            session.insert(first)

    with pytest.raises(UniquenessViolation) as exc_info:
        async with firestore_db.start_session() as session:
            async with session.transaction():
                session.insert(second)

    assert exc_info.value.collection == "users"
    assert "email=jane@example.com" in exc_info.value.keys
    assert second.id is None
    assert fake.transactions[1].rolled_back == 1
    assert list(fake.documents("users")) == [first.id]


@pytest.mark.asyncio
async def test_abort_clears_generated_ids_only(firestore_db, fake):
    generated = User(email="a@example.com")
    explicit = User(id="fixed-id", email="b@example.com")

    session = firestore_db.start_session()
    await session.start_transaction()
    session.insert(generated)
    session.insert(explicit)
    await session.abort_transaction()

    assert generated.id is None
    assert explicit.id == "fixed-id"
    assert fake.transactions[0].rolled_back == 1
    assert fake.store == {}


@pytest.mark.asyncio
async def test_transaction_context_aborts_and_reraises(firestore_db, fake):
    user = User(email="jane@example.com")

    with pytest.raises(KeyError):
        async with firestore_db.start_session() as session:
            async with session.transaction():
                session.insert(user)
                raise KeyError("boom")

    assert fake.transactions[0].rolled_back == 1
    assert fake.transactions[0].committed == 0
    assert session.has_ended
    assert fake.store == {}


@pytest.mark.asyncio
async def test_transport_failure_on_commit_propagates_unchanged(firestore_db, fake):
    fake.commit_error = ServiceUnavailable("store unreachable")

    with pytest.raises(ServiceUnavailable):
        async with firestore_db.start_session() as session:
            async with session.transaction():
                session.insert(User(email="jane@example.com"))

    assert fake.transactions[0].rolled_back == 1
    assert fake.store == {}


@pytest.mark.asyncio
async def test_end_session_aborts_open_transaction(firestore_db, fake):
    session = firestore_db.start_session()
    await session.start_transaction()
    session.insert(User(email="jane@example.com"))

    await session.end_session()
    await session.end_session()

    assert fake.transactions[0].rolled_back == 1
    assert session.has_ended
    assert not session.in_transaction


@pytest.mark.asyncio
async def test_session_cannot_be_used_after_end(firestore_db):
    session = firestore_db.start_session()
    await session.end_session()

    with pytest.raises(TransactionError):
        await session.start_transaction()
    with pytest.raises(TransactionError):
        async with session:
            pass


@pytest.mark.asyncio
async def test_reads_go_through_the_transaction(firestore_db, fake):
    fake.put("users", "u1", {"email": "jane@example.com"})

    async with firestore_db.start_session() as session:
        async with session.transaction():
            user = await session.get(User, "u1")

    assert user.email == "jane@example.com"
    doc_ref = fake.document("users", "u1")
    assert doc_ref.get_calls == [fake.transactions[0]]


@pytest.mark.asyncio
async def test_ensure_exists_raises_for_missing_document(firestore_db, fake):
    with pytest.raises(ReferenceIntegrityError) as exc_info:
        async with firestore_db.start_session() as session:
            async with session.transaction():
                await session.ensure_exists(Post, "missing")

    assert exc_info.value.collection == "posts"
    assert exc_info.value.doc_id == "missing"
    assert fake.transactions[0].rolled_back == 1


@pytest.mark.asyncio
async def test_remove_deletes_document_and_guard(firestore_db, fake):
    user = User(email="jane@example.com")
    async with firestore_db.start_session() as session:
        async with session.transaction():
            session.insert(user)

    async with firestore_db.start_session() as session:
        async with session.transaction():
            session.remove(user)

    assert fake.store == {}


@pytest.mark.asyncio
async def test_contention_on_commit_is_not_a_uniqueness_violation(firestore_db, fake):
    fake.commit_error = Aborted("Transaction lock timeout")

    with pytest.raises(Aborted):
        async with firestore_db.start_session() as session:
            async with session.transaction():
                session.insert(User(email="jane@example.com"))

    assert fake.transactions[0].rolled_back == 1
    assert fake.store == {}


@pytest.mark.asyncio
async def test_uniqueness_violation_names_the_colliding_key(firestore_db, fake):
    fake.put(UNIQUE_KEYS_COLLECTION, "posts:slug:post-1", {"documentId": "p0"})
    user = User(email="jane@example.com")
    post = Post(slug="post-1", title="T", body="B", author="u0")

    with pytest.raises(UniquenessViolation) as exc_info:
        async with firestore_db.start_session() as session:
            async with session.transaction():
                session.insert(user)
                session.insert(post)

    assert exc_info.value.collection == "posts"
    assert exc_info.value.keys == ("slug=post-1",)


@pytest.mark.asyncio
async def test_uniqueness_violation_on_taken_document_id(firestore_db, fake):
    fake.put("users", "taken", {"email": "old@example.com"})

    with pytest.raises(UniquenessViolation) as exc_info:
        async with firestore_db.start_session() as session:
            async with session.transaction():
                session.insert(User(id="taken", email="new@example.com"))

    assert exc_info.value.collection == "users"
    assert exc_info.value.keys == ("id=taken",)

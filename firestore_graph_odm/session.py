"""
Scoped session and transaction handling.

An :class:`AsyncSession` owns at most one Firestore transaction at a time and
is owned by the single caller that opened it. Typical use::

    async with db.start_session() as session:
        async with session.transaction():
            session.insert(user)
            session.insert(post)
            session.push(user, "posts", post.id)

Firestore requires every read of a transaction to happen before its first
write, so :meth:`AsyncSession.get` / :meth:`AsyncSession.ensure_exists` must
be called before :meth:`AsyncSession.insert` / :meth:`AsyncSession.push`.
Writes are buffered client side and only become visible, all together, when
the transaction commits.

Unique fields are enforced with guard documents: inserting a model whose
``Settings.unique`` names ``email`` also creates
``_unique_keys/users:email:<value>``. Both are written with ``create``, which
fails at commit time if the document already exists.
"""

import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, AsyncIterator, List, Optional, Tuple, Type
from urllib.parse import quote

from google.api_core.exceptions import AlreadyExists
from google.cloud.firestore_v1 import ArrayUnion

from .errors import ReferenceIntegrityError, TransactionError, UniquenessViolation
from .references import Reference, reference_id

if TYPE_CHECKING:
    from .firestore_client import FirestoreDB
    from .firestore_model import BaseFirestoreModel

logger = logging.getLogger(__name__)

UNIQUE_KEYS_COLLECTION = "_unique_keys"


def unique_key_id(collection: str, field: str, value: Any) -> str:
    """Document id of the guard for ``collection.field == value``."""
    return f"{collection}:{field}:{quote(str(value), safe='')}"


def _mentions_path(message: str, path: str) -> bool:
    return re.search(rf"(?:^|[\s/]){re.escape(path)}(?:$|[\s'\"])", message) is not None


class AsyncSession:
    def __init__(self, db: "FirestoreDB"):
        self.db = db
        self._transaction = None
        self._ended = False
        self._inserted: List[Tuple["BaseFirestoreModel", bool]] = []
        self._pending_links: List[Tuple["BaseFirestoreModel", str, str]] = []
        # (collection, "field=value", guard document path)
        self._guard_keys: List[Tuple[str, str, str]] = []

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    @property
    def in_transaction(self) -> bool:
        return self._transaction is not None

    @property
    def has_ended(self) -> bool:
        return self._ended

    async def start_transaction(self) -> None:
        if self._ended:
            raise TransactionError("Session has already ended.")
        if self._transaction is not None:
            raise TransactionError("A transaction is already in progress on this session.")

        transaction = self.db.client.transaction(max_attempts=1)
        await transaction._begin()
        self._transaction = transaction
        logger.debug("Transaction started")

    async def commit_transaction(self) -> None:
        transaction = self._require_transaction()
        try:
            await transaction._commit()
        except AlreadyExists as exc:
            raise self._uniqueness_violation(exc) from exc

        self._transaction = None
        for model, _ in self._inserted:
            model.mark_stored()
        for owner, field, dependent_id in self._pending_links:
            links = getattr(owner, field)
            ref = Reference(dependent_id)
            if ref not in [Reference(reference_id(item)) for item in links]:
                links.append(ref)
        self._reset_buffers()
        logger.debug("Transaction committed")

    async def abort_transaction(self) -> None:
        transaction = self._require_transaction()
        self._transaction = None
        try:
            await transaction._rollback()
        finally:
            for model, generated_id in self._inserted:
                if generated_id:
                    model.id = None
            self._reset_buffers()
            logger.debug("Transaction aborted")

    async def end_session(self) -> None:
        if self._ended:
            return
        try:
            if self._transaction is not None:
                logger.warning("Ending session with an open transaction, aborting it")
                await self.abort_transaction()
        finally:
            self._ended = True
            logger.debug("Session ended")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["AsyncSession"]:
        """Start a transaction; commit on success, abort and re-raise on error."""
        await self.start_transaction()
        try:
            yield self
        except BaseException:
            await self._abort_after_failure()
            raise
        try:
            await self.commit_transaction()
        except BaseException:
            await self._abort_after_failure()
            raise

    async def __aenter__(self) -> "AsyncSession":
        if self._ended:
            raise TransactionError("Session has already ended.")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.end_session()

    # ------------------------------------------------------------------ #
    # Reads (must precede writes)                                        #
    # ------------------------------------------------------------------ #

    async def get(
        self, model_cls: Type["BaseFirestoreModel"], doc_id: str
    ) -> Optional["BaseFirestoreModel"]:
        transaction = self._require_transaction()
        doc_ref = self._collection(model_cls.get_collection_name()).document(doc_id)
        snapshot = await doc_ref.get(transaction=transaction)
        if not snapshot.exists:
            return None
        return model_cls.from_snapshot(snapshot)

    async def ensure_exists(
        self, model_cls: Type["BaseFirestoreModel"], doc_id: str
    ) -> "BaseFirestoreModel":
        model = await self.get(model_cls, doc_id)
        if model is None:
            raise ReferenceIntegrityError(model_cls.get_collection_name(), doc_id)
        return model

    # ------------------------------------------------------------------ #
    # Buffered writes                                                    #
    # ------------------------------------------------------------------ #

    def insert(self, model: "BaseFirestoreModel") -> "BaseFirestoreModel":
        """Buffer the creation of ``model`` and of its unique key guards."""
        transaction = self._require_transaction()
        collection = model.get_collection_name()
        collection_ref = self._collection(collection)

        generated_id = not model.id
        doc_ref = collection_ref.document() if generated_id else collection_ref.document(model.id)
        if generated_id:
            model.id = doc_ref.id
        self._inserted.append((model, generated_id))

        model.stamp_timestamps(datetime.now(timezone.utc), created=True)
        transaction.create(doc_ref, model.to_document())

        for field, value in model.unique_values():
            guard_id = unique_key_id(collection, field, value)
            guard_ref = self._collection(UNIQUE_KEYS_COLLECTION).document(guard_id)
            transaction.create(
                guard_ref,
                {"collection": collection, "field": field, "value": value, "documentId": model.id},
            )
            self._guard_keys.append((collection, f"{field}={value}", guard_ref.path))

        logger.debug(f"Insert buffered: {collection}/{model.id}")
        return model

    def push(self, owner: "BaseFirestoreModel", field: str, value: Any) -> None:
        """Buffer an append of ``value``'s id to the ``field`` collection of ``owner``."""
        transaction = self._require_transaction()
        if not owner.id:
            raise ValueError(f"Cannot push into {type(owner).__name__}.{field} without an owner ID.")

        dependent_id = reference_id(value)
        doc_ref = self._collection(owner.get_collection_name()).document(owner.id)
        transaction.update(doc_ref, {owner.stored_name(field): ArrayUnion([dependent_id])})
        self._pending_links.append((owner, field, dependent_id))
        logger.debug(f"Push buffered: {owner.get_collection_name()}/{owner.id}.{field} += {dependent_id}")

    def remove(self, model: "BaseFirestoreModel") -> None:
        """Buffer the deletion of ``model`` and release its unique key guards."""
        transaction = self._require_transaction()
        if not model.id:
            raise ValueError("Cannot delete a document without an ID.")

        collection = model.get_collection_name()
        transaction.delete(self._collection(collection).document(model.id))
        for field, value in model.unique_values():
            guard_ref = self._collection(UNIQUE_KEYS_COLLECTION).document(
                unique_key_id(collection, field, value)
            )
            transaction.delete(guard_ref)

    # ------------------------------------------------------------------ #
    # Internals                                                          #
    # ------------------------------------------------------------------ #

    def _uniqueness_violation(self, exc: AlreadyExists) -> UniquenessViolation:
        """Name the collection and key whose document already existed."""
        detail = str(exc.message)
        for collection, key, path in self._guard_keys:
            if _mentions_path(detail, path):
                return UniquenessViolation(collection, [key], detail=detail)
        for model, _ in self._inserted:
            collection = model.get_collection_name()
            if _mentions_path(detail, f"{collection}/{model.id}"):
                return UniquenessViolation(collection, [f"id={model.id}"], detail=detail)
        # The backend did not say which document collided.
        collection = self._inserted[0][0].get_collection_name() if self._inserted else "unknown"
        return UniquenessViolation(collection, [key for _, key, _ in self._guard_keys], detail=detail)

    async def _abort_after_failure(self) -> None:
        # The caller re-raises the original error; a failing rollback must not replace it.
        if self._transaction is None:
            return
        try:
            await self.abort_transaction()
        except Exception:
            logger.exception("Rollback failed while aborting transaction")

    def _require_transaction(self):
        if self._ended:
            raise TransactionError("Session has already ended.")
        if self._transaction is None:
            raise TransactionError("No transaction in progress on this session.")
        return self._transaction

    def _collection(self, name: str):
        return self.db.client.collection(name)

    def _reset_buffers(self) -> None:
        self._inserted = []
        self._pending_links = []
        self._guard_keys = []

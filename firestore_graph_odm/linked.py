"""
Creating and reading back linked documents.

A *dependent* document (a post) holds a reference to its *owner* (a user), and
the owner lists its dependents in a back-reference collection (``posts``).
:func:`create_linked` and :func:`attach_dependent` write both sides in a single
transaction so that a reader never sees a dependent missing from its owner's
collection, or a collection entry pointing nowhere.
"""

import logging
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Type, TypeVar

from .enums import FirestoreOperators
from .firestore_client import FirestoreDB
from .firestore_model import BaseFirestoreModel, FilterType
from .references import Reference, reference_id

logger = logging.getLogger(__name__)

OwnerT = TypeVar("OwnerT", bound=BaseFirestoreModel)
DependentT = TypeVar("DependentT", bound=BaseFirestoreModel)


def _build_dependent(
    dependent_cls: Type[DependentT], fields: Mapping[str, Any], reference: str, owner_id: str
) -> DependentT:
    return dependent_cls.model_validate({**fields, reference: Reference(owner_id)})


async def create_linked(
    db: FirestoreDB,
    owner: OwnerT,
    dependent_cls: Type[DependentT],
    dependent_fields: Mapping[str, Any],
    *,
    reference: str,
    back_reference: str,
) -> Tuple[OwnerT, DependentT]:
    """
    Create ``owner`` and a ``dependent_cls`` document pointing at it, atomically.

    1. insert the owner, generating its id;
    2. build the dependent from ``dependent_fields`` with ``reference`` set to
       the new owner id, and insert it;
    3. append the dependent's id to ``owner.<back_reference>``.

    All three writes commit together. On any failure the transaction is
    aborted, the session released and the original error re-raised; the id
    generated for the owner in step 1 is cleared again.
    """
    collection = dependent_cls.get_collection_name()
    async with db.start_session() as session:
        try:
            async with session.transaction():
                session.insert(owner)
                dependent = _build_dependent(dependent_cls, dependent_fields, reference, owner.id)
                session.insert(dependent)
                session.push(owner, back_reference, dependent.id)
        except Exception as exc:
            logger.error(
                f"Transaction aborted while linking {collection} to {owner.collection_name}: {exc!r}"
            )
            raise

    logger.info(f"Linked {collection}/{dependent.id} to {owner.collection_name}/{owner.id}")
    return owner, dependent


async def attach_dependent(
    db: FirestoreDB,
    owner_cls: Type[OwnerT],
    owner_id: str,
    dependent_cls: Type[DependentT],
    dependent_fields: Mapping[str, Any],
    *,
    reference: str,
    back_reference: str,
) -> Tuple[OwnerT, DependentT]:
    """
    Create a ``dependent_cls`` document against an owner that already exists.

    The owner is read inside the transaction first, so a missing owner raises
    :class:`ReferenceIntegrityError` before anything is written.
    """
    collection = dependent_cls.get_collection_name()
    async with db.start_session() as session:
        try:
            async with session.transaction():
                owner = await session.ensure_exists(owner_cls, owner_id)
                dependent = _build_dependent(dependent_cls, dependent_fields, reference, owner.id)
                session.insert(dependent)
                session.push(owner, back_reference, dependent.id)
        except Exception as exc:
            logger.error(
                f"Transaction aborted while attaching {collection} "
                f"to {owner_cls.get_collection_name()}/{owner_id}: {exc!r}"
            )
            raise

    logger.info(f"Linked {collection}/{dependent.id} to {owner.collection_name}/{owner.id}")
    return owner, dependent


async def fetch_resolved(
    model_cls: Type[OwnerT],
    *,
    populate: Sequence[str],
    doc_id: Optional[str] = None,
    filters: Optional[List[FilterType]] = None,
    db: Optional[FirestoreDB] = None,
) -> Optional[OwnerT]:
    """
    Look a document up by id or by filters (e.g. a unique natural key) and
    resolve the reference fields named in ``populate``.

    Returns ``None`` when nothing matches.
    """
    if (doc_id is None) == (filters is None):
        raise ValueError("Pass exactly one of doc_id or filters.")

    if doc_id is not None:
        found = await model_cls.get(doc_id, db=db)
    else:
        found = await model_cls.find_one(filters, db=db)

    if found is None:
        return None
    return await found.populate(*populate, db=db)


async def find_dependents(
    dependent_cls: Type[DependentT],
    reference: str,
    owner,
    *,
    populate: bool = True,
    db: Optional[FirestoreDB] = None,
) -> List[DependentT]:
    """
    Return every ``dependent_cls`` document whose ``reference`` points at
    ``owner`` (a model, a reference or an id), with that reference resolved
    unless ``populate`` is false.
    """
    owner_id = reference_id(owner)
    dependents = []
    async for dependent in dependent_cls.find(
        filters=[(reference, FirestoreOperators.EQ, owner_id)], db=db
    ):
        if populate:
            await dependent.populate(reference, db=db)
        dependents.append(dependent)
    return dependents

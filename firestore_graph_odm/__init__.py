from typing import Iterable, Type

from .enums import FirestoreOperators, OrderByDirection
from .errors import (
    ConfigurationError,
    OdmError,
    ReferenceIntegrityError,
    TransactionError,
    UniquenessViolation,
)
from .firestore_client import FirestoreDB
from .firestore_fields import FirestoreField
from .firestore_model import BaseFirestoreModel
from .linked import attach_dependent, create_linked, fetch_resolved, find_dependents
from .references import Ref, Reference, Resolved, is_resolved, reference_id
from .session import AsyncSession


def init_firestore_odm(database: FirestoreDB, document_models: Iterable[Type[BaseFirestoreModel]]):
    for model in document_models:
        model.initialize_db(database)
        model.initialize_fields()


__all__ = [
    "AsyncSession",
    "BaseFirestoreModel",
    "ConfigurationError",
    "FirestoreDB",
    "FirestoreField",
    "FirestoreOperators",
    "OdmError",
    "OrderByDirection",
    "Ref",
    "Reference",
    "ReferenceIntegrityError",
    "Resolved",
    "TransactionError",
    "UniquenessViolation",
    "attach_dependent",
    "create_linked",
    "fetch_resolved",
    "find_dependents",
    "init_firestore_odm",
    "is_resolved",
    "reference_id",
]

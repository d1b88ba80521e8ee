import logging
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    AsyncGenerator,
    ClassVar,
    Dict,
    Iterable,
    List,
    Optional,
    Tuple,
    Type,
    Union,
)

from google.cloud.firestore_v1 import AsyncClient
from google.cloud.firestore_v1.base_query import FieldFilter
from google.cloud.firestore_v1.field_path import FieldPath

from .enums import FirestoreOperators, OrderByDirection
from .firestore_client import FirestoreDB
from .firestore_fields import FirestoreField
from .pydantic_compat import BaseModel, Field, PrivateAttr, get_model_config, get_model_fields
from .references import Reference, Resolved, is_reference_collection, reference_target

# Alias for the first element in order-by tuple
FieldType = Union[str, FirestoreField]
# Alias for field ordering tuples
FieldOrderType = Tuple[FieldType, OrderByDirection]
# A single query filter
FilterType = Tuple[FieldType, Union[FirestoreOperators, str], Any]

logger = logging.getLogger(__name__)


class BaseFirestoreModel(BaseModel):
    """
    Base ODM for Firestore with asynchronous operations.

    Subclasses describe their collection in an inner ``Settings`` class:

    * ``name``: collection name.
    * ``unique``: field names whose values must be unique across the collection.
    * ``timestamps``: stamp ``created_at`` / ``updated_at`` on writes.
    """

    model_config = get_model_config()

    id: Optional[str] = Field(default=None)

    # Default handle bound by init_firestore_odm(); every operation also takes db=.
    _db: ClassVar[Optional[FirestoreDB]] = None
    _registry: ClassVar[Dict[str, Type["BaseFirestoreModel"]]] = {}

    # Unique values as last read from or written to the store.
    _stored_unique: Optional[Dict[str, Any]] = PrivateAttr(default=None)

    class Settings:
        name: str = "BaseCollection"
        unique: Tuple[str, ...] = ()
        timestamps: bool = False

    @classmethod
    def __pydantic_init_subclass__(cls, **kwargs):
        super().__pydantic_init_subclass__(**kwargs)
        BaseFirestoreModel._registry[cls.__name__] = cls

    @classmethod
    def initialize_fields(cls) -> None:
        for field_name, field_info in get_model_fields(cls).items():
            alias = (
                FieldPath.document_id() if field_name == "id"
                else (field_info.alias or field_name)
            )
            setattr(cls, field_name, FirestoreField(alias))

    @classmethod
    def initialize_db(cls, db: FirestoreDB):
        """Bind ``db`` as the default handle for this model."""
        cls._db = db

    @classmethod
    def _resolve_db(cls, db: Optional[FirestoreDB] = None) -> FirestoreDB:
        db = db or cls._db
        if not db:
            raise RuntimeError("Database must be initialized before using the model.")
        return db

    @classmethod
    def _client(cls, db: Optional[FirestoreDB] = None) -> AsyncClient:
        return cls._resolve_db(db).client

    # --------------------------------------------------------------------------
    # Collection and field metadata
    # --------------------------------------------------------------------------
    @property
    def collection_name(self) -> str:
        return self.get_collection_name()

    @classmethod
    def get_collection_name(cls) -> str:
        if hasattr(cls, "Settings") and hasattr(cls.Settings, "name"):
            return cls.Settings.name
        return cls.__name__

    @classmethod
    def get_unique_fields(cls) -> Tuple[str, ...]:
        return tuple(getattr(cls.Settings, "unique", ()))

    @classmethod
    def stored_name(cls, field_name: str) -> str:
        """Name under which ``field_name`` is stored (its alias, if any)."""
        field_info = get_model_fields(cls).get(field_name)
        if field_info is None:
            return field_name
        return field_info.alias or field_name

    @classmethod
    def get_reference_collection_fields(cls) -> Tuple[str, ...]:
        """Fields holding back-reference lists, appended to only inside transactions."""
        return tuple(
            name for name, field_info in get_model_fields(cls).items()
            if is_reference_collection(field_info.annotation)
        )

    def unique_values(self) -> List[Tuple[str, Any]]:
        return [
            (self.stored_name(field_name), getattr(self, field_name))
            for field_name in self.get_unique_fields()
            if getattr(self, field_name, None) is not None
        ]

    def stamp_timestamps(self, now: datetime, created: bool = False) -> None:
        if not getattr(self.Settings, "timestamps", False):
            return
        fields = get_model_fields(type(self))
        if created and "created_at" in fields:
            self.created_at = now
        if "updated_at" in fields:
            self.updated_at = now

    # --------------------------------------------------------------------------
    # Document conversion
    # --------------------------------------------------------------------------
    def to_document(self, include: Optional[set] = None) -> dict:
        """Dict as stored in Firestore: aliases, references as ids, no ``id``."""
        return self.model_dump(
            include=include,
            exclude={"id"},
            exclude_none=True,
            by_alias=True,
        )

    @classmethod
    def from_snapshot(cls, snapshot) -> "BaseFirestoreModel":
        data = snapshot.to_dict() or {}
        data["id"] = snapshot.id
        model = cls.model_validate(data)
        model.mark_stored()
        return model

    def mark_stored(self) -> None:
        self._stored_unique = {name: getattr(self, name) for name in self.get_unique_fields()}

    # --------------------------------------------------------------------------
    # CRUD operations: create/update/delete
    # --------------------------------------------------------------------------
    async def save(self, db: Optional[FirestoreDB] = None) -> "BaseFirestoreModel":
        """
        Create the document, together with its unique key guards, in one
        transaction. Raises :class:`UniquenessViolation` when the id or a
        unique value is already taken.
        """
        db = self._resolve_db(db)
        async with db.start_session() as session:
            async with session.transaction():
                session.insert(self)
        return self

    async def update(
        self,
        include: Optional[set] = None,
        db: Optional[FirestoreDB] = None,
    ) -> "BaseFirestoreModel":
        """
        Update fields on an existing document.

        Unique fields are never written here: their guards are only maintained
        by :meth:`save` and :meth:`delete`. Back-reference lists are left out
        too; they only grow through linked transactions.
        """
        db_client = self._client(db)

        if not self.id:
            raise ValueError("Cannot update a document without an ID.")

        unique_fields = set(self.get_unique_fields())
        reference_fields = set(self.get_reference_collection_fields())
        if include:
            if include & unique_fields:
                raise ValueError(f"Unique fields cannot be updated: {sorted(include & unique_fields)}")
            if include & reference_fields:
                raise ValueError(
                    f"Reference collections cannot be updated: {sorted(include & reference_fields)}"
                )
        elif self._stored_unique is not None:
            changed = sorted(
                name for name in unique_fields if getattr(self, name) != self._stored_unique.get(name)
            )
            if changed:
                raise ValueError(f"Unique fields cannot be updated: {changed}")

        self.stamp_timestamps(datetime.now(timezone.utc))
        if include is not None and "updated_at" in get_model_fields(type(self)):
            include = set(include) | {"updated_at"}

        updates = self.to_document(include=include)
        for field_name in unique_fields | reference_fields:
            updates.pop(self.stored_name(field_name), None)

        doc_ref = db_client.collection(self.collection_name).document(self.id)
        logger.debug(f"Update: {self.collection_name} - id={self.id}, updates={updates}")
        if updates:
            await doc_ref.update(updates)
        return self

    async def delete(self, db: Optional[FirestoreDB] = None) -> None:
        """Delete the document and release its unique key guards."""
        db = self._resolve_db(db)

        if not self.id:
            raise ValueError("Cannot delete a document without an ID.")

        async with db.start_session() as session:
            async with session.transaction():
                session.remove(self)

    # --------------------------------------------------------------------------
    # Reads by ID
    # --------------------------------------------------------------------------
    @classmethod
    async def get(cls, doc_id: str, db: Optional[FirestoreDB] = None) -> Optional["BaseFirestoreModel"]:
        """Retrieve a document by its ID, or ``None`` when it does not exist."""
        db_client = cls._client(db)

        doc_ref = db_client.collection(cls.get_collection_name()).document(doc_id)
        doc_snap = await doc_ref.get()

        if doc_snap.exists:
            return cls.from_snapshot(doc_snap)
        return None

    @classmethod
    async def get_many(
        cls, doc_ids: Iterable[str], db: Optional[FirestoreDB] = None
    ) -> Dict[str, "BaseFirestoreModel"]:
        """Fetch several documents at once; missing ids are left out of the result."""
        doc_ids = list(dict.fromkeys(doc_ids))
        if not doc_ids:
            return {}
        db_client = cls._client(db)

        collection_ref = db_client.collection(cls.get_collection_name())
        doc_refs = [collection_ref.document(doc_id) for doc_id in doc_ids]

        found = {}
        async for doc_snap in db_client.get_all(doc_refs):
            if doc_snap.exists:
                found[doc_snap.id] = cls.from_snapshot(doc_snap)
        return found

    @classmethod
    async def exists(cls, doc_id: str, db: Optional[FirestoreDB] = None) -> bool:
        db_client = cls._client(db)

        doc_ref = db_client.collection(cls.get_collection_name()).document(doc_id)
        doc_snap = await doc_ref.get()
        return doc_snap.exists

    # --------------------------------------------------------------------------
    # Queries
    # --------------------------------------------------------------------------
    @classmethod
    async def count(cls, filters: List[FilterType], db: Optional[FirestoreDB] = None) -> int:
        """
        Return the number of documents matching the given filters.
        If the SDK does not support .count(), a manual approach is used.
        """
        db_client = cls._client(db)

        query = cls._build_query(db_client, filters=filters)
        try:
            count_snapshot = await query.count().get()
            return count_snapshot[0][0].value
        except AttributeError:
            logger.warning("Firestore: Performing count by fetching all items with empty select")
            docs = await query.select([]).get()
            return len(docs)

    @classmethod
    async def find(
        cls,
        filters: Optional[List[FilterType]] = None,
        projection: Optional[Type[BaseModel]] = None,
        order_by: Optional[
            Union[List[Union[FieldType, FieldOrderType]], Union[FieldType, FieldOrderType]]
        ] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        db: Optional[FirestoreDB] = None,
    ) -> AsyncGenerator[Union["BaseFirestoreModel", BaseModel], None]:
        """Asynchronously search for documents matching filters and yield instances."""
        db_client = cls._client(db)

        query = cls._build_query(db_client, filters=filters or [], projection=projection)

        if order_by:
            if not isinstance(order_by, list):
                order_by = [order_by]
            for order_by_field in order_by:
                if isinstance(order_by_field, tuple):
                    field, direction = order_by_field
                    query = query.order_by(cls.stored_name(str(field)), direction=str(direction))
                else:
                    query = query.order_by(cls.stored_name(str(order_by_field)))

        if offset is not None:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)

        async for doc in query.stream():
            if projection is None:
                yield cls.from_snapshot(doc)
            else:
                data = doc.to_dict()
                data["id"] = doc.id
                yield projection.model_validate(data)

    @classmethod
    async def find_one(
        cls,
        filters: List[FilterType],
        projection: Optional[Type[BaseModel]] = None,
        order_by: Optional[Union[FieldType, FieldOrderType]] = None,
        db: Optional[FirestoreDB] = None,
    ) -> Optional["BaseFirestoreModel"]:
        """Return the first document matching filters, or None if no match."""
        async for obj in cls.find(
            filters=filters, projection=projection, order_by=order_by, limit=1, db=db
        ):
            return obj
        return None

    @classmethod
    def _build_query(
        cls,
        db_client: AsyncClient,
        filters: List[FilterType],
        projection: Optional[Type[BaseModel]] = None,
    ):
        collection_ref = db_client.collection(cls.get_collection_name())
        query = collection_ref

        for (field_name, op, value) in filters:
            op_string = op.value if isinstance(op, Enum) else op
            query = query.where(
                filter=FieldFilter(cls.stored_name(str(field_name)), op_string, value)
            )

        if projection:
            select_fields = list(projection.model_fields.keys())
            logger.debug(f"Build Query: select fields: {select_fields}")
            query = query.select(select_fields)

        return query

    # --------------------------------------------------------------------------
    # Reference resolution
    # --------------------------------------------------------------------------
    async def populate(self, *field_names: str, db: Optional[FirestoreDB] = None) -> "BaseFirestoreModel":
        """
        Resolve one level of references in place.

        Every :class:`Reference` held by the named fields is replaced by a
        :class:`Resolved` wrapping the fetched document; order is preserved.
        Ids that no longer point at a document stay unresolved.
        """
        for field_name in field_names:
            target = reference_target(type(self), field_name, registry=self._registry)
            value = getattr(self, field_name)
            if value is None:
                continue

            many = isinstance(value, list)
            refs = value if many else [value]
            pending = [ref.id for ref in refs if isinstance(ref, Reference)]
            loaded = await target.get_many(pending, db=db)

            resolved = []
            for ref in refs:
                if isinstance(ref, Reference):
                    if ref.id in loaded:
                        ref = Resolved(loaded[ref.id])
                    else:
                        logger.warning(
                            f"Dangling reference {self.collection_name}/{self.id}.{field_name} "
                            f"-> {target.get_collection_name()}/{ref.id}"
                        )
                resolved.append(ref)

            setattr(self, field_name, resolved if many else resolved[0])
        return self

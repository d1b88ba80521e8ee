"""
Reference fields as an explicit sum type.

A stored document only ever holds the id of the document it points at. In
memory that id is wrapped in :class:`Reference`; once the target has been
fetched (see :meth:`BaseFirestoreModel.populate`) the field holds a
:class:`Resolved` wrapping the full entity instead. The two forms never share
attributes beyond ``id``, so code has to check which one it got before touching
the target's fields:

>>> post.author.entity.email            # type error: Reference has no .entity
>>> if is_resolved(post.author):
...     post.author.entity.email

Both forms serialize to the bare id string.
"""

import typing
from typing import Any, Dict, ForwardRef, Generic, Optional, TypeVar, Union

from pydantic import BaseModel, GetCoreSchemaHandler
from pydantic_core import core_schema

if typing.TYPE_CHECKING:
    from typing_extensions import TypeGuard
else:
    try:
        from typing import TypeGuard
    except ImportError:  # Python < 3.10
        from typing_extensions import TypeGuard

ModelT = TypeVar("ModelT")


def _serialize_id(value: Union["Reference", "Resolved"]) -> Optional[str]:
    return value.id


class Reference(Generic[ModelT]):
    """An unresolved pointer to a document of type ``ModelT``."""

    __slots__ = ("id",)

    def __init__(self, id: str):
        if not id:
            raise ValueError("A reference needs a non-empty document id.")
        self.id = id

    def __eq__(self, other):
        return isinstance(other, Reference) and other.id == self.id

    def __hash__(self):
        return hash(("Reference", self.id))

    def __repr__(self):
        return f"Reference({self.id!r})"

    @classmethod
    def _validate(cls, value: Any) -> "Reference":
        if isinstance(value, Reference):
            return value
        if isinstance(value, str):
            return cls(value)
        raise ValueError(f"Expected a document id, got {type(value).__name__}")

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(_serialize_id),
        )


class Resolved(Generic[ModelT]):
    """A reference whose target has been fetched and embedded."""

    __slots__ = ("entity",)

    def __init__(self, entity: ModelT):
        self.entity = entity

    @property
    def id(self) -> Optional[str]:
        return getattr(self.entity, "id", None)

    def __eq__(self, other):
        return isinstance(other, Resolved) and other.entity == self.entity

    def __repr__(self):
        return f"Resolved({self.entity!r})"

    @classmethod
    def _validate(cls, value: Any) -> "Resolved":
        if isinstance(value, Resolved):
            return value
        if isinstance(value, BaseModel) and getattr(value, "id", None):
            return cls(value)
        raise ValueError(f"Expected a stored model instance, got {type(value).__name__}")

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(_serialize_id),
        )


Ref = Union[Reference[ModelT], Resolved[ModelT]]


def is_resolved(ref: "Ref[ModelT]") -> "TypeGuard[Resolved[ModelT]]":
    return isinstance(ref, Resolved)


def reference_id(value: Any) -> Any:
    """
    Normalise anything that identifies a document to its id string.

    References, resolved references and model instances are unwrapped; other
    values (plain ids, lists of those) are returned as they are.
    """
    if isinstance(value, (Reference, Resolved)):
        return value.id
    if isinstance(value, BaseModel) and hasattr(value, "id"):
        return value.id
    if isinstance(value, (list, tuple)):
        return [reference_id(item) for item in value]
    return value


def _find_reference_arg(annotation: Any) -> Any:
    origin = typing.get_origin(annotation)
    if origin in (Reference, Resolved):
        return typing.get_args(annotation)[0]
    for arg in typing.get_args(annotation):
        target = _find_reference_arg(arg)
        if target is not None:
            return target
    return None


def is_reference_collection(annotation: Any) -> bool:
    """True for ``List[Ref[T]]`` (optionally wrapped in ``Optional``)."""
    origin = typing.get_origin(annotation)
    if origin is list:
        return _find_reference_arg(annotation) is not None
    if origin is Union:
        return any(is_reference_collection(arg) for arg in typing.get_args(annotation))
    return False


def reference_target(model_cls: type, field_name: str, registry: Optional[Dict[str, type]] = None) -> type:
    """
    Return the model class that ``field_name`` of ``model_cls`` points at.

    Works for ``Ref[T]``, ``Optional[Ref[T]]`` and ``List[Ref[T]]``. Forward
    references that pydantic has not evaluated are looked up by class name in
    ``registry``.
    """
    fields = getattr(model_cls, "model_fields", {})
    if field_name not in fields:
        raise ValueError(f"{model_cls.__name__} has no field '{field_name}'")

    target = _find_reference_arg(fields[field_name].annotation)
    if target is None:
        raise ValueError(f"{model_cls.__name__}.{field_name} is not a reference field")

    if isinstance(target, str):
        target = ForwardRef(target)
    if isinstance(target, ForwardRef):
        name = target.__forward_arg__
        if not registry or name not in registry:
            raise ValueError(f"Unknown model '{name}' referenced by {model_cls.__name__}.{field_name}")
        target = registry[name]
    return target


__all__ = [
    "Reference",
    "Resolved",
    "Ref",
    "is_reference_collection",
    "is_resolved",
    "reference_id",
    "reference_target",
]

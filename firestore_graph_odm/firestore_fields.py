from typing import Any, List

from .enums import FirestoreOperators
from .references import reference_id


class FirestoreField:
    """
    Class-level stand-in for a model field, used to build query filters.

    Examples
    --------
    >>> Post.author == user
    ('author', FirestoreOperators.EQ, 'Xb3...')
    >>> User.posts.array_contains(post)
    ('posts', FirestoreOperators.ARRAY_CONTAINS, 'k9P...')

    Accessed on the class the descriptor itself is returned so comparisons can
    be chained; on an instance the stored value wins. References, resolved
    references and model instances on the right-hand side are reduced to
    their document id, which is what the stored document holds.
    """

    def __init__(self, field_name: str):
        self.field_name = field_name

    def __get__(self, instance, owner):
        if instance is None:
            return self
        return getattr(instance, self.field_name, None)

    def __str__(self) -> str:
        return self.field_name

    __repr__ = __str__

    def __hash__(self) -> int:
        return hash(self.field_name)

    def _filter(self, op: FirestoreOperators, value: Any) -> tuple:
        return (self.field_name, op, reference_id(value))

    def __eq__(self, other):  # type: ignore[override]
        return self._filter(FirestoreOperators.EQ, other)

    def __ne__(self, other):  # type: ignore[override]
        return self._filter(FirestoreOperators.NE, other)

    def __lt__(self, other):
        return self._filter(FirestoreOperators.LT, other)

    def __le__(self, other):
        return self._filter(FirestoreOperators.LTE, other)

    def __gt__(self, other):
        return self._filter(FirestoreOperators.GT, other)

    def __ge__(self, other):
        return self._filter(FirestoreOperators.GTE, other)

    def in_(self, values: List[Any]) -> tuple:
        return self._filter(FirestoreOperators.IN, list(values))

    def array_contains(self, value: Any) -> tuple:
        return self._filter(FirestoreOperators.ARRAY_CONTAINS, value)

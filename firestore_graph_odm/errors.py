"""
Exception hierarchy for the ODM.

Everything derives from :class:`OdmError`, itself a ``RuntimeError`` so that
callers catching the generic runtime failures raised by older code keep working.
Transport failures coming from ``google.api_core.exceptions`` are never wrapped.
"""

from typing import Optional, Sequence


class OdmError(RuntimeError):
    """Base class for every error raised by the ODM itself."""


class ConfigurationError(OdmError):
    """The connection string is missing or cannot be parsed."""


class TransactionError(OdmError):
    """A session or transaction was used out of order."""


class UniquenessViolation(OdmError):
    """A write collided with an existing unique key or document id."""

    def __init__(
        self,
        collection: str,
        keys: Sequence[str] = (),
        detail: Optional[str] = None,
    ):
        self.collection = collection
        self.keys = tuple(keys)
        self.detail = detail
        message = f"Unique constraint violated in '{collection}'"
        if self.keys:
            message += f" (one of: {', '.join(self.keys)})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ReferenceIntegrityError(OdmError):
    """A reference points at a document that does not exist."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"Referenced document '{collection}/{doc_id}' does not exist.")

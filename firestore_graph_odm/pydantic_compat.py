import logging

from packaging.version import parse
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic.version import VERSION

logger = logging.getLogger(__name__)

version_parsed = parse(str(VERSION))
PydanticVersion = version_parsed.major

if PydanticVersion < 2:
    raise ImportError(f"firestore_graph_odm requires pydantic 2, found {VERSION}.")

# ``populate_by_name`` is deprecated from 2.11 on in favour of the
# ``validate_by_name`` / ``validate_by_alias`` pair.
PYDANTIC_V2_11_PLUS = version_parsed >= parse("2.11")

logger.debug(f"Using pydantic {VERSION}")


def get_model_config(**extra) -> ConfigDict:
    """Model config accepting both field names and aliases on input."""
    if PYDANTIC_V2_11_PLUS:
        config = ConfigDict(validate_by_name=True, validate_by_alias=True)
    else:
        config = ConfigDict(populate_by_name=True)
    config.update(extra)
    return config


def get_model_fields(cls: type) -> dict:
    return getattr(cls, "model_fields", {})


__all__ = [
    "BaseModel",
    "ConfigDict",
    "Field",
    "PrivateAttr",
    "get_model_config",
    "get_model_fields",
    "PydanticVersion",
    "PYDANTIC_V2_11_PLUS",
]

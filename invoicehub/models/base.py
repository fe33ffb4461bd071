"""Mapping layer between realtime-tree nodes and typed models.

Nodes are camelCase JSON. Arrays written by other clients may come back as
index-keyed objects (the tree drops holes), and older records carry full
ISO datetimes in date-only fields; both are normalized here on read.
"""

from datetime import date, datetime
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python


def as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, dict):
        def _order(key):
            try:
                return (0, int(key))
            except (TypeError, ValueError):
                return (1, str(key))

        return [value[k] for k in sorted(value, key=_order) if value[k] is not None]
    return [v for v in value if v is not None]


def _coerce_date(value: Any) -> Any:
    if value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10:
        return value[:10]
    return value


IsoDate = Annotated[date, BeforeValidator(_coerce_date)]


class StoreModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_node(self, exclude: Optional[set[str]] = None) -> dict[str, Any]:
        """Encode for writing. ``None`` fields are dropped, the tree has no nulls."""
        return self.model_dump(
            mode="json", by_alias=True, exclude_none=True, exclude=exclude
        )

    @classmethod
    def from_node(cls, node: Optional[dict], **overrides: Any):
        """Decode a stored node; ``overrides`` (snake_case) win over stored keys."""
        data = dict(node or {})
        data.update({to_camel(k): v for k, v in overrides.items()})
        return cls.model_validate(data)


def encode_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Encode a partial update (snake_case keys) into node keys and JSON values.

    ``None`` is kept: in a merge it removes the stored key.
    """
    return {
        to_camel(key): to_jsonable_python(value, by_alias=True, exclude_none=True)
        for key, value in fields.items()
    }

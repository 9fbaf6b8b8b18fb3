"""Cache key derivation.

Key schema:
    <entity>:<field>:<value>        -> JSON record (one key per unique field)
    <collection>:<owner>:<owner_id> -> JSON list of records
"""

from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple


@dataclass(frozen=True)
class EntityKeys:
    """Builds every cache key that can reference a record of one entity."""

    entity: str
    fields: Tuple[str, ...]

    def key(self, field: str, value: Any) -> str:
        if field not in self.fields:
            raise ValueError(
                f"'{field}' is not a unique field of {self.entity} (expected one of {', '.join(self.fields)})"
            )
        if value is None:
            raise ValueError(f"{self.entity}.{field} lookup needs a value")
        return f"{self.entity}:{field}:{value}"

    def keys_for(self, record: Any) -> List[str]:
        """Keys for each unique field of ``record`` that has a value."""
        keys = []
        for field in self.fields:
            if isinstance(record, Mapping):
                value = record.get(field)
            else:
                value = getattr(record, field, None)
            if value is not None:
                keys.append(self.key(field, value))
        return keys


def collection_key(collection: str, owner: str, owner_id: Any) -> str:
    """Key of a cached list, e.g. ``sessions:user:<id>``."""
    return f"{collection}:{owner}:{owner_id}"

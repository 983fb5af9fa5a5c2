"""
Index tags for the shared vector index.

Activities and documents live in one index, and their ids come from
separate tables, so every entry is keyed by kind and id together.
"""

from dataclasses import dataclass
from typing import Any, Dict, Union

from ..core.models import RecordKind

RECORD_KINDS = frozenset(kind.value for kind in RecordKind)


@dataclass(frozen=True)
class IndexTag:
    """
    Identity of one index entry.

    The serialised key is "<kind>:<id>", e.g. "document:12".
    """
    kind: RecordKind
    record_id: int

    def __post_init__(self):
        # Accept plain strings such as "activity"
        object.__setattr__(self, "kind", RecordKind(self.kind))
        object.__setattr__(self, "record_id", int(self.record_id))

    @property
    def key(self) -> str:
        return f"{self.kind.value}:{self.record_id}"

    def __str__(self) -> str:
        return self.key

    @classmethod
    def parse(cls, key: str) -> "IndexTag":
        """Rebuild a tag from its serialised key"""
        kind, sep, record_id = key.partition(":")
        if not sep or kind not in RECORD_KINDS:
            raise ValueError(f"Invalid index key: {key!r}")
        return cls(RecordKind(kind), int(record_id))

    @classmethod
    def activity(cls, record_id: int) -> "IndexTag":
        return cls(RecordKind.ACTIVITY, record_id)

    @classmethod
    def document(cls, record_id: int) -> "IndexTag":
        return cls(RecordKind.DOCUMENT, record_id)

    def to_metadata(self) -> Dict[str, Union[str, int]]:
        return {"kind": self.kind.value, "record_id": self.record_id}

    @classmethod
    def from_metadata(cls, metadata: Dict[str, Any]) -> "IndexTag":
        return cls(RecordKind(metadata["kind"]), int(metadata["record_id"]))

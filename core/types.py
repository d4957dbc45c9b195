"""
Result types shared by the coordinators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from core.models import Collection, Post, serialize_fields

Record = Union[Collection, Post]


@dataclass
class MutationResult:
    """Outcome of one state transition.

    ``attempted`` is the record the actor expected to produce (the
    optimistic state); ``confirmed`` is what the store returned when
    re-read after the write. Both are None after a deletion.
    """
    action: str
    collection_id: str
    attempted: Optional[Record] = None
    confirmed: Optional[Record] = None
    changed_fields: Dict[str, Any] = field(default_factory=dict)
    committed: bool = True

    @property
    def noop(self) -> bool:
        """True when the transition was already satisfied and nothing was written."""
        return not self.committed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "collection_id": self.collection_id,
            "committed": self.committed,
            "changed_fields": serialize_fields(self.changed_fields),
            "confirmed": self.confirmed.to_row() if self.confirmed is not None else None,
        }

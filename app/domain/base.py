"""Base classes for the domain layer.

Records are snapshots of store rows keyed by their integer id, value
objects are frozen dataclasses, and events carry a flat JSON payload for
the outbox.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, ClassVar
from uuid import UUID, uuid4


@dataclass(frozen=True)
class ValueObject:
    """Immutable value compared by its attributes.

    Subclasses normalise their fields in ``__post_init__`` and raise
    ``ValidationError`` for input that cannot be normalised.
    """


@dataclass(eq=False)
class Entity:
    """Snapshot of a stored record, equal to another snapshot of the same row.

    Attributes:
        id: Store-assigned identifier.
    """

    id: int

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and other.id == self.id

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.id))


# ============================================================================
# Domain Event Base
# ============================================================================


def _jsonable(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_jsonable(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class DomainEvent:
    """Something that happened in the core, staged in the outbox.

    Subclasses set ``event_type`` and declare their payload as dataclass
    fields with defaults; every field not declared here becomes a key of
    the payload.

    Attributes:
        event_id: Unique identifier for this event instance.
        occurred_at: When the event occurred.
        aggregate_id: ID of the record that emitted this event.
        aggregate_type: Type name of the record.
    """

    event_type: ClassVar[str]

    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    aggregate_id: str = ""
    aggregate_type: str = ""

    @property
    def payload(self) -> dict[str, Any]:
        """Event-specific fields as JSON-compatible values."""
        envelope = {f.name for f in fields(DomainEvent)}
        return {
            f.name: _jsonable(getattr(self, f.name))
            for f in fields(self)
            if f.name not in envelope
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize the event for the outbox."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "occurred_at": self.occurred_at.isoformat(),
            "aggregate_id": self.aggregate_id,
            "aggregate_type": self.aggregate_type,
            "payload": self.payload,
        }

"""Transport envelopes — what actually crosses a channel.

Learn: Everything arriving from Redis or a PG NOTIFY is untrusted JSON.
It is validated into one of these models at the transport boundary, so
a malformed message fails right there instead of surfacing as a KeyError
deep inside a store.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class BroadcastMessage(BaseModel):
    """One broadcast on a channel: an event tag plus an opaque payload."""
    event: str = Field(..., min_length=1)
    payload: Any = None


class RowChange(BaseModel):
    """A durable row change, as emitted by the row_changes NOTIFY trigger."""
    table: str
    operation: Literal["INSERT", "UPDATE", "DELETE"]
    new: Optional[dict[str, Any]] = None
    old: Optional[dict[str, Any]] = None

    @property
    def row(self) -> Optional[dict[str, Any]]:
        """The row a filter applies to — the old row for deletes."""
        return self.old if self.operation == "DELETE" else self.new

"""Change feed event schema."""

from typing import Any, Literal

from pydantic import Field

from chatgenius.schemas.common import BaseSchema

ChangeEventType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseSchema):
    """Row-level change notification.

    ``new`` and ``old`` are storage rows (snake_case keys). ``old`` is empty
    for inserts and ``new`` is empty for deletes.
    """

    event_type: ChangeEventType
    table: str
    schema_name: str = Field(default="public", alias="schema")
    new: dict[str, Any] = {}
    old: dict[str, Any] = {}

    @property
    def record(self) -> dict[str, Any]:
        """The row the event is about: ``new``, or ``old`` for deletes."""
        return self.new or self.old

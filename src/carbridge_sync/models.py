from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import to_jsonable_python

IDENTIFIER_FIELD = "fzg_id"
# Fields owned by the document store, never projected into the index.
STORE_PRIVATE_FIELDS = frozenset({"_id", "__v"})


class MalformedEventError(ValueError):
    """Raised when an inbound payload can never be processed, regardless of retries."""


class Disposition(str, Enum):
    ACK = "ack"
    REQUEUE = "requeue"
    DISCARD = "discard"


class ChangeEvent(BaseModel):
    """Inbound notification naming a record that needs re-synchronization."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)

    @field_validator("id")
    @classmethod
    def _validate_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("id must not be blank")
        return value


def parse_change_event(body: bytes) -> ChangeEvent:
    try:
        return ChangeEvent.model_validate_json(body)
    except ValueError as exc:
        # pydantic.ValidationError subclasses ValueError; covers bad JSON and bad shape alike.
        raise MalformedEventError(f"Malformed change event: {exc}") from exc


def build_search_document(record: dict[str, Any]) -> dict[str, Any]:
    """Project a canonical record into an index document.

    Every field is copied except the store-private bookkeeping fields. Values
    are converted to JSON-compatible types; datetimes become ISO-8601 strings,
    binary values become base64 text, and anything else without a JSON form
    (e.g. ObjectId) falls back to ``str``.
    """
    projected = {key: value for key, value in record.items() if key not in STORE_PRIVATE_FIELDS}
    return to_jsonable_python(projected, fallback=str, bytes_mode="base64")

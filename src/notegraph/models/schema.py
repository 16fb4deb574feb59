"""Data models for notegraph.

Pydantic models used at the service boundary: parameter models for
mutations and immutable read models converted from database rows.
"""

import datetime
from datetime import timezone
from enum import Enum
from typing import List, Optional

import uuid6
from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes even for columns declared with
    ``timezone=True``; those values were written as UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def new_uuid() -> str:
    """Generate a time-ordered external identifier (UUIDv7) for a note."""
    return str(uuid6.uuid7())


class LinkState(str, Enum):
    """Resolution state of a reference between notes.

    PENDING links carry only the target title; RESOLVED links point at a
    note id; BROKEN links were given up on and keep the title for display.
    """

    PENDING = "pending"
    RESOLVED = "resolved"
    BROKEN = "broken"


class ChangeKind(str, Enum):
    """Kinds of committed mutations reported to the change notifier."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


def _validate_title(v: str) -> str:
    if not v or not v.strip():
        raise ValueError("Title cannot be empty")
    return v.strip()


class NoteCreate(BaseModel):
    """Parameters for creating a note.

    ``collection_id`` of None means the configured default collection.
    """

    title: str = Field(..., description="Title, unique within the collection")
    body: Optional[str] = Field(default=None, description="Markdown body")
    description: Optional[str] = Field(default=None)
    collection_id: Optional[int] = Field(default=None)
    note_type_id: Optional[int] = Field(default=None)
    is_template: bool = Field(default=False)
    uuid: str = Field(default_factory=new_uuid, description="External identifier")

    model_config = {"extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        return _validate_title(v)


class NoteReplace(BaseModel):
    """Parameters for a full replace of an existing note.

    Every field is written as given, except ``collection_id`` and
    ``uuid``: None keeps the stored value.
    """

    id: int = Field(..., description="Internal id of the note to replace")
    title: str
    body: Optional[str] = None
    description: Optional[str] = None
    collection_id: Optional[int] = None
    note_type_id: Optional[int] = None
    is_template: bool = False
    uuid: Optional[str] = None

    model_config = {"extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        return _validate_title(v)


class Note(BaseModel):
    """A stored note."""

    id: int
    uuid: str
    title: str
    body: Optional[str] = None
    description: Optional[str] = None
    collection_id: int
    note_type_id: Optional[int] = None
    is_template: bool = False
    version: int = 1
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class Link(BaseModel):
    """A reference from one note to another, in one of three states."""

    id: int
    source_id: int = Field(..., description="ID of the note containing the reference")
    target_id: Optional[int] = Field(
        default=None, description="ID of the referenced note, once resolved"
    )
    target_title: Optional[str] = Field(
        default=None, description="Referenced title while the link is unresolved"
    )
    display_text: Optional[str] = None
    is_embed: bool = False
    state: LinkState = LinkState.PENDING
    created_at: datetime.datetime = Field(default_factory=utc_now)
    updated_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
        "frozen": True,  # Links are immutable
    }


class Tag(BaseModel):
    """A tag for categorizing notes."""

    id: Optional[int] = None
    name: str = Field(..., description="Tag name")

    model_config = {"validate_assignment": True, "frozen": True}

    def __str__(self) -> str:
        """Return string representation of tag."""
        return self.name


class MetaEntry(BaseModel):
    """A key/value pair derived from a note's front-matter."""

    note_id: int
    key: str
    value: Optional[str] = None

    model_config = {"frozen": True}


class NoteRelationships(BaseModel):
    """Ids of everything a note is connected to through derived rows."""

    note_id: int
    outgoing_note_ids: List[int] = Field(default_factory=list)
    incoming_note_ids: List[int] = Field(default_factory=list)
    tag_ids: List[int] = Field(default_factory=list)


class ChangeEvent(BaseModel):
    """A committed mutation, as delivered to a change notifier."""

    note_id: int
    kind: ChangeKind
    timestamp: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class SweepResult(BaseModel):
    """Outcome of a pending-link resolution pass."""

    examined: int = 0
    resolved: int = 0
    merged: int = 0
    resolved_link_ids: List[int] = Field(default_factory=list)

"""Pydantic schemas for Document model validation.

Field names are exposed to clients in camelCase (``parentDocument``,
``isArchived`` ...); requests may use either spelling.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DocumentCreate(BaseModel):
    """Schema for creating a new document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: str = Field(
        "Untitled",
        max_length=255,
        description="Document title (empty becomes 'Untitled')",
        examples=["Untitled", "Reading list"],
    )
    parent_document: Optional[UUID] = Field(
        None,
        description="Parent document to nest under (null = root)",
    )


class DocumentUpdate(BaseModel):
    """Schema for a partial document update.

    Only the fields present in the request body are written.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    title: Optional[str] = Field(
        None,
        max_length=255,
        description="Document title",
    )
    content: Optional[str] = Field(
        None,
        description="Serialized rich text document",
    )
    cover_image: Optional[str] = Field(
        None,
        max_length=2048,
        description="Cover image URL",
    )
    icon: Optional[str] = Field(
        None,
        max_length=64,
        description="Emoji icon",
    )
    is_published: Optional[bool] = Field(
        None,
        description="Whether the document is readable without signing in",
    )


class DocumentResponse(BaseModel):
    """Schema for full document response."""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: UUID
    title: str
    content: Optional[str] = None
    cover_image: Optional[str] = None
    icon: Optional[str] = None
    parent_document: Optional[UUID] = None
    user_id: str
    is_archived: bool = False
    is_published: bool = False
    created_at: datetime
    updated_at: datetime

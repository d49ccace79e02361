"""Document SQLAlchemy model for the note tree.

Documents form a per-owner forest through ``parent_document``. Archiving is
a soft delete flag that cascades to descendants; publishing makes a live
document readable without authentication.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID

from ..database import Base


class Document(Base):
    """
    Document model representing a node of a user's note tree.

    Attributes:
        id: Unique identifier (UUID)
        title: Document title ("Untitled" when created without one)
        content: Serialized rich text document (absent until first edit)
        cover_image: URL of the cover image
        icon: Emoji shown next to the title
        parent_document: FK to the parent document (null = root)
        user_id: Owner subject from the identity provider (never changes)
        is_archived: Soft delete flag
        is_published: Readable by anyone while not archived
        created_at: Timestamp when document was created
        updated_at: Timestamp when document was last updated
    """

    __tablename__ = "Documents"
    __allow_unmapped__ = True

    # Primary key
    id = Column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    # Document details
    title = Column(
        String(255),
        nullable=False,
        default="Untitled",
    )

    content = Column(
        Text,
        nullable=True,
    )

    cover_image = Column(
        String(2048),
        nullable=True,
    )

    icon = Column(
        String(64),
        nullable=True,
    )

    # Tree link (null = root)
    parent_document = Column(
        UUID(as_uuid=True),
        ForeignKey("Documents.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Owner
    user_id = Column(
        String(255),
        nullable=False,
    )

    # Flags
    is_archived = Column(
        Boolean,
        nullable=False,
        default=False,
    )

    is_published = Column(
        Boolean,
        nullable=False,
        default=False,
    )

    # Timestamps
    created_at = Column(
        DateTime,
        default=datetime.utcnow,
        nullable=False,
    )

    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_documents_user", "user_id"),
        Index("ix_documents_user_parent", "user_id", "parent_document"),
    )

    def __repr__(self) -> str:
        """String representation of Document."""
        return f"<Document(id={self.id}, title={self.title[:30] if self.title else ''})>"

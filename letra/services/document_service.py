"""Document tree business logic.

Owns every rule about a user's document forest: ownership checks, the
visibility rule for published documents, the per-level sidebar query, and
the archive/restore cascades. Cascades walk the tree level by level with an
explicit worklist and write each flag change with one bulk UPDATE, all in
the caller's transaction, so a subtree is archived or restored as a unit.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models.document import Document

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled"

# Fields a client may change through update_document
UPDATABLE_FIELDS = frozenset({"title", "content", "cover_image", "icon", "is_published"})

# Columns that cannot hold NULL; an explicit null for them is ignored
_NON_NULLABLE_FIELDS = frozenset({"title", "is_published"})


class DocumentServiceError(Exception):
    """Base error for document operations, carrying its HTTP status."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotAuthenticatedError(DocumentServiceError):
    """No identity was supplied for an operation that needs one."""

    status_code = 401


class NotAuthorizedError(DocumentServiceError):
    """The caller is authenticated but does not own the document."""

    status_code = 403


class DocumentNotFoundError(DocumentServiceError):
    """The referenced document does not exist."""

    status_code = 404


class CascadeDepthExceededError(DocumentServiceError):
    """A subtree is deeper than settings.cascade_max_depth."""

    status_code = 409


@dataclass
class CascadeResult:
    """Outcome of an archive or restore: the target and every descendant touched."""

    document: Document
    descendant_ids: list[UUID] = field(default_factory=list)

    @property
    def affected_ids(self) -> list[UUID]:
        return [self.document.id, *self.descendant_ids]


# ============================================================================
# Helpers
# ============================================================================


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise NotAuthenticatedError("Not authenticated")
    return user_id


async def get_owned_document(
    db: AsyncSession,
    user_id: Optional[str],
    document_id: UUID,
) -> Document:
    """
    Load a document and verify the caller owns it.

    Raises:
        NotAuthenticatedError: if user_id is missing
        DocumentNotFoundError: if the document does not exist
        NotAuthorizedError: if the document belongs to someone else
    """
    user_id = _require_user(user_id)

    document = await db.get(Document, document_id)
    if document is None:
        raise DocumentNotFoundError(f"Document {document_id} not found")

    if document.user_id != user_id:
        raise NotAuthorizedError("Unauthorized")

    return document


def _batched(ids: list[UUID], batch_size: Optional[int] = None) -> Iterator[list[UUID]]:
    """Split ids into slices small enough to bind in one IN (...) clause."""
    size = batch_size or settings.cascade_batch_size
    for start in range(0, len(ids), size):
        yield ids[start:start + size]


async def collect_descendant_ids(
    db: AsyncSession,
    user_id: str,
    root_id: UUID,
    max_depth: Optional[int] = None,
) -> list[UUID]:
    """
    Collect the ids of every descendant of root_id owned by user_id.

    Breadth-first: one indexed query per tree level fetches the children of
    the whole frontier. Each id is returned once even if the stored links
    contain a cycle.

    Args:
        db: Database session
        user_id: Owner whose documents are walked
        root_id: Document whose subtree is collected (not included)
        max_depth: Deepest level to walk, defaults to settings.cascade_max_depth

    Returns:
        Descendant ids in level order

    Raises:
        CascadeDepthExceededError: if the subtree is deeper than max_depth
    """
    if max_depth is None:
        max_depth = settings.cascade_max_depth

    visited: set[UUID] = {root_id}
    descendants: list[UUID] = []
    frontier: list[UUID] = [root_id]
    depth = 0

    while frontier:
        children: list[UUID] = []
        for batch in _batched(frontier):
            result = await db.execute(
                select(Document.id).where(
                    Document.user_id == user_id,
                    Document.parent_document.in_(batch),
                )
            )
            for child_id in result.scalars().all():
                if child_id not in visited:
                    visited.add(child_id)
                    children.append(child_id)
        if not children:
            break

        depth += 1
        if depth > max_depth:
            logger.warning(
                f"Cascade from document {root_id} exceeded max depth {max_depth}"
            )
            raise CascadeDepthExceededError(
                f"Document tree is deeper than {max_depth} levels"
            )

        descendants.extend(children)
        frontier = children

    return descendants


async def _set_archived(db: AsyncSession, ids: list[UUID], archived: bool) -> None:
    for batch in _batched(ids):
        await db.execute(
            update(Document)
            .where(Document.id.in_(batch))
            .values(is_archived=archived)
        )


# ============================================================================
# Mutations
# ============================================================================


async def create_document(
    db: AsyncSession,
    user_id: Optional[str],
    title: str,
    parent_document: Optional[UUID] = None,
) -> Document:
    """
    Create a live, unpublished document owned by the caller.

    An empty title is stored as "Untitled". When a parent is given it must
    exist and belong to the caller.

    Raises:
        NotAuthenticatedError, DocumentNotFoundError, NotAuthorizedError
    """
    user_id = _require_user(user_id)

    if parent_document is not None:
        parent = await db.get(Document, parent_document)
        if parent is None:
            raise DocumentNotFoundError(f"Parent document {parent_document} not found")
        if parent.user_id != user_id:
            raise NotAuthorizedError("Unauthorized")

    document = Document(
        title=title if title and title.strip() else DEFAULT_TITLE,
        parent_document=parent_document,
        user_id=user_id,
        is_archived=False,
        is_published=False,
    )
    db.add(document)
    await db.flush()
    await db.refresh(document)

    logger.info(f"Document {document.id} created by {user_id} (parent={parent_document})")
    return document


async def archive_document(
    db: AsyncSession,
    user_id: Optional[str],
    document_id: UUID,
) -> CascadeResult:
    """
    Archive a document and its whole subtree.

    Archiving an already archived document is a no-op that still succeeds.
    """
    document = await get_owned_document(db, user_id, document_id)

    descendant_ids = await collect_descendant_ids(db, document.user_id, document.id)

    document.is_archived = True
    await _set_archived(db, descendant_ids, True)
    await db.flush()
    await db.refresh(document)

    logger.info(
        f"Document {document.id} archived with {len(descendant_ids)} descendant(s)"
    )
    return CascadeResult(document=document, descendant_ids=descendant_ids)


async def restore_document(
    db: AsyncSession,
    user_id: Optional[str],
    document_id: UUID,
) -> CascadeResult:
    """
    Restore a document and its whole subtree from the trash.

    If the document's parent is still archived (or gone) the document is
    detached and becomes a root, so it never hides behind an archived
    ancestor. Descendants keep their links to the restored document.
    """
    document = await get_owned_document(db, user_id, document_id)

    descendant_ids = await collect_descendant_ids(db, document.user_id, document.id)

    if document.parent_document is not None:
        parent = await db.get(Document, document.parent_document)
        if parent is None or parent.is_archived:
            logger.info(
                f"Detaching restored document {document.id} from archived parent "
                f"{document.parent_document}"
            )
            document.parent_document = None

    document.is_archived = False
    await _set_archived(db, descendant_ids, False)
    await db.flush()
    await db.refresh(document)

    logger.info(
        f"Document {document.id} restored with {len(descendant_ids)} descendant(s)"
    )
    return CascadeResult(document=document, descendant_ids=descendant_ids)


async def remove_document(
    db: AsyncSession,
    user_id: Optional[str],
    document_id: UUID,
    cascade: bool = False,
) -> list[UUID]:
    """
    Permanently delete a document.

    Args:
        cascade: If true, delete the whole subtree. If false (default), the
                 direct children are detached and become roots.

    Returns:
        Ids of every deleted document, target first
    """
    document = await get_owned_document(db, user_id, document_id)

    deleted_ids = [document.id]
    if cascade:
        descendant_ids = await collect_descendant_ids(db, document.user_id, document.id)
        for batch in _batched(descendant_ids):
            await db.execute(delete(Document).where(Document.id.in_(batch)))
        deleted_ids.extend(descendant_ids)
    else:
        await db.execute(
            update(Document)
            .where(Document.parent_document == document.id)
            .values(parent_document=None)
        )

    await db.delete(document)
    await db.flush()

    logger.info(f"Document {document_id} permanently deleted ({len(deleted_ids)} row(s))")
    return deleted_ids


async def update_document(
    db: AsyncSession,
    user_id: Optional[str],
    document_id: UUID,
    changes: dict[str, Any],
) -> Document:
    """
    Apply a partial update to a document the caller owns.

    Only keys present in ``changes`` are written. Title normalization is
    left to the client; the title is stored as given.

    Raises:
        ValueError: if ``changes`` names a field that cannot be updated
    """
    unknown = set(changes) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")

    document = await get_owned_document(db, user_id, document_id)

    for name, value in changes.items():
        if value is None and name in _NON_NULLABLE_FIELDS:
            continue
        setattr(document, name, value)

    await db.flush()
    await db.refresh(document)
    return document


async def remove_cover_image(
    db: AsyncSession,
    user_id: Optional[str],
    document_id: UUID,
) -> Document:
    """Clear a document's cover image."""
    document = await get_owned_document(db, user_id, document_id)
    document.cover_image = None
    await db.flush()
    await db.refresh(document)
    return document


async def remove_icon(
    db: AsyncSession,
    user_id: Optional[str],
    document_id: UUID,
) -> Document:
    """Clear a document's icon."""
    document = await get_owned_document(db, user_id, document_id)
    document.icon = None
    await db.flush()
    await db.refresh(document)
    return document


# ============================================================================
# Queries
# ============================================================================


async def get_document_by_id(
    db: AsyncSession,
    user_id: Optional[str],
    document_id: UUID,
) -> Document:
    """
    Fetch a document subject to the visibility rule.

    A published, live document is visible to anyone. Anything else is
    visible only to its authenticated owner.
    """
    document = await db.get(Document, document_id)
    if document is None:
        raise DocumentNotFoundError(f"Document {document_id} not found")

    if document.is_published and not document.is_archived:
        return document

    if not user_id:
        raise NotAuthenticatedError("Not authenticated")

    if document.user_id != user_id:
        raise NotAuthorizedError("Unauthorized")

    return document


async def list_sidebar(
    db: AsyncSession,
    user_id: Optional[str],
    parent_document: Optional[UUID] = None,
) -> list[Document]:
    """
    List one level of the caller's live tree, newest first.

    Args:
        parent_document: Parent whose children are listed (None = roots)
    """
    user_id = _require_user(user_id)

    query = select(Document).where(
        Document.user_id == user_id,
        Document.is_archived.is_(False),
    )
    if parent_document is None:
        query = query.where(Document.parent_document.is_(None))
    else:
        query = query.where(Document.parent_document == parent_document)

    result = await db.execute(
        query.order_by(Document.created_at.desc(), Document.id.desc())
    )
    return list(result.scalars().all())


async def list_trash(db: AsyncSession, user_id: Optional[str]) -> list[Document]:
    """List every archived document of the caller, newest first."""
    user_id = _require_user(user_id)

    result = await db.execute(
        select(Document)
        .where(Document.user_id == user_id, Document.is_archived.is_(True))
        .order_by(Document.created_at.desc(), Document.id.desc())
    )
    return list(result.scalars().all())


async def list_search(db: AsyncSession, user_id: Optional[str]) -> list[Document]:
    """List every live document of the caller, newest first, ignoring hierarchy."""
    user_id = _require_user(user_id)

    result = await db.execute(
        select(Document)
        .where(Document.user_id == user_id, Document.is_archived.is_(False))
        .order_by(Document.created_at.desc(), Document.id.desc())
    )
    return list(result.scalars().all())

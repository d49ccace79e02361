"""Document tree API endpoints.

Exposes the document tree operations (create, archive, restore, remove,
update, sidebar/trash/search listings and fetch-by-id) over REST. Every
endpoint except fetch-by-id requires authentication; fetch-by-id serves
published documents to anonymous readers.
"""

import logging
from datetime import datetime
from typing import Annotated, Iterable, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.document import DocumentCreate, DocumentResponse, DocumentUpdate
from ..services import document_service
from ..services.auth_service import get_current_user, get_optional_user
from ..websocket.manager import MessageType, manager

router = APIRouter(prefix="/api/documents", tags=["Documents"])

logger = logging.getLogger(__name__)

_ERROR_RESPONSES = {
    401: {"description": "Not authenticated"},
    403: {"description": "Access denied - not the owner"},
    404: {"description": "Document not found"},
}


async def _broadcast_document_event(
    message_type: MessageType,
    user_id: str,
    document_ids: Iterable[UUID],
    parent_document: Optional[UUID] = None,
) -> None:
    """Tell the owner's open clients which documents changed.

    Called after commit so clients re-fetch committed data. A failed
    broadcast never fails the request.
    """
    message = {
        "type": message_type,
        "data": {
            "document_ids": [str(document_id) for document_id in document_ids],
            "parent_document": str(parent_document) if parent_document else None,
            "timestamp": datetime.utcnow().isoformat(),
        },
    }
    try:
        await manager.broadcast_to_user(user_id, message)
    except Exception as e:
        logger.warning(f"Failed to broadcast {message_type.value} for user {user_id}: {e}")


# ============================================================================
# Listing endpoints (MUST be before /{document_id} to avoid path matching)
# ============================================================================


@router.get(
    "/sidebar",
    response_model=List[DocumentResponse],
    summary="List one level of the document tree",
    responses={401: _ERROR_RESPONSES[401]},
)
async def get_sidebar(
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    parent_document: Optional[UUID] = Query(
        None,
        alias="parentDocument",
        description="List children of this document (omit for root documents)",
    ),
) -> List[DocumentResponse]:
    """
    List the caller's live documents directly under ``parentDocument``.

    Newest first. Only one level is returned; clients fetch deeper levels
    as tree nodes are expanded.
    """
    documents = await document_service.list_sidebar(db, current_user, parent_document)
    return [DocumentResponse.model_validate(doc) for doc in documents]


@router.get(
    "/trash",
    response_model=List[DocumentResponse],
    summary="List archived documents",
    responses={401: _ERROR_RESPONSES[401]},
)
async def get_trash(
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> List[DocumentResponse]:
    """List every archived document of the caller, newest first."""
    documents = await document_service.list_trash(db, current_user)
    return [DocumentResponse.model_validate(doc) for doc in documents]


@router.get(
    "/search",
    response_model=List[DocumentResponse],
    summary="List all live documents for search",
    responses={401: _ERROR_RESPONSES[401]},
)
async def get_search(
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> List[DocumentResponse]:
    """List every live document of the caller as a flat list, newest first."""
    documents = await document_service.list_search(db, current_user)
    return [DocumentResponse.model_validate(doc) for doc in documents]


@router.post(
    "",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a document",
    responses=_ERROR_RESPONSES,
)
async def create_document(
    document_data: DocumentCreate,
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """
    Create a new document.

    - **title**: Document title (empty becomes "Untitled")
    - **parentDocument**: Optional parent to nest under; must be owned by the caller
    """
    document = await document_service.create_document(
        db,
        current_user,
        document_data.title,
        document_data.parent_document,
    )
    response = DocumentResponse.model_validate(document)
    await db.commit()

    await _broadcast_document_event(
        MessageType.DOCUMENT_CREATED,
        current_user,
        [document.id],
        parent_document=document.parent_document,
    )
    return response


# ============================================================================
# Single document endpoints
# ============================================================================


@router.get(
    "/{document_id}",
    response_model=DocumentResponse,
    summary="Get a document by ID",
    responses=_ERROR_RESPONSES,
)
async def get_document(
    document_id: UUID,
    current_user: Annotated[Optional[str], Depends(get_optional_user)],
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """
    Get a document.

    Published documents that are not archived are readable by anyone,
    signed in or not. Anything else is readable only by its owner.
    """
    document = await document_service.get_document_by_id(db, current_user, document_id)
    return DocumentResponse.model_validate(document)


@router.patch(
    "/{document_id}",
    response_model=DocumentResponse,
    summary="Update a document",
    responses=_ERROR_RESPONSES,
)
async def update_document(
    document_id: UUID,
    document_data: DocumentUpdate,
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """
    Partially update a document.

    Only fields present in the body are written: **title**, **content**,
    **coverImage**, **icon**, **isPublished**.
    """
    changes = document_data.model_dump(exclude_unset=True)
    document = await document_service.update_document(db, current_user, document_id, changes)
    response = DocumentResponse.model_validate(document)
    await db.commit()

    await _broadcast_document_event(
        MessageType.DOCUMENT_UPDATED,
        current_user,
        [document.id],
        parent_document=document.parent_document,
    )
    return response


@router.post(
    "/{document_id}/archive",
    response_model=DocumentResponse,
    summary="Archive a document and its subtree",
    responses={**_ERROR_RESPONSES, 409: {"description": "Document tree too deep"}},
)
async def archive_document(
    document_id: UUID,
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """
    Move a document and every descendant to the trash.

    The whole subtree is archived before the response is sent.
    """
    result = await document_service.archive_document(db, current_user, document_id)
    response = DocumentResponse.model_validate(result.document)
    await db.commit()

    await _broadcast_document_event(
        MessageType.DOCUMENT_ARCHIVED,
        current_user,
        result.affected_ids,
        parent_document=result.document.parent_document,
    )
    return response


@router.post(
    "/{document_id}/restore",
    response_model=DocumentResponse,
    summary="Restore a document and its subtree",
    responses={**_ERROR_RESPONSES, 409: {"description": "Document tree too deep"}},
)
async def restore_document(
    document_id: UUID,
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """
    Restore a document and every descendant from the trash.

    If the document's parent is still archived, the document is detached
    and comes back as a root document.
    """
    result = await document_service.restore_document(db, current_user, document_id)
    response = DocumentResponse.model_validate(result.document)
    await db.commit()

    await _broadcast_document_event(
        MessageType.DOCUMENT_RESTORED,
        current_user,
        result.affected_ids,
        parent_document=result.document.parent_document,
    )
    return response


@router.delete(
    "/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Permanently delete a document",
    responses=_ERROR_RESPONSES,
)
async def remove_document(
    document_id: UUID,
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
    cascade: bool = Query(False, description="Also delete every descendant"),
) -> None:
    """
    Permanently delete a document. This action is irreversible.

    - **cascade**: If true, delete the whole subtree. If false (default),
                   direct children are kept and become root documents.
    """
    deleted_ids = await document_service.remove_document(
        db, current_user, document_id, cascade=cascade
    )
    await db.commit()

    await _broadcast_document_event(MessageType.DOCUMENT_DELETED, current_user, deleted_ids)
    return None


@router.delete(
    "/{document_id}/cover-image",
    response_model=DocumentResponse,
    summary="Remove a document's cover image",
    responses=_ERROR_RESPONSES,
)
async def remove_cover_image(
    document_id: UUID,
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """Clear the cover image of a document."""
    document = await document_service.remove_cover_image(db, current_user, document_id)
    response = DocumentResponse.model_validate(document)
    await db.commit()

    await _broadcast_document_event(MessageType.DOCUMENT_UPDATED, current_user, [document.id])
    return response


@router.delete(
    "/{document_id}/icon",
    response_model=DocumentResponse,
    summary="Remove a document's icon",
    responses=_ERROR_RESPONSES,
)
async def remove_icon(
    document_id: UUID,
    current_user: Annotated[str, Depends(get_current_user)],
    db: AsyncSession = Depends(get_db),
) -> DocumentResponse:
    """Clear the icon of a document."""
    document = await document_service.remove_icon(db, current_user, document_id)
    response = DocumentResponse.model_validate(document)
    await db.commit()

    await _broadcast_document_event(MessageType.DOCUMENT_UPDATED, current_user, [document.id])
    return response

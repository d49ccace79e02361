"""Pydantic schemas package."""

from .document import DocumentCreate, DocumentResponse, DocumentUpdate

__all__ = [
    "DocumentCreate",
    "DocumentResponse",
    "DocumentUpdate",
]

"""API routers package.

Each router handles a specific domain of the API.
"""

from .documents import router as documents_router

__all__ = [
    "documents_router",
]

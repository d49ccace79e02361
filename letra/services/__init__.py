"""Business logic services."""

from .auth_service import (
    create_access_token,
    decode_access_token,
    get_current_user,
    get_optional_user,
)
from .document_service import (
    CascadeDepthExceededError,
    CascadeResult,
    DocumentNotFoundError,
    DocumentServiceError,
    NotAuthenticatedError,
    NotAuthorizedError,
)
from .redis_service import (
    RedisService,
    redis_service,
)

__all__ = [
    # Auth service
    "create_access_token",
    "decode_access_token",
    "get_current_user",
    "get_optional_user",
    # Document service
    "CascadeDepthExceededError",
    "CascadeResult",
    "DocumentNotFoundError",
    "DocumentServiceError",
    "NotAuthenticatedError",
    "NotAuthorizedError",
    # Redis service
    "RedisService",
    "redis_service",
]

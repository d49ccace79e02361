"""FastAPI application entry point."""

import asyncio
import json
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import TimeoutError as SQLAlchemyTimeoutError

from .config import settings
from .database import warmup_connection_pool
from .routers import documents_router
from .services.auth_service import decode_access_token
from .services.document_service import DocumentServiceError
from .services.redis_service import redis_service
from .websocket import manager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown tasks."""
    if settings.db_warmup_on_startup:
        logger.info("Warming up database connection pool...")
        await warmup_connection_pool()
        logger.info("Database connection pool ready")

    logger.info("Connecting to Redis...")
    try:
        await redis_service.connect()
        await manager.initialize_redis()
        await redis_service.start_listening()
        logger.info("Redis pub/sub listener started")
    except Exception as e:
        if settings.redis_required:
            logger.error(f"Redis connection failed and REDIS_REQUIRED=true: {e}")
            raise RuntimeError(
                f"Redis is required for multi-worker deployment but connection failed: {e}"
            )
        logger.warning(f"Redis connection failed, running in single-worker mode: {e}")

    yield

    logger.info("Disconnecting from Redis...")
    await redis_service.disconnect()


app = FastAPI(
    title="Letra API",
    description="Hierarchical note and document editor backend",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DocumentServiceError)
async def document_service_error_handler(request: Request, exc: DocumentServiceError):
    """Render document errors (not found, unauthorized...) with their status code."""
    logger.info(
        f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}"
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


# Database pool exhaustion handler - return 503 so clients can retry
@app.exception_handler(SQLAlchemyTimeoutError)
async def db_pool_exhausted_handler(request: Request, exc: SQLAlchemyTimeoutError):
    """Handle database connection pool exhaustion with 503 Service Unavailable."""
    logger.warning(f"Database pool exhausted on {request.method} {request.url}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "detail": "Service temporarily unavailable. Please retry.",
            "retry_after": 5,
        },
        headers={"Retry-After": "5"},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log all unhandled exceptions with full traceback."""
    logger.error(f"Unhandled exception on {request.method} {request.url}:")
    logger.error(f"Exception type: {type(exc).__name__}")
    logger.error(f"Exception message: {str(exc)}")
    logger.error(f"Traceback:\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.include_router(documents_router)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "status": "healthy",
        "service": "Letra API",
        "version": "1.0.0",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    redis_health = await redis_service.health_check()
    return {
        "status": "healthy",
        "redis": redis_health,
        "websocket": {
            "connections": manager.total_connections,
            "rooms": manager.total_rooms,
        },
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str | None = None):
    """
    WebSocket endpoint for live document tree updates.

    The connection joins the caller's room and receives a message every
    time one of their documents is created, updated, archived, restored
    or deleted.

    Usage:
        ws://localhost:8000/ws?token=<jwt_token>
    """
    if not token:
        logger.debug("WebSocket connection attempt without token")
        await websocket.close(code=4001, reason="Authentication required")
        return

    token_data = decode_access_token(token)
    if token_data is None:
        logger.debug("WebSocket connection with invalid token")
        await websocket.close(code=4001, reason="Invalid token")
        return
    user_id = token_data.subject

    connection = await manager.connect(websocket, user_id)
    if connection is None:
        return  # Connection limit reached

    RECEIVE_TIMEOUT = 45

    try:
        while True:
            try:
                raw_message = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=RECEIVE_TIMEOUT,
                )
            except asyncio.TimeoutError:
                # No traffic: probe the client once before giving up
                await websocket.send_json({"type": "ping", "data": {}})
                try:
                    raw_message = await asyncio.wait_for(websocket.receive_text(), timeout=10)
                except asyncio.TimeoutError:
                    logger.info(f"Connection timeout for user: {user_id}")
                    break

            if len(raw_message) > settings.ws_max_message_size:
                logger.warning(
                    f"Message too large from user {user_id}: "
                    f"{len(raw_message)} bytes (max: {settings.ws_max_message_size})"
                )
                await websocket.send_json({
                    "type": "error",
                    "data": {
                        "error": "MESSAGE_TOO_LARGE",
                        "message": f"Message exceeds maximum size of {settings.ws_max_message_size} bytes",
                    },
                })
                continue

            try:
                data = json.loads(raw_message)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON from user {user_id}")
                await websocket.send_json({
                    "type": "error",
                    "data": {"error": "INVALID_JSON", "message": "Invalid JSON format"},
                })
                continue

            if not isinstance(data, dict):
                await websocket.send_json({
                    "type": "error",
                    "data": {"error": "INVALID_MESSAGE", "message": "Message must be a JSON object"},
                })
                continue

            await manager.handle_message(connection, data)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnect for user: {user_id}")
    except Exception as e:
        logger.error(f"WebSocket exception for user {user_id}: {e}")
    finally:
        await manager.disconnect(websocket)

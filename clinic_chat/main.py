"""
Clinic Chat Backend - Main FastAPI Application
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clinic_chat.config import settings
from clinic_chat.api.routes import chat, realtime
from clinic_chat.exceptions import ChatError
from clinic_chat.services.chat_service import ChatService
from clinic_chat.services.chat_store import ChatStore, FirestoreChatStore
from clinic_chat.services.gateway import RealtimeGateway
from clinic_chat.services.presence import InMemoryPresenceRegistry, PresenceRegistry
from clinic_chat.utils.log_config import setup_logging

logger = logging.getLogger(__name__)


def configure_app_state(
    app: FastAPI,
    store: ChatStore,
    directory,
    presence: PresenceRegistry = None,
):
    """Wire the messaging services onto `app.state`"""
    if presence is None:
        presence = InMemoryPresenceRegistry()
    chat_service = ChatService(store, directory, settings)
    app.state.directory = directory
    app.state.presence = presence
    app.state.chat_service = chat_service
    app.state.gateway = RealtimeGateway(chat_service, presence, directory=directory)


# Define lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan handler for startup and shutdown events"""
    setup_logging()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Debug mode: {settings.DEBUG}, dev mode: {settings.DEV_MODE}")

    if getattr(app.state, "chat_service", None) is None:
        from clinic_chat.services.firebase_service import firebase_service

        configure_app_state(app, FirestoreChatStore(firebase_service.db), firebase_service)
        logger.info("Firestore chat store initialized")

    yield

    logger.info(f"Shutting down {settings.APP_NAME}")


# Create FastAPI application with lifespan
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Clinic Chat Backend API - realtime patient/doctor messaging",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add processing time to response headers"""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError):
    """Render messaging errors with their category"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "category": exc.category},
    )


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions"""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "message": str(exc) if settings.DEBUG else "An error occurred",
        },
    )


app.include_router(chat.router)
app.include_router(realtime.router)


# Health check endpoint
@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - API health check"""
    return {
        "status": "online",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Detailed health check endpoint"""
    presence = getattr(request.app.state, "presence", None)
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "debug_mode": settings.DEBUG,
        "firebase_configured": bool(
            settings.FIREBASE_CREDENTIALS_JSON
            or settings.FIREBASE_CREDENTIALS_PATH
            or settings.FIREBASE_EMULATOR_HOST),
        "online_users": len(presence.online_users()) if presence is not None else 0,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "clinic_chat.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG
    )

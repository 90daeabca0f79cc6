"""
Application factory
"""
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from csvinsight.config import Settings, get_settings
from csvinsight.database import Base, build_engine, build_session_factory
from csvinsight.errors import AppError
from csvinsight.models import AnalysisRecord, TopicRecord, ChatMessage  # noqa: F401
from csvinsight.routers import csv_upload, topics
from csvinsight.services.ai_client import BaseAnalysisClient, build_ai_client
from csvinsight.services.record_store import TopicLocks
from csvinsight.services.storage import BlobStore, build_blob_store

logger = logging.getLogger(__name__)


def _error_body(message: str) -> dict:
    return {"success": False, "message": message}


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("%s %s failed (%s): %s", request.method, request.url.path, exc.kind, exc.message)
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
        if exc.status_code == 405:
            message = f"Method {request.method} Not Allowed"
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
            for error in exc.errors()
        )
        return JSONResponse(status_code=400, content=_error_body(f"Invalid request: {problems}"))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error in %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=_error_body(f"Server error: {exc}"))


def create_app(
    settings: Optional[Settings] = None,
    ai_client: Optional[BaseAnalysisClient] = None,
    blob_store: Optional[BlobStore] = None,
) -> FastAPI:
    """Build the application; the optional arguments replace the configured collaborators"""
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    engine = build_engine(settings)
    # Create database tables
    Base.metadata.create_all(bind=engine)

    app = FastAPI(
        title="CSV Insight API",
        description="CSV upload, AI data summaries and topic chat",
        version="0.1.0",
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.ai_client = ai_client or build_ai_client(settings)
    app.state.blob_store = blob_store or build_blob_store(settings)
    app.state.topic_locks = TopicLocks()

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy", "service": "csvinsight-api"}

    app.include_router(csv_upload.router, prefix="/api", tags=["csv"])
    app.include_router(topics.router, prefix="/api", tags=["topics"])

    return app

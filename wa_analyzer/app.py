import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from wa_analyzer.config import get_settings
from wa_analyzer.domain.errors import (
    InvalidStatusTransitionError,
    NotFoundError,
    PackingError,
    StorageDisabledError,
    UpstreamError,
    ValidationMismatchError,
    WorkItemStorageError,
)
from wa_analyzer.routes import upload, work_items

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: list[tuple[type[WorkItemStorageError], int]] = [
    (StorageDisabledError, 503),
    (NotFoundError, 404),
    (ValidationMismatchError, 409),
    (InvalidStatusTransitionError, 409),
    (PackingError, 400),
    (UpstreamError, 502),
]


def status_code_for(exc: WorkItemStorageError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(title="Well-Architected IaC Analyzer API", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkItemStorageError)
    async def storage_error_handler(request: Request, exc: WorkItemStorageError) -> JSONResponse:
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    # request bodies are validated by FastAPI itself; this only sees stored records
    @app.exception_handler(ValidationError)
    async def record_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.error("%s %s read an invalid stored record: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": "Stored work item record is invalid"})

    app.include_router(upload.router, prefix="/api")
    app.include_router(work_items.router, prefix="/api")

    @app.get("/", include_in_schema=False)
    async def root() -> JSONResponse:
        """Provide a lightweight landing page for container checks."""
        return JSONResponse(
            {
                "message": "Well-Architected IaC Analyzer API",
                "docs": "/docs",
                "health": "/api/work-items",
            }
        )

    return app


app = create_app()

"""
FastAPI application entrypoint.

Run locally:  uvicorn clinical_forms.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from clinical_forms.api.routes import router
from clinical_forms.config import settings
from clinical_forms.exceptions import FormEngineError
from clinical_forms.models import audit, forms, references  # noqa: F401  (register tables)
from clinical_forms.models.database import Base, engine

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(
    title="Clinical Form Engine API",
    description=(
        "Dynamic clinical forms for the hospital records back-end: nested "
        "form templates, desired-state template reconciliation, and "
        "validated form instances."
    ),
    version="1.0.0",
    lifespan=lifespan,
)


def _error(status_code: int, body: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": body})


@app.exception_handler(FormEngineError)
async def form_engine_error_handler(request: Request, exc: FormEngineError):
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(422, {"code": "invalid_request", "message": "Request body is invalid",
                        "violations": jsonable_encoder(exc.errors())})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, {"code": "api_error", "message": exc.detail})


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, {"code": "internal_error", "message": "Internal server error"})


app.include_router(router, prefix="/api/v1")

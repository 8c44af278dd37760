"""API gateway entrypoint."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.api_gateway.dependencies import get_analysis_runner, get_batch_service
from services.api_gateway.logging_config import configure_logging
from services.api_gateway.presentation.http.routes import router
from services.api_gateway.settings import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(level=settings.log_level, log_format=settings.log_format)
    if settings.resume_on_startup:
        resumed = get_batch_service().resume_pending_batches()
        logger.info(f"Gateway started, {len(resumed)} interrupted batches resumed")
    yield
    get_analysis_runner().shutdown()


app = FastAPI(title="Sky Event Review API", lifespan=lifespan)
app.include_router(router)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_: Request, error: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content={"error": str(error.detail)})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, error: RequestValidationError) -> JSONResponse:
    first = error.errors()[0] if error.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{location}: {message}" if location else message},
    )

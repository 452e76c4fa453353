# FastAPI application entry point

from __future__ import annotations

import logging
import os
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from apex_height.config import Settings, log_level_env
from apex_height.errors import AnalysisError
from apex_height.routers import analysis

logging.basicConfig(
    level=log_level_env(),
    format="%(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

FRONTEND_DIR = Path(os.environ.get("FRONTEND_DIR") or Path(__file__).resolve().parents[2] / "frontend")

app = FastAPI(
    title="Apex Height Estimator",
    version="1.0.0",
    description="Upload up to four photos of a person -> get an AI height estimate backed by reference objects in the scene.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analysis.router, prefix="/api", tags=["analysis"])

# Replaced from settings at startup
app.state.max_body_bytes = Settings.max_body_bytes

MALFORMED_REQUEST_MESSAGE = 'Request body must be {"images": [data URI, ...]}.'

if FRONTEND_DIR.is_dir():
    app.mount("/static", StaticFiles(directory=str(FRONTEND_DIR)), name="static")


@app.middleware("http")
async def _limit_body_size(request: Request, call_next):
    length = request.headers.get("content-length", "")
    if length.isdigit() and int(length) > request.app.state.max_body_bytes:
        logger.info("Rejected %s byte body to %s", length, request.url.path)
        return JSONResponse(status_code=413, content={"error": "Request body is too large."})
    return await call_next(request)


@app.exception_handler(AnalysisError)
async def _analysis_error_handler(request: Request, exc: AnalysisError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info("Rejected malformed request to %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"error": MALFORMED_REQUEST_MESSAGE})


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/", include_in_schema=False)
async def index():
    index_path = FRONTEND_DIR / "index.html"
    if not index_path.is_file():
        return JSONResponse(status_code=404, content={"error": "Front-end not found."})
    return FileResponse(index_path)


@app.on_event("startup")
async def _start_quota_tracker():
    """Load configuration and the pipeline eagerly, then start the hourly quota reset.

    Missing credentials raise ConfigError here, which aborts startup before
    any traffic is served.
    """
    settings = analysis.get_settings()
    logging.getLogger().setLevel(settings.log_level)
    app.state.max_body_bytes = settings.max_body_bytes
    analysis.get_analyzer()
    analysis.get_quota_tracker().start()


@app.on_event("shutdown")
async def _stop_quota_tracker():
    if analysis._quota_tracker is not None:
        await analysis._quota_tracker.stop()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = analysis.get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port)

"""
Drive proxy backend: Google OAuth credential, range-aware streaming, ZIP archives.

Load .env in development only (production uses env vars directly). Add CORS,
structured error handlers, credential table init and credential load.
"""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env only in development, before config reads the environment
if (os.getenv("ENV") or os.getenv("NODE_ENV") or "development").lower() == "development":
    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from config import CORS_ORIGINS, ENV, LOG_LEVEL, TOKEN_STORAGE
from database import init_db
from errors import DriveProxyError, ProviderError, RangeNotSatisfiable, StreamAborted
from auth import router as auth_router, status_router, token_store
from drive import router as drive_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("main")

if TOKEN_STORAGE == "database":
    init_db()
token_store.load()
logger.info("Starting in %s mode with %s token storage", ENV, TOKEN_STORAGE)

app = FastAPI(
    title="Drive Proxy Backend",
    description="Streams, previews and archives files from one Google Drive folder tree.",
)

# CORS: explicit origins, allow credentials (cookies). Never use "*" with cookies.
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Length", "Content-Disposition"],
)


@app.exception_handler(DriveProxyError)
async def drive_proxy_error_handler(request: Request, exc: DriveProxyError):
    """Structured errors raised before a response started streaming."""
    if isinstance(exc, RangeNotSatisfiable):
        logger.info("%s %s: %s", request.method, request.url.path, exc.msg)
        return Response(status_code=416, headers={"Content-Range": f"bytes */{exc.size}"})
    if isinstance(exc, ProviderError):
        logger.error("%s %s: %s", request.method, request.url.path, exc.msg)
    else:
        logger.warning("%s %s: %s", request.method, request.url.path, exc.msg)
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Keep the {"error": ...} body shape the front end reads."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch unhandled exceptions; log and return generic 500. Never leak stack traces."""
    if isinstance(exc, StreamAborted):
        # Headers are already out; the server drops the connection after this
        logger.warning("%s %s: stream aborted: %s", request.method, request.url.path, exc)
    else:
        logging.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(status_router)
app.include_router(drive_router)

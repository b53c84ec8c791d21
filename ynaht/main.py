"""Main FastAPI application: per-user state blob storage for sync."""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import settings
from .server.database import BlobDatabase
from .server.models import DataResponse, ErrorResponse, SaveRequest, SaveResponse

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="YNAHT Sync",
    description="Cross-device sync storage for the daily time budget",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["X-User-Id", "Content-Type"],
)

_db: Optional[BlobDatabase] = None


def get_db() -> BlobDatabase:
    """Database dependency, created on first use."""
    global _db
    if _db is None:
        _db = BlobDatabase(settings.database_path)
    return _db


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _missing_user_id() -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Missing X-User-Id header"})


def _store_error(e: Exception) -> JSONResponse:
    logger.error(f"API Error: {e}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "message": str(e)},
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "YNAHT Sync",
        "version": "1.0.0",
        "endpoints": {
            "data": "/api/data",
            "status": "/status",
        },
    }


@app.get("/status")
async def status():
    """Server status endpoint."""
    return {
        "status": "running",
        "version": "1.0.0",
        "timestamp": _now(),
    }


@app.get(
    "/api/data",
    response_model=DataResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def get_data(
    user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: BlobDatabase = Depends(get_db),
):
    """
    Fetch the user's stored state.

    Returns null data for users that have never saved.
    """
    if not user_id:
        return _missing_user_id()

    logger.info(f"Fetch request from user: {user_id}")

    try:
        data = db.get_data(user_id)
    except (sqlite3.Error, ValueError) as e:
        return _store_error(e)

    return DataResponse(data=data, lastSyncedAt=_now())


@app.api_route(
    "/api/data",
    methods=["POST", "PUT"],
    response_model=SaveResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def save_data(
    body: Optional[SaveRequest] = None,
    user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: BlobDatabase = Depends(get_db),
):
    """
    Store the user's state.

    The blob is stored with _meta.lastUpdatedAt, used by clients to decide
    whether their offline changes are newer.
    """
    if not user_id:
        return _missing_user_id()

    if body is None or body.data is None:
        return JSONResponse(
            status_code=400, content={"error": "Missing data in request body"}
        )

    try:
        db.put_data(user_id, body.data)
    except (sqlite3.Error, TypeError, ValueError) as e:
        return _store_error(e)

    return SaveResponse(success=True, lastSyncedAt=_now())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )

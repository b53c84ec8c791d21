"""Data endpoint API models."""

from typing import Any, Optional

from pydantic import BaseModel


class SaveRequest(BaseModel):
    """Body for POST/PUT /api/data."""

    data: Optional[dict[str, Any]] = None


class DataResponse(BaseModel):
    """Response for GET /api/data."""

    data: Optional[dict[str, Any]] = None
    lastSyncedAt: str


class SaveResponse(BaseModel):
    """Response for POST/PUT /api/data."""

    success: bool = True
    lastSyncedAt: str


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None

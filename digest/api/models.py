"""
Pydantic models for API request/response schemas.
"""

from typing import Optional
from pydantic import BaseModel, Field


# === Request Models ===

class SyncRequest(BaseModel):
    """Request body for the resync endpoint."""
    log_id: str = Field(..., min_length=1, description="Id of the run whose items are pushed again")


# === Response Models ===

class ItemSummary(BaseModel):
    """One scraped item as shown in results and logs."""
    title: str
    url: str
    source: str  # "youtube", "bilibili" or "rss"


class RoutineResponse(BaseModel):
    """Response body for trigger and resync endpoints."""
    status: str  # success | failed | no_content | skipped
    message: str
    scraped_items: list[ItemSummary] = []
    notebook_url: Optional[str] = None
    error: Optional[str] = None


class ConfigSaveResponse(BaseModel):
    """Response body for config writes."""
    success: bool
    migrated: bool = False


class StatusResponse(BaseModel):
    """Per-platform session readiness plus the routine flag."""
    running: bool
    platforms: dict[str, bool]


class HealthResponse(BaseModel):
    """Response body for health endpoint."""
    status: str
    version: str


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None

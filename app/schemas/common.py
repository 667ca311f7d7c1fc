"""Common/shared schemas."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    detail: str
    type: str | None = None


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str


class SyncStatusResponse(BaseModel):
    phase: str
    mode: str
    current_epoch: int | None = None
    last_synced_at: str | None = None
    last_error: str | None = None
    in_progress: bool = False

"""Health endpoints."""

from fastapi import APIRouter, Depends

from app.dependencies import get_controller
from app.schemas.common import SyncStatusResponse
from poolrewards.services._types import SyncStatusDict
from poolrewards.services.epoch_sync import EpochSyncController

router: APIRouter = APIRouter(prefix="/health", tags=["health"])


@router.get("/sync", response_model=SyncStatusResponse)
def sync_status(controller: EpochSyncController = Depends(get_controller)) -> SyncStatusDict:
    """Sync phase and last outcome. Served even before the first snapshot exists."""
    return controller.status()

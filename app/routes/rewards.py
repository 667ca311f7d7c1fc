"""Dashboard read endpoints, served from the published snapshot only."""

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from app.dependencies import get_controller
from poolrewards.services._helpers import sparse_to_list
from poolrewards.services.epoch_sync import EpochSyncController
from poolrewards.services.schemas import CalculatorData, RewardRecord, ServerState

router: APIRouter = APIRouter(prefix="/api", tags=["rewards"])


@router.get("/get-current-epoch", response_class=PlainTextResponse)
def get_current_epoch(controller: EpochSyncController = Depends(get_controller)) -> str:
    return str(controller.require_state().current_epoch)


@router.get("/get-calculator-data", response_model=CalculatorData)
def get_calculator_data(controller: EpochSyncController = Depends(get_controller)) -> CalculatorData:
    return controller.require_state().calculator_data


@router.get("/fetch-rewards", response_model=list[list[RewardRecord] | None])
def fetch_rewards(
    controller: EpochSyncController = Depends(get_controller),
) -> list[list[RewardRecord] | None]:
    """Delegator rewards; the list index is the epoch, ``null`` where the pool was inactive."""
    state: ServerState = controller.require_state()
    return sparse_to_list(state.reward_data)

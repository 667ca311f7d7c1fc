"""Shared models for pool reward services."""

from poolrewards.services.schemas.ledger import (
    BlockRecord,
    DelegatorStakeRecord,
    EpochInfo,
    GenesisInfo,
    Lovelace,
    PoolEpochRecord,
    PoolListEntry,
    PoolOwnerRecord,
    PoolUpdate,
    ProtocolParameters,
    TokenomicRecord,
)
from poolrewards.services.schemas.results import MarginHistory, PoolRewards
from poolrewards.services.schemas.state import (
    CalculatorData,
    OwnerRewardRecord,
    RewardRecord,
    ServerState,
)

__all__ = [
    # Ledger records
    "BlockRecord",
    "DelegatorStakeRecord",
    "EpochInfo",
    "GenesisInfo",
    "Lovelace",
    "PoolEpochRecord",
    "PoolListEntry",
    "PoolOwnerRecord",
    "PoolUpdate",
    "ProtocolParameters",
    "TokenomicRecord",
    # Results
    "MarginHistory",
    "PoolRewards",
    # State
    "CalculatorData",
    "OwnerRewardRecord",
    "RewardRecord",
    "ServerState",
]

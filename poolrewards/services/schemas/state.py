"""Computed results and the published server state."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from poolrewards.enums import Mode
from poolrewards.services.schemas.ledger import (
    DelegatorStakeRecord,
    Lovelace,
    PoolEpochRecord,
    PoolListEntry,
    PoolOwnerRecord,
    TokenomicRecord,
)


class RewardRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    epoch: int
    delegator: str
    stake: Lovelace
    reward: Lovelace


class OwnerRewardRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    epoch: int
    owner: str
    stake: Lovelace
    reward: Lovelace


class CalculatorData(BaseModel):
    """Flattened parameters for the what-if delegation calculator.

    Pool figures come from epoch current-2, reserves from current-1 and
    protocol parameters from the current epoch.
    """

    model_config = ConfigDict(frozen=True)

    mode: Mode
    margin: Decimal | None = None

    epoch_no: int
    active_stake: Lovelace | None = None
    active_stake_pct: Decimal | None = None
    saturation_pct: Decimal | None = None
    block_cnt: int | None = None
    delegator_cnt: int | None = None
    fixed_cost: Lovelace | None = None
    pool_fees: Lovelace | None = None
    deleg_rewards: Lovelace | None = None
    member_rewards: Lovelace | None = None
    epoch_ros: Decimal | None = None

    fees: Lovelace | None = None
    total_block_count: int | None = None
    total_active_stake: Lovelace | None = None

    reserves: Lovelace

    influence: Decimal | None = None
    decentralisation: Decimal | None = None
    optimal_pool_count: int | None = None
    monetary_expand_rate: Decimal | None = None
    treasury_growth_rate: Decimal | None = None

    pledge: Lovelace | None = None
    active_slot_coeff: Decimal | None = None
    epoch_length_in_slots: int | None = None


class ServerState(BaseModel):
    """Aggregate root served to readers. Never mutated once published."""

    model_config = ConfigDict(frozen=True)

    mode: Mode
    current_epoch: int
    synced_at: str

    pool_list: list[PoolListEntry] = Field(default_factory=list)
    pool_history: dict[int, PoolEpochRecord] = Field(default_factory=dict)
    delegator_history: dict[int, list[DelegatorStakeRecord]] = Field(default_factory=dict)
    tokenomic_stats: dict[int, TokenomicRecord] = Field(default_factory=dict)
    pool_owners: list[PoolOwnerRecord] = Field(default_factory=list)

    reward_data: dict[int, list[RewardRecord]] = Field(default_factory=dict)
    owner_reward_data: dict[int, OwnerRewardRecord] = Field(default_factory=dict)
    calculator_data: CalculatorData

    pool_margins: dict[int, list[Decimal]] = Field(default_factory=dict)
    median_margins: dict[int, Decimal | None] = Field(default_factory=dict)

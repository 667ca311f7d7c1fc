"""Result dataclasses returned by service operations."""

from dataclasses import dataclass, field
from decimal import Decimal

from poolrewards.services.schemas.state import OwnerRewardRecord, RewardRecord


@dataclass(frozen=True)
class PoolRewards:
    reward_data: dict[int, list[RewardRecord]]
    owner_reward_data: dict[int, OwnerRewardRecord]


@dataclass(frozen=True)
class MarginHistory:
    pool_margins: dict[int, list[Decimal]] = field(default_factory=dict)
    median_margins: dict[int, Decimal | None] = field(default_factory=dict)

"""Reward engine: per-epoch delegator and owner rewards for one pool.

Pure functions over lovelace integers and ``Decimal`` ratios. Every division
is carried to 20 decimal places and rounded half-up. Member rewards are
rounded half-up to whole lovelace and the owner absorbs the rounding, so an
epoch never pays out more than the pool earned.
"""

from collections.abc import Iterable, Mapping, Sequence
from decimal import ROUND_HALF_UP, Context, Decimal, localcontext

import structlog

from poolrewards.services.errors import MissingEpochDataError, RewardCalculationError
from poolrewards.services.schemas.ledger import (
    DelegatorStakeRecord,
    PoolEpochRecord,
    PoolOwnerRecord,
    TokenomicRecord,
)
from poolrewards.services.schemas.results import PoolRewards
from poolrewards.services.schemas.state import OwnerRewardRecord, RewardRecord

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

# Maximum ADA supply, in lovelace.
TOTAL_LOVELACE: int = 45_000_000_000_000_000

DIVISION_QUANTUM: Decimal = Decimal("1E-20")
LOVELACE: Decimal = Decimal(1)

# Rewards are final two epochs after the epoch they were earned in.
FINALIZATION_LAG: int = 2

_CONTEXT: Context = Context(prec=60, rounding=ROUND_HALF_UP)

# A single margin for every epoch, or one per epoch (``None`` = no data).
MarginSource = Decimal | Mapping[int, Decimal | None]


def _div(numerator: Decimal | int, denominator: Decimal | int) -> Decimal:
    return (Decimal(numerator) / Decimal(denominator)).quantize(
        DIVISION_QUANTUM, rounding=ROUND_HALF_UP
    )


def _to_lovelace(value: Decimal) -> int:
    return int(value.quantize(LOVELACE, rounding=ROUND_HALF_UP))


# ---------------------------------------------------------------------------
# Medians
# ---------------------------------------------------------------------------


def median(values: Iterable[Decimal]) -> Decimal | None:
    """Median of ``values``; ``None`` when there are none."""
    ordered: list[Decimal] = sorted(values)
    if not ordered:
        return None
    mid: int = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    with localcontext(_CONTEXT):
        return (ordered[mid - 1] + ordered[mid]) / 2


def calculate_median_margins(
    margins_by_epoch: Mapping[int, Sequence[Decimal]],
) -> dict[int, Decimal | None]:
    return {epoch: median(margins) for epoch, margins in sorted(margins_by_epoch.items())}


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------


def resolve_owner(pool_owners: Sequence[PoolOwnerRecord], epoch: int) -> str | None:
    """Stake address registered as owner in ``epoch``.

    The latest owner change at or before the epoch applies. When several
    records share that epoch, the first one listed wins.
    """
    owner: PoolOwnerRecord | None = None
    for record in pool_owners:
        if record.epoch_no > epoch:
            continue
        if owner is None or record.epoch_no > owner.epoch_no:
            owner = record
    return owner.stake_address if owner is not None else None


def margin_for(margin_source: MarginSource, epoch: int) -> Decimal | None:
    if isinstance(margin_source, Decimal):
        return margin_source
    return margin_source.get(epoch)


def _epoch_rewards(
    record: PoolEpochRecord,
    margin_source: MarginSource,
    delegators: Sequence[DelegatorStakeRecord],
    reserves: int,
    owner_address: str | None,
) -> tuple[list[RewardRecord], OwnerRewardRecord | None]:
    epoch: int = record.epoch_no
    pool_reward: int = (record.pool_fees or 0) + (record.deleg_rewards or 0)
    fixed_cost: int = record.fixed_cost or 0
    produced_blocks: bool = bool(record.block_cnt)

    rewards: list[RewardRecord] = []
    owner_row: DelegatorStakeRecord | None = None

    margin: Decimal = Decimal(0)
    pool_stake_rel: Decimal = Decimal(0)
    ada_in_circulation: int = TOTAL_LOVELACE - reserves
    sharing: bool = produced_blocks and pool_reward > fixed_cost
    if sharing:
        resolved: Decimal | None = margin_for(margin_source, epoch)
        if resolved is None:
            raise RewardCalculationError(f"No margin available for epoch {epoch}")
        margin = resolved
        if not record.active_stake:
            raise RewardCalculationError(f"Pool minted blocks in epoch {epoch} with no active stake")
        if ada_in_circulation <= 0:
            raise RewardCalculationError(
                f"Reserves {reserves} leave no ADA in circulation for epoch {epoch}"
            )
        pool_stake_rel = _div(record.active_stake, ada_in_circulation)

    def stake_share(amount: int) -> Decimal:
        return _div(_div(amount, ada_in_circulation), pool_stake_rel)

    distributable: int = pool_reward - fixed_cost
    for delegator in delegators:
        if delegator.amount == 0:
            continue
        if delegator.stake_address == owner_address:
            owner_row = delegator
            continue
        reward: int = 0
        if sharing:
            reward = _to_lovelace(distributable * (1 - margin) * stake_share(delegator.amount))
        rewards.append(
            RewardRecord(epoch=epoch, delegator=delegator.stake_address, stake=delegator.amount, reward=reward)
        )

    if owner_row is None:
        return rewards, None

    owner_reward: int
    if not produced_blocks:
        owner_reward = 0
    elif not sharing:
        owner_reward = pool_reward
    else:
        # Members round half-up independently; the owner is capped at what they leave.
        formula: int = (
            _to_lovelace(distributable * ((1 - margin) * stake_share(owner_row.amount) + margin))
            + fixed_cost
        )
        remainder: int = pool_reward - sum(r.reward for r in rewards)
        owner_reward = min(formula, max(remainder, 0))
    return rewards, OwnerRewardRecord(
        epoch=epoch, owner=owner_row.stake_address, stake=owner_row.amount, reward=owner_reward
    )


def calculate_pool_rewards(
    margin_source: MarginSource,
    current_epoch: int,
    pool_history: Mapping[int, PoolEpochRecord],
    delegator_history: Mapping[int, Sequence[DelegatorStakeRecord]],
    tokenomic_stats: Mapping[int, TokenomicRecord],
    pool_owners: Sequence[PoolOwnerRecord],
) -> PoolRewards:
    """Delegator and owner rewards for every finalized epoch of the pool.

    Only epochs up to ``current_epoch - 2`` are computed. Circulating ADA for
    an epoch uses the reserves recorded one epoch later. An epoch without a
    delegator snapshot has no delegators. The owner only gets an entry when
    their stake address holds stake in that epoch's snapshot.

    Raises:
        MissingEpochDataError: reserves for ``epoch + 1`` are not known.
        RewardCalculationError: a block-producing epoch has no margin or no
            active stake.
    """
    last_final: int = current_epoch - FINALIZATION_LAG
    reward_data: dict[int, list[RewardRecord]] = {}
    owner_reward_data: dict[int, OwnerRewardRecord] = {}

    with localcontext(_CONTEXT):
        for epoch in sorted(pool_history):
            if epoch > last_final:
                continue
            totals: TokenomicRecord | None = tokenomic_stats.get(epoch + 1)
            if totals is None:
                raise MissingEpochDataError(
                    f"Reserves for epoch {epoch + 1} are needed to reward epoch {epoch}"
                )
            rewards, owner_reward = _epoch_rewards(
                pool_history[epoch],
                margin_source,
                delegator_history.get(epoch, ()),
                totals.reserves,
                resolve_owner(pool_owners, epoch),
            )
            reward_data[epoch] = rewards
            if owner_reward is not None:
                owner_reward_data[epoch] = owner_reward

    logger.info(
        "Calculated pool rewards",
        epochs=len(reward_data),
        last_epoch=max(reward_data, default=None),
    )
    return PoolRewards(reward_data=reward_data, owner_reward_data=owner_reward_data)

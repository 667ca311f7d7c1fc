"""Epoch sync controller: builds, persists and publishes ``ServerState``.

Lifecycle:
  COLD -> FULL_FETCH        no snapshot for the current or previous epoch
  COLD -> INCREMENTAL_UPDATE snapshot for the previous epoch exists
  *    -> STEADY            a snapshot is published and served

Every rebuild produces a new ``ServerState`` and only then replaces the
published reference. Readers holding the old state keep a complete object.
"""

import asyncio
from collections.abc import Mapping

import structlog

from poolrewards.enums import Mode, SyncPhase
from poolrewards.services._helpers import now_iso
from poolrewards.services._types import EpochRewardRow, SyncStatusDict
from poolrewards.services.errors import MissingEpochDataError, StateUnavailableError, SyncError
from poolrewards.services.ledger_client import LedgerClient
from poolrewards.services.margins import MarginStrategy
from poolrewards.services.reward_engine import FINALIZATION_LAG, calculate_pool_rewards
from poolrewards.services.schemas.ledger import (
    DelegatorStakeRecord,
    EpochInfo,
    GenesisInfo,
    PoolEpochRecord,
    PoolListEntry,
    PoolOwnerRecord,
    PoolUpdate,
    ProtocolParameters,
    TokenomicRecord,
)
from poolrewards.services.schemas.results import MarginHistory, PoolRewards
from poolrewards.services.schemas.state import CalculatorData, ServerState
from poolrewards.services.state_store import EpochStateStore

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

CALCULATOR_POOL_FIELDS: frozenset[str] = frozenset(
    {
        "epoch_no",
        "active_stake",
        "active_stake_pct",
        "saturation_pct",
        "block_cnt",
        "delegator_cnt",
        "fixed_cost",
        "pool_fees",
        "deleg_rewards",
        "member_rewards",
        "epoch_ros",
    }
)

CALCULATOR_PARAM_FIELDS: frozenset[str] = frozenset(
    {
        "influence",
        "decentralisation",
        "optimal_pool_count",
        "monetary_expand_rate",
        "treasury_growth_rate",
    }
)


class EpochSyncController:
    def __init__(
        self,
        client: LedgerClient,
        store: EpochStateStore,
        strategy: MarginStrategy,
        sync_interval: float = 3600.0,
    ) -> None:
        self.client: LedgerClient = client
        self.store: EpochStateStore = store
        self.strategy: MarginStrategy = strategy
        self.sync_interval: float = sync_interval

        self.phase: SyncPhase = SyncPhase.COLD
        self.last_error: str | None = None
        self.last_synced_at: str | None = None

        self._state: ServerState | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    @property
    def mode(self) -> Mode:
        return self.strategy.mode

    @property
    def state(self) -> ServerState | None:
        """Currently published snapshot. Never mutated, only replaced."""
        return self._state

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def require_state(self) -> ServerState:
        state: ServerState | None = self._state
        if state is None:
            raise StateUnavailableError("No server state has been published yet")
        return state

    def status(self) -> SyncStatusDict:
        state: ServerState | None = self._state
        return SyncStatusDict(
            phase=self.phase.value,
            mode=self.mode.value,
            current_epoch=state.current_epoch if state is not None else None,
            last_synced_at=self.last_synced_at,
            last_error=self.last_error,
            in_progress=self.in_progress,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def start(self) -> ServerState:
        """Cold start: reuse, extend or fully build the current snapshot.

        Errors propagate so the caller can abort startup.
        """
        async with self._lock:
            state: ServerState = await self._startup()
            self.last_error = None
            return state

    async def tick(self) -> bool:
        """One scheduled sync check. Returns True when a new state was published.

        Failures are logged and kept in ``last_error``; the published state
        stays in place and the next tick retries.
        """
        if self._lock.locked():
            logger.warning("Sync already in progress, skipping tick")
            return False

        async with self._lock:
            try:
                published: bool = await self._sync_once()
            except Exception as e:
                self.last_error = f"{type(e).__name__}: {e}"
                self.phase = SyncPhase.STEADY if self._state is not None else SyncPhase.COLD
                logger.exception("Sync tick failed", error=self.last_error)
                return False
            self.last_error = None
            return published

    async def run_forever(self) -> None:
        logger.info("Sync ticker started", interval_seconds=self.sync_interval)
        while True:
            await asyncio.sleep(self.sync_interval)
            await self.tick()

    async def _startup(self) -> ServerState:
        current: int = await self.client.get_tip_epoch()
        logger.info("Starting sync", mode=self.mode.value, epoch=current)

        stored: ServerState | None = await self.store.load(self.mode, current)
        if stored is not None:
            self._publish(stored)
            return stored

        previous: ServerState | None = None
        if current > 0:
            previous = await self.store.load(self.mode, current - 1)

        next_state: ServerState
        if previous is not None:
            next_state = await self.build_incremental(previous, current)
        else:
            next_state = await self.build_full(current)
        await self.store.save(next_state)
        self._publish(next_state)
        return next_state

    async def _sync_once(self) -> bool:
        base: ServerState | None = self._state
        if base is None:
            await self._startup()
            return True

        current: int = await self.client.get_tip_epoch()
        if current == base.current_epoch:
            logger.debug("Epoch unchanged", epoch=current)
            return False
        if current < base.current_epoch:
            logger.warning("Upstream tip is behind published state", tip=current, published=base.current_epoch)
            return False

        next_state: ServerState = await self.build_incremental(base, current)
        await self.store.save(next_state)
        self._publish(next_state)
        return True

    def _publish(self, state: ServerState) -> None:
        self._state = state
        self.phase = SyncPhase.STEADY
        self.last_synced_at = state.synced_at
        logger.info("Published server state", mode=state.mode.value, epoch=state.current_epoch)

    # ------------------------------------------------------------------
    # Builds
    # ------------------------------------------------------------------

    async def build_full(self, current: int) -> ServerState:
        """Fetch everything for ``current`` from the ledger and compute rewards."""
        self.phase = SyncPhase.FULL_FETCH
        logger.info("Full fetch", epoch=current)

        pool_list: list[PoolListEntry] = await self.client.get_pool_list()
        pool_history: dict[int, PoolEpochRecord] = await self.client.get_pool_history()
        if not pool_history:
            raise MissingEpochDataError(f"No history for pool {self.client.pool_id}")
        delegator_history: dict[int, list[DelegatorStakeRecord]] = (
            await self.client.get_delegator_history(min(pool_history), current)
        )
        tokenomic_stats: dict[int, TokenomicRecord] = await self.client.get_tokenomic_stats()
        pool_owners: list[PoolOwnerRecord] = await self.client.get_pool_owner_history()
        margins: MarginHistory = await self.strategy.build_history(self.client, pool_list)

        return await self._assemble(
            current, pool_list, pool_history, delegator_history, tokenomic_stats, pool_owners, margins
        )

    async def build_incremental(self, base: ServerState, current: int) -> ServerState:
        """Extend ``base`` to ``current`` without touching it.

        Only delegator snapshots for the new epochs are fetched, and margin
        history is extended for each epoch that became final since ``base``.
        """
        if current <= base.current_epoch:
            raise SyncError(
                f"Cannot update epoch {base.current_epoch} snapshot to epoch {current}"
            )
        self.phase = SyncPhase.INCREMENTAL_UPDATE
        logger.info("Incremental update", from_epoch=base.current_epoch, to_epoch=current)

        pool_list: list[PoolListEntry] = await self.client.get_pool_list()
        pool_history: dict[int, PoolEpochRecord] = await self.client.get_pool_history()
        new_delegators: dict[int, list[DelegatorStakeRecord]] = await self.client.get_delegator_history(
            base.current_epoch + 1, current
        )
        delegator_history: dict[int, list[DelegatorStakeRecord]] = {
            **base.delegator_history,
            **new_delegators,
        }
        tokenomic_stats: dict[int, TokenomicRecord] = await self.client.get_tokenomic_stats()
        pool_owners: list[PoolOwnerRecord] = await self.client.get_pool_owner_history()

        newly_final: range = range(
            max(base.current_epoch - FINALIZATION_LAG + 1, 0), current - FINALIZATION_LAG + 1
        )
        margins: MarginHistory = await self.strategy.extend_history(
            self.client,
            pool_list,
            MarginHistory(pool_margins=base.pool_margins, median_margins=base.median_margins),
            newly_final,
        )

        return await self._assemble(
            current, pool_list, pool_history, delegator_history, tokenomic_stats, pool_owners, margins
        )

    async def _assemble(
        self,
        current: int,
        pool_list: list[PoolListEntry],
        pool_history: dict[int, PoolEpochRecord],
        delegator_history: dict[int, list[DelegatorStakeRecord]],
        tokenomic_stats: dict[int, TokenomicRecord],
        pool_owners: list[PoolOwnerRecord],
        margins: MarginHistory,
    ) -> ServerState:
        rewards: PoolRewards = calculate_pool_rewards(
            self.strategy.margin_source(margins),
            current,
            pool_history,
            delegator_history,
            tokenomic_stats,
            pool_owners,
        )
        calculator_data: CalculatorData = await self._build_calculator_data(
            current, pool_history, tokenomic_stats, margins
        )
        return ServerState(
            mode=self.mode,
            current_epoch=current,
            synced_at=now_iso(),
            pool_list=pool_list,
            pool_history=pool_history,
            delegator_history=delegator_history,
            tokenomic_stats=tokenomic_stats,
            pool_owners=pool_owners,
            reward_data=rewards.reward_data,
            owner_reward_data=rewards.owner_reward_data,
            calculator_data=calculator_data,
            pool_margins=margins.pool_margins,
            median_margins=margins.median_margins,
        )

    async def _build_calculator_data(
        self,
        current: int,
        pool_history: Mapping[int, PoolEpochRecord],
        tokenomic_stats: Mapping[int, TokenomicRecord],
        margins: MarginHistory,
    ) -> CalculatorData:
        target: int = current - FINALIZATION_LAG
        record: PoolEpochRecord | None = pool_history.get(target)
        if record is None:
            raise MissingEpochDataError(f"No pool history for epoch {target}")
        totals: TokenomicRecord | None = tokenomic_stats.get(current - 1)
        if totals is None:
            raise MissingEpochDataError(f"No tokenomic totals for epoch {current - 1}")

        epoch_info: EpochInfo = await self.client.get_epoch_info(target)
        params: ProtocolParameters = await self.client.get_protocol_parameters(current)
        pool_info: PoolUpdate = await self.client.get_pool_info()
        genesis: GenesisInfo = await self.client.get_genesis()

        return CalculatorData(
            mode=self.mode,
            margin=self.strategy.margin_for_epoch(margins, target),
            **record.model_dump(include=set(CALCULATOR_POOL_FIELDS)),
            fees=epoch_info.fees,
            total_block_count=epoch_info.blk_count,
            total_active_stake=epoch_info.active_stake,
            reserves=totals.reserves,
            **params.model_dump(include=set(CALCULATOR_PARAM_FIELDS)),
            pledge=pool_info.pledge,
            active_slot_coeff=genesis.active_slot_coeff,
            epoch_length_in_slots=genesis.epoch_length,
        )


def epoch_reward_rows(state: ServerState, epoch: int) -> list[EpochRewardRow]:
    """Owner first, then delegators by descending reward."""
    rows: list[EpochRewardRow] = []
    owner = state.owner_reward_data.get(epoch)
    if owner is not None:
        rows.append(
            EpochRewardRow(epoch=epoch, address=owner.owner, role="owner", stake=owner.stake, reward=owner.reward)
        )
    for record in sorted(state.reward_data.get(epoch, ()), key=lambda r: r.reward, reverse=True):
        rows.append(
            EpochRewardRow(
                epoch=epoch, address=record.delegator, role="delegator", stake=record.stake, reward=record.reward
            )
        )
    return rows

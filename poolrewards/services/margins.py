"""Margin strategies, one per configured mode.

The strategy decides which margin the reward engine applies to each epoch
and owns whatever margin history that requires (only the median strategy
keeps one).
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import ClassVar

import structlog

from config import Settings
from poolrewards.enums import Mode, PoolStatus
from poolrewards.services.ledger_client import LedgerClient
from poolrewards.services.reward_engine import MarginSource, calculate_median_margins, margin_for, median
from poolrewards.services.schemas.ledger import BlockRecord, PoolEpochRecord, PoolListEntry
from poolrewards.services.schemas.results import MarginHistory

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class MarginStrategy(ABC):
    mode: ClassVar[Mode]

    @abstractmethod
    def margin_source(self, history: MarginHistory) -> MarginSource:
        """Margin input for ``calculate_pool_rewards``."""

    def margin_for_epoch(self, history: MarginHistory, epoch: int) -> Decimal | None:
        return margin_for(self.margin_source(history), epoch)

    async def build_history(
        self, client: LedgerClient, pool_list: Sequence[PoolListEntry]
    ) -> MarginHistory:
        return MarginHistory()

    async def extend_history(
        self,
        client: LedgerClient,
        pool_list: Sequence[PoolListEntry],
        base: MarginHistory,
        epochs: Iterable[int],
    ) -> MarginHistory:
        return base


class CustomMargin(MarginStrategy):
    """Operator-configured margin, applied to every epoch."""

    mode = Mode.CUSTOM_MARGIN

    def __init__(self, value: Decimal) -> None:
        self.value: Decimal = value

    def margin_source(self, history: MarginHistory) -> MarginSource:
        return self.value


class Percentage(MarginStrategy):
    """Pure stake-share split after the fixed cost.

    Equivalent to a zero margin: the owner keeps the fixed cost on top of
    their own stake share and nothing else.
    """

    mode = Mode.PERCENTAGE

    def margin_source(self, history: MarginHistory) -> MarginSource:
        return Decimal(0)


class MedianMargin(MarginStrategy):
    """Median margin of all block-producing pools, per epoch."""

    mode = Mode.MEDIAN_MARGIN

    def margin_source(self, history: MarginHistory) -> MarginSource:
        return history.median_margins

    async def build_history(
        self, client: LedgerClient, pool_list: Sequence[PoolListEntry]
    ) -> MarginHistory:
        pool_margins: dict[int, list[Decimal]] = await client.get_pool_margins_for_all_epochs(pool_list)
        return MarginHistory(
            pool_margins=pool_margins,
            median_margins=calculate_median_margins(pool_margins),
        )

    async def extend_history(
        self,
        client: LedgerClient,
        pool_list: Sequence[PoolListEntry],
        base: MarginHistory,
        epochs: Iterable[int],
    ) -> MarginHistory:
        pool_margins: dict[int, list[Decimal]] = dict(base.pool_margins)
        median_margins: dict[int, Decimal | None] = dict(base.median_margins)
        for epoch in epochs:
            margins: list[Decimal] = await collect_epoch_margins(client, pool_list, epoch)
            pool_margins[epoch] = margins
            median_margins[epoch] = median(margins)
            logger.info(
                "Extended median margins",
                epoch=epoch,
                pools=len(margins),
                median=str(median_margins[epoch]),
            )
        return MarginHistory(pool_margins=pool_margins, median_margins=median_margins)


def _retired_by(pool: PoolListEntry, epoch: int) -> bool:
    return (
        pool.pool_status == PoolStatus.RETIRED
        and pool.retiring_epoch is not None
        and pool.retiring_epoch <= epoch
    )


async def collect_epoch_margins(
    client: LedgerClient, pool_list: Sequence[PoolListEntry], epoch: int
) -> list[Decimal]:
    """Margins of every pool that minted a block in ``epoch``.

    The pool list carries each pool's latest margin. It is used when that
    update was already active in ``epoch``; otherwise the pool's history for
    the epoch is fetched to get the margin it actually charged.
    """
    blocks: list[BlockRecord] = await client.get_blocks_in_epoch(epoch)
    minted: set[str] = {block.pool for block in blocks if block.pool}

    margins: list[Decimal] = []
    for pool in pool_list:
        if _retired_by(pool, epoch) or pool.pool_id_bech32 not in minted:
            continue
        if pool.margin is not None and pool.active_epoch_no is not None and pool.active_epoch_no <= epoch:
            margins.append(pool.margin)
            continue
        record: PoolEpochRecord = await client.get_pool_epoch(pool.pool_id_bech32, epoch)
        if record.margin is not None:
            margins.append(record.margin)
    return margins


def strategy_for(settings: Settings) -> MarginStrategy:
    match settings.mode:
        case Mode.CUSTOM_MARGIN if settings.custom_margin is not None:
            return CustomMargin(settings.custom_margin)
        case Mode.MEDIAN_MARGIN:
            return MedianMargin()
        case Mode.PERCENTAGE:
            return Percentage()
    raise ValueError(f"No margin strategy for mode {settings.mode.value}")

"""Shared utilities for the service layer."""

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Protocol, TypeVar

from poolrewards.enums import Mode


class HasEpoch(Protocol):
    epoch_no: int


R = TypeVar("R", bound=HasEpoch)
V = TypeVar("V")

STATE_FILE_PREFIX: str = "server_state"


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


def state_name(mode: Mode, epoch: int) -> str:
    """Snapshot name for one (mode, epoch) pair, without extension."""
    return f"{STATE_FILE_PREFIX}_{mode.value}_epoch_{epoch}"


def index_by_epoch(records: Iterable[R]) -> dict[int, R]:
    """Key records by ``epoch_no``. The first record seen for an epoch wins."""
    indexed: dict[int, R] = {}
    for record in records:
        indexed.setdefault(record.epoch_no, record)
    return indexed


def sparse_to_list(by_epoch: Mapping[int, V]) -> list[V | None]:
    """Render an epoch map as a list whose index is the epoch, ``None`` in gaps."""
    if not by_epoch:
        return []
    return [by_epoch.get(epoch) for epoch in range(max(by_epoch) + 1)]

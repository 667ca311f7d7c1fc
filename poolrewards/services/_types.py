"""Typed dicts for service-layer return values.

Keeps route-facing methods explicit about their shape instead of returning bare dicts.
"""

import sys

if sys.version_info >= (3, 12):
    from typing import TypedDict
else:
    from typing_extensions import TypedDict

# -- Epoch Sync ------------------------------------------------------------


class SyncStatusDict(TypedDict):
    phase: str
    mode: str
    current_epoch: int | None
    last_synced_at: str | None
    last_error: str | None
    in_progress: bool


# -- CLI -------------------------------------------------------------------


class EpochRewardRow(TypedDict):
    epoch: int
    address: str
    role: str
    stake: int
    reward: int

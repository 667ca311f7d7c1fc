"""Shared exception hierarchy for pool reward services."""


class PoolRewardsError(Exception):
    """Base exception for every failure raised by the services layer."""


# ── Ledger client ─────────────────────────────────────────────────────────────


class LedgerClientError(PoolRewardsError):
    """Base exception for ledger indexer client errors."""


class UpstreamRequestError(LedgerClientError):
    """HTTP call to the ledger indexer failed or returned an error status."""


class DuplicateRecordError(LedgerClientError):
    """Paginated fetch returned records that violate a uniqueness key."""


class MalformedResponseError(LedgerClientError):
    """Response body did not have the expected shape."""


# ── Reward computation ────────────────────────────────────────────────────────


class MissingEpochDataError(PoolRewardsError):
    """Data for a required epoch offset is absent."""


class RewardCalculationError(PoolRewardsError):
    """Inputs cannot produce a reward for an epoch."""


# ── State store ───────────────────────────────────────────────────────────────


class StateStoreError(PoolRewardsError):
    """Snapshot could not be written or read back."""


# ── Sync ──────────────────────────────────────────────────────────────────────


class SyncError(PoolRewardsError):
    """Base exception for epoch sync errors."""


class StateUnavailableError(SyncError):
    """No snapshot has been published yet."""

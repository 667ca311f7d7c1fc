"""Ledger indexer records, as returned by the Koios REST API."""

from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

# Whole lovelace. Upstream sends decimal strings; JSON output keeps them strings.
Lovelace = Annotated[int, PlainSerializer(str, return_type=str, when_used="json")]


class LedgerRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class PoolListEntry(LedgerRecord):
    pool_id_bech32: str
    pool_status: str | None = None
    retiring_epoch: int | None = None
    active_epoch_no: int | None = None
    margin: Decimal | None = None
    fixed_cost: Lovelace | None = None
    pledge: Lovelace | None = None
    ticker: str | None = None


class PoolEpochRecord(LedgerRecord):
    epoch_no: int
    active_stake: Lovelace | None = None
    active_stake_pct: Decimal | None = None
    saturation_pct: Decimal | None = None
    block_cnt: int | None = None
    delegator_cnt: int | None = None
    margin: Decimal | None = None
    fixed_cost: Lovelace | None = None
    pool_fees: Lovelace | None = None
    deleg_rewards: Lovelace | None = None
    member_rewards: Lovelace | None = None
    epoch_ros: Decimal | None = None


class DelegatorStakeRecord(LedgerRecord):
    stake_address: str
    amount: Lovelace
    epoch_no: int


class TokenomicRecord(LedgerRecord):
    epoch_no: int
    reserves: Lovelace
    circulation: Lovelace | None = None
    treasury: Lovelace | None = None
    reward: Lovelace | None = None
    supply: Lovelace | None = None
    fees: Lovelace | None = None
    deposits_stake: Lovelace | None = None
    deposits_drep: Lovelace | None = None
    deposits_proposal: Lovelace | None = None


class PoolOwnerRecord(LedgerRecord):
    stake_address: str
    epoch_no: int
    declared_pledge: Lovelace | None = None
    pool_id_bech32: str | None = None


class BlockRecord(LedgerRecord):
    epoch_no: int
    pool: str | None = None
    hash: str | None = None
    block_height: int | None = None
    block_time: int | None = None


class EpochInfo(LedgerRecord):
    epoch_no: int
    fees: Lovelace | None = None
    blk_count: int | None = None
    active_stake: Lovelace | None = None


class ProtocolParameters(LedgerRecord):
    epoch_no: int
    influence: Decimal | None = None
    decentralisation: Decimal | None = None
    optimal_pool_count: int | None = None
    monetary_expand_rate: Decimal | None = None
    treasury_growth_rate: Decimal | None = None


class PoolUpdate(LedgerRecord):
    pool_id_bech32: str | None = None
    active_epoch_no: int | None = None
    pledge: Lovelace | None = None
    margin: Decimal | None = None
    fixed_cost: Lovelace | None = None


class GenesisInfo(LedgerRecord):
    active_slot_coeff: Decimal = Field(validation_alias="activeslotcoeff")
    epoch_length: int = Field(validation_alias="epochlength")

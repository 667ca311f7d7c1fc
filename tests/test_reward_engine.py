"""Tests for reward engine: medians, owner resolution, reward split."""

import random
from decimal import Decimal

import pytest

from poolrewards.services.errors import MissingEpochDataError, RewardCalculationError
from poolrewards.services.margins import Percentage
from poolrewards.services.reward_engine import (
    calculate_median_margins,
    calculate_pool_rewards,
    margin_for,
    median,
    resolve_owner,
)
from poolrewards.services.schemas import (
    DelegatorStakeRecord,
    MarginHistory,
    PoolEpochRecord,
    PoolOwnerRecord,
    PoolRewards,
    TokenomicRecord,
)
from factories import ADA, DELEGATORS, OWNER, RESERVES, delegator_rows, pool_epoch_row

POOL_REWARD: int = 1000 * ADA


def _history(*epochs: int, **overrides: object) -> dict[int, PoolEpochRecord]:
    return {e: PoolEpochRecord.model_validate({**pool_epoch_row(e), **overrides}) for e in epochs}


def _delegators(*epochs: int) -> dict[int, list[DelegatorStakeRecord]]:
    return {e: [DelegatorStakeRecord.model_validate(r) for r in delegator_rows(e)] for e in epochs}


def _totals(first: int, last: int) -> dict[int, TokenomicRecord]:
    return {e: TokenomicRecord(epoch_no=e, reserves=RESERVES) for e in range(first, last + 1)}


def _owners() -> list[PoolOwnerRecord]:
    return [PoolOwnerRecord(stake_address=OWNER, epoch_no=1)]


def _rewards(margin: Decimal | dict[int, Decimal | None] = Decimal("0.01"), **overrides: object) -> PoolRewards:
    return calculate_pool_rewards(
        margin,
        10,
        _history(5, 6, 7, 8, **overrides),
        _delegators(5, 6, 7, 8),
        _totals(4, 10),
        _owners(),
    )


# ---------------------------------------------------------------------------
# Medians
# ---------------------------------------------------------------------------


class TestMedian:
    def test_odd_count_takes_middle(self) -> None:
        assert median([Decimal(3), Decimal(1), Decimal(2)]) == Decimal(2)

    def test_even_count_averages_middle_pair(self) -> None:
        assert median([Decimal(1), Decimal(2), Decimal(3), Decimal(4)]) == Decimal("2.5")

    def test_empty_is_no_data(self) -> None:
        assert median([]) is None

    def test_per_epoch_medians_keep_empty_epochs(self) -> None:
        result: dict[int, Decimal | None] = calculate_median_margins(
            {
                7: [Decimal("0.05"), Decimal("0.01"), Decimal("0.02")],
                8: [],
                9: [Decimal("0.01"), Decimal("0.02")],
            }
        )
        assert result == {7: Decimal("0.02"), 8: None, 9: Decimal("0.015")}


# ---------------------------------------------------------------------------
# Owner resolution
# ---------------------------------------------------------------------------


class TestResolveOwner:
    def test_latest_change_at_or_before_epoch_applies(self) -> None:
        owners: list[PoolOwnerRecord] = [
            PoolOwnerRecord(stake_address="stake1first", epoch_no=3),
            PoolOwnerRecord(stake_address="stake1second", epoch_no=7),
        ]
        assert resolve_owner(owners, 2) is None
        assert resolve_owner(owners, 3) == "stake1first"
        assert resolve_owner(owners, 6) == "stake1first"
        assert resolve_owner(owners, 7) == "stake1second"
        assert resolve_owner(owners, 50) == "stake1second"

    def test_first_record_wins_within_same_epoch(self) -> None:
        owners: list[PoolOwnerRecord] = [
            PoolOwnerRecord(stake_address="stake1a", epoch_no=4),
            PoolOwnerRecord(stake_address="stake1b", epoch_no=4),
        ]
        assert resolve_owner(owners, 5) == "stake1a"


class TestMarginFor:
    def test_scalar_applies_to_every_epoch(self) -> None:
        assert margin_for(Decimal("0.03"), 1) == Decimal("0.03")
        assert margin_for(Decimal("0.03"), 900) == Decimal("0.03")

    def test_mapping_is_looked_up_by_epoch(self) -> None:
        source: dict[int, Decimal | None] = {5: Decimal("0.02"), 6: None}
        assert margin_for(source, 5) == Decimal("0.02")
        assert margin_for(source, 6) is None
        assert margin_for(source, 7) is None


# ---------------------------------------------------------------------------
# Rewards
# ---------------------------------------------------------------------------


class TestPoolRewards:
    def test_known_split_with_custom_margin(self) -> None:
        result: PoolRewards = _rewards()

        for epoch in (5, 6, 7, 8):
            rewards = {r.delegator: r.reward for r in result.reward_data[epoch]}
            assert rewards == {address: 217_800_000 for address in DELEGATORS}
            assert result.owner_reward_data[epoch].owner == OWNER
            assert result.owner_reward_data[epoch].reward == 564_400_000

    def test_zero_margin_is_pure_stake_share(self) -> None:
        result: PoolRewards = _rewards(Decimal(0))

        assert {r.reward for r in result.reward_data[5]} == {220_000_000}
        assert result.owner_reward_data[5].reward == 560_000_000

    def test_per_epoch_margins(self) -> None:
        margins: dict[int, Decimal | None] = {
            5: Decimal("0.01"),
            6: Decimal(0),
            7: Decimal("0.01"),
            8: Decimal(0),
        }
        result: PoolRewards = _rewards(margins)

        assert result.owner_reward_data[5].reward == 564_400_000
        assert result.owner_reward_data[6].reward == 560_000_000

    def test_distribution_never_exceeds_pool_reward(self) -> None:
        for margin in (Decimal(0), Decimal("0.01"), Decimal("0.035"), Decimal(1)):
            result: PoolRewards = _rewards(margin)
            for epoch, rewards in result.reward_data.items():
                distributed: int = sum(r.reward for r in rewards) + result.owner_reward_data[epoch].reward
                assert POOL_REWARD - (len(rewards) + 1) <= distributed <= POOL_REWARD

    def test_no_blocks_means_zero_for_everyone(self) -> None:
        for block_cnt in (0, None):
            result: PoolRewards = _rewards(block_cnt=block_cnt)

            assert all(r.reward == 0 for r in result.reward_data[5])
            assert len(result.reward_data[5]) == len(DELEGATORS)
            assert result.owner_reward_data[5].reward == 0

    def test_pot_below_fixed_cost_goes_to_owner(self) -> None:
        result: PoolRewards = _rewards(pool_fees=str(100 * ADA), deleg_rewards=str(200 * ADA))

        assert all(r.reward == 0 for r in result.reward_data[5])
        assert result.owner_reward_data[5].reward == 300 * ADA

    def test_pot_equal_to_fixed_cost_goes_to_owner(self) -> None:
        result: PoolRewards = _rewards(pool_fees=str(340 * ADA), deleg_rewards="0")

        assert all(r.reward == 0 for r in result.reward_data[5])
        assert result.owner_reward_data[5].reward == 340 * ADA

    def test_zero_stake_rows_are_excluded(self) -> None:
        result: PoolRewards = _rewards()

        for rewards in result.reward_data.values():
            assert all(r.stake > 0 for r in rewards)
            assert "stake1empty" not in {r.delegator for r in rewards}

    def test_only_finalized_epochs_are_rewarded(self) -> None:
        result: PoolRewards = calculate_pool_rewards(
            Decimal("0.01"),
            10,
            _history(7, 8, 9, 10),
            _delegators(7, 8, 9, 10),
            _totals(4, 11),
            _owners(),
        )
        assert sorted(result.reward_data) == [7, 8]

    def test_gaps_in_pool_history_stay_absent(self) -> None:
        result: PoolRewards = calculate_pool_rewards(
            Decimal("0.01"), 10, _history(5, 7), _delegators(5, 7), _totals(4, 10), _owners()
        )
        assert sorted(result.reward_data) == [5, 7]
        assert 6 not in result.owner_reward_data

    def test_epoch_without_delegator_snapshot_has_no_rewards(self) -> None:
        result: PoolRewards = calculate_pool_rewards(
            Decimal("0.01"), 10, _history(5, 6), _delegators(5), _totals(4, 10), _owners()
        )
        assert result.reward_data[6] == []
        assert 6 not in result.owner_reward_data

    def test_owner_absent_from_snapshot_has_no_entry(self) -> None:
        result: PoolRewards = calculate_pool_rewards(
            Decimal("0.01"),
            10,
            _history(5),
            _delegators(5),
            _totals(4, 10),
            [PoolOwnerRecord(stake_address="stake1someoneelse", epoch_no=1)],
        )
        assert result.owner_reward_data == {}
        assert {r.delegator for r in result.reward_data[5]} == {OWNER, *DELEGATORS}

    def test_reserves_are_read_one_epoch_ahead(self) -> None:
        totals: dict[int, TokenomicRecord] = _totals(4, 10)
        del totals[6]

        with pytest.raises(MissingEpochDataError, match="epoch 6"):
            calculate_pool_rewards(
                Decimal("0.01"), 10, _history(5), _delegators(5), totals, _owners()
            )

    def test_missing_margin_for_producing_epoch_raises(self) -> None:
        with pytest.raises(RewardCalculationError, match="margin"):
            _rewards({5: Decimal("0.01"), 6: None, 7: Decimal("0.01"), 8: Decimal("0.01")})

    def test_missing_margin_is_fine_without_blocks(self) -> None:
        result: PoolRewards = _rewards({}, block_cnt=0)
        assert all(r.reward == 0 for r in result.reward_data[8])



# ---------------------------------------------------------------------------
# Rounding
# ---------------------------------------------------------------------------


def _single_epoch(
    margin: Decimal,
    stakes: dict[str, int],
    pool_reward: int,
    fixed_cost: int,
) -> PoolRewards:
    record: PoolEpochRecord = PoolEpochRecord(
        epoch_no=5,
        active_stake=sum(stakes.values()),
        block_cnt=3,
        fixed_cost=fixed_cost,
        pool_fees=fixed_cost,
        deleg_rewards=pool_reward - fixed_cost,
    )
    snapshot: list[DelegatorStakeRecord] = [
        DelegatorStakeRecord(stake_address=address, amount=amount, epoch_no=5)
        for address, amount in stakes.items()
    ]
    return calculate_pool_rewards(margin, 7, {5: record}, {5: snapshot}, _totals(4, 7), _owners())


def _paid_out(result: PoolRewards) -> int:
    return sum(r.reward for r in result.reward_data[5]) + result.owner_reward_data[5].reward


class TestRounding:
    def test_half_lovelace_goes_to_member_and_owner_absorbs_it(self) -> None:
        result: PoolRewards = _single_epoch(
            Decimal(0), {OWNER: 3_500_000 * ADA, "stake1alice": 3_500_000 * ADA}, pool_reward=341, fixed_cost=340
        )

        assert [r.reward for r in result.reward_data[5]] == [1]
        assert result.owner_reward_data[5].reward == 340
        assert _paid_out(result) == 341

    def test_uneven_stakes_exact_lovelace(self) -> None:
        # 7M ADA pool: owner ~1.17M, alice ~2.33M, bob 3.5M, 1000 ADA to share.
        result: PoolRewards = _single_epoch(
            Decimal("0.02"),
            {
                OWNER: 1_166_666_666_667,
                "stake1alice": 2_333_333_333_333,
                "stake1bob": 3_500_000_000_000,
            },
            pool_reward=1340 * ADA,
            fixed_cost=340 * ADA,
        )

        rewards = {r.delegator: r.reward for r in result.reward_data[5]}
        assert rewards == {"stake1alice": 326_666_667, "stake1bob": 490_000_000}
        assert result.owner_reward_data[5].reward == 523_333_333
        assert _paid_out(result) == 1340 * ADA

    @pytest.mark.parametrize("seed", range(20))
    def test_random_epochs_stay_within_pool_reward(self, seed: int) -> None:
        rng: random.Random = random.Random(seed)
        for _ in range(10):
            holders: int = rng.randint(2, 40)
            stakes: dict[str, int] = {OWNER: rng.randint(1, 5_000_000) * ADA + rng.randint(0, ADA)}
            for i in range(holders - 1):
                stakes[f"stake1member{i}"] = rng.randint(1, 5_000_000) * ADA + rng.randint(0, ADA)
            fixed_cost: int = rng.randint(170, 500) * ADA
            pool_reward: int = fixed_cost + rng.randint(1, 50_000 * ADA)
            margin: Decimal = Decimal(rng.randint(0, 100)) / 1000

            paid: int = _paid_out(_single_epoch(margin, stakes, pool_reward, fixed_cost))

            assert pool_reward - holders <= paid <= pool_reward

    def test_percentage_mode_rounds_like_margin_modes(self) -> None:
        margin_source = Percentage().margin_source(MarginHistory())

        result: PoolRewards = _rewards(margin_source)

        # An exact one-third share of 660 ADA, not truncated to 219_999_999.
        assert {r.reward for r in result.reward_data[5]} == {220_000_000}
        assert result.owner_reward_data[5].reward == 560_000_000

"""Tests for poolrewards.services._helpers."""

from poolrewards.enums import Mode
from poolrewards.services._helpers import index_by_epoch, now_iso, sparse_to_list, state_name
from poolrewards.services.schemas import TokenomicRecord


def test_now_iso_format() -> None:
    ts: str = now_iso()
    assert "T" in ts
    assert ts.endswith("+00:00")


def test_state_name_matches_file_convention() -> None:
    assert state_name(Mode.CUSTOM_MARGIN, 512) == "server_state_CUSTOM_MARGIN_epoch_512"
    assert state_name(Mode.MEDIAN_MARGIN, 0) == "server_state_MEDIAN_MARGIN_epoch_0"


def test_index_by_epoch_keeps_first_record() -> None:
    records: list[TokenomicRecord] = [
        TokenomicRecord(epoch_no=3, reserves=30),
        TokenomicRecord(epoch_no=1, reserves=10),
        TokenomicRecord(epoch_no=3, reserves=99),
    ]
    indexed: dict[int, TokenomicRecord] = index_by_epoch(records)
    assert sorted(indexed) == [1, 3]
    assert indexed[3].reserves == 30


def test_sparse_to_list_marks_gaps() -> None:
    assert sparse_to_list({1: "a", 3: "c"}) == [None, "a", None, "c"]


def test_sparse_to_list_empty() -> None:
    assert sparse_to_list({}) == []

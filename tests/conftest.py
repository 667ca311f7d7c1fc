"""Shared fixtures: scripted Koios upstream and a ledger client bound to it."""

import pytest

from factories import FakeKoios, make_client
from poolrewards.services.ledger_client import LedgerClient


@pytest.fixture()
def koios() -> FakeKoios:
    return FakeKoios()


@pytest.fixture()
def ledger(koios: FakeKoios) -> LedgerClient:
    return make_client(koios.handler)

"""FastAPI dependencies: sync controller and ledger client from app state."""

from fastapi import Request

from poolrewards.services.epoch_sync import EpochSyncController
from poolrewards.services.ledger_client import LedgerClient


def get_controller(request: Request) -> EpochSyncController:
    return request.app.state.controller


def get_ledger_client(request: Request) -> LedgerClient:
    return request.app.state.ledger_client

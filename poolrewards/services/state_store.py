"""JSON snapshot store, one file per (mode, epoch)."""

import asyncio
import os
from pathlib import Path

import structlog
from pydantic import ValidationError

from poolrewards.enums import Mode
from poolrewards.services._helpers import state_name
from poolrewards.services.errors import StateStoreError
from poolrewards.services.schemas.state import ServerState

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class EpochStateStore:
    """Reads and writes ``ServerState`` snapshots under ``data_dir``.

    Writes go to a temporary sibling first and are moved into place with
    ``os.replace``, so a reader never sees a partially written file. Blocking
    file I/O runs in a worker thread.
    """

    SUFFIX: str = ".json"

    def __init__(self, data_dir: Path) -> None:
        self.data_dir: Path = data_dir

    def path_for(self, name: str) -> Path:
        return self.data_dir / f"{name}{self.SUFFIX}"

    def path_for_state(self, mode: Mode, epoch: int) -> Path:
        return self.path_for(state_name(mode, epoch))

    async def save(self, state: ServerState) -> Path:
        path: Path = self.path_for_state(state.mode, state.current_epoch)
        payload: str = state.model_dump_json()
        await asyncio.to_thread(self._write, path, payload)
        logger.info("Saved state snapshot", path=str(path), epoch=state.current_epoch)
        return path

    async def load(self, mode: Mode, epoch: int) -> ServerState | None:
        """Snapshot for ``(mode, epoch)``, or ``None`` if none was saved."""
        return await self.load_name(state_name(mode, epoch))

    async def load_name(self, name: str) -> ServerState | None:
        path: Path = self.path_for(name)
        raw: str | None = await asyncio.to_thread(self._read, path)
        if raw is None:
            logger.debug("No state snapshot", path=str(path))
            return None
        try:
            state: ServerState = ServerState.model_validate_json(raw)
        except ValidationError as e:
            raise StateStoreError(f"Snapshot {path} is not a valid server state") from e
        logger.info("Loaded state snapshot", path=str(path), epoch=state.current_epoch)
        return state

    def list_epochs(self, mode: Mode) -> list[int]:
        """Epochs with a stored snapshot for ``mode``, ascending."""
        prefix: str = state_name(mode, 0).removesuffix("0")
        epochs: list[int] = []
        if not self.data_dir.is_dir():
            return epochs
        for path in self.data_dir.glob(f"{prefix}*{self.SUFFIX}"):
            tail: str = path.stem.removeprefix(prefix)
            if tail.isdigit():
                epochs.append(int(tail))
        return sorted(epochs)

    def _write(self, path: Path, payload: str) -> None:
        tmp: Path = path.with_name(f".{path.name}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StateStoreError(f"Could not write snapshot {path}: {e}") from e

    @staticmethod
    def _read(path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StateStoreError(f"Could not read snapshot {path}: {e}") from e

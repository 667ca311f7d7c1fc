"""Koios ledger indexer client for fetching pool, delegator and network data."""

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from decimal import Decimal
from types import TracebackType
from typing import Final, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from config import Settings
from poolrewards.services._helpers import index_by_epoch
from poolrewards.services.errors import (
    DuplicateRecordError,
    MalformedResponseError,
    MissingEpochDataError,
    UpstreamRequestError,
)
from poolrewards.services.schemas.ledger import (
    BlockRecord,
    DelegatorStakeRecord,
    EpochInfo,
    GenesisInfo,
    PoolEpochRecord,
    PoolListEntry,
    PoolOwnerRecord,
    PoolUpdate,
    ProtocolParameters,
    TokenomicRecord,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

JsonRecord = dict[str, object]
UniqueKey = str | tuple[str, str] | None
M = TypeVar("M", bound=BaseModel)

# Pass as ``unique_by`` when repeated records are acceptable.
NO_CHECK: Final[None] = None

DEFAULT_PAGE_LIMIT: int = 1000

HOP_BY_HOP_HEADERS: frozenset[str] = frozenset(
    {
        "authorization",
        "connection",
        "content-length",
        "host",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)


def record_identity(record: Mapping[str, object], unique_by: str | tuple[str, str]) -> str:
    if isinstance(unique_by, tuple):
        first, second = unique_by
        return f"{record.get(first)}-{record.get(second)}"
    return str(record.get(unique_by))


def ensure_unique(
    records: Sequence[Mapping[str, object]],
    unique_by: str | tuple[str, str],
    source: str,
) -> None:
    """Raise if two records share an identity.

    Koios occasionally serves the same page twice. Merging silently would
    overwrite rows and corrupt every total computed from them.
    """
    counts: Counter[str] = Counter(record_identity(r, unique_by) for r in records)
    duplicates: list[str] = sorted(key for key, n in counts.items() if n > 1)
    if duplicates:
        extra: int = sum(counts[key] - 1 for key in duplicates)
        raise DuplicateRecordError(
            f"{source} returned {extra} duplicate record(s) by {unique_by!r}, "
            f"e.g. {duplicates[:5]}"
        )


def window_blocks(page: Sequence[BlockRecord], epoch: int) -> tuple[list[BlockRecord], bool]:
    """Trim one newest-first page of blocks to ``epoch``.

    Returns the blocks of ``epoch`` on this page and whether an older epoch
    was reached (no later page can hold blocks of ``epoch``).
    """
    if not page:
        return [], True
    if page[-1].epoch_no > epoch:
        return [], False

    start: int = 0
    while page[start].epoch_no > epoch:
        start += 1
    end: int = start
    while end < len(page) and page[end].epoch_no == epoch:
        end += 1
    return list(page[start:end]), end < len(page)


def _check_epoch(epoch: int) -> None:
    if epoch < 0:
        raise ValueError(f"Epoch must be a non-negative integer, got {epoch}")


class LedgerClient:
    """Async client for the Koios REST API, scoped to one configured pool."""

    def __init__(
        self,
        base_url: str,
        pool_id: str,
        token: str | None = None,
        timeout: float = 30.0,
        page_limit: int = DEFAULT_PAGE_LIMIT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.pool_id: str = pool_id
        self.page_limit: int = page_limit
        self._token: str | None = token

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http: httpx.AsyncClient = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> "LedgerClient":
        return cls(
            base_url=settings.koios.api_url,
            pool_id=settings.pool_id,
            token=settings.koios.token,
            timeout=settings.koios.timeout,
            page_limit=settings.koios.page_limit,
            transport=transport,
        )

    async def __aenter__(self) -> "LedgerClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, object] | None = None,
        json_body: object | None = None,
    ) -> list[JsonRecord]:
        try:
            response: httpx.Response = await self._http.request(
                method, path, params=params, json=json_body
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamRequestError(
                f"{method} {path} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamRequestError(f"{method} {path} failed: {e!r}") from e

        try:
            payload: object = response.json(parse_float=Decimal)
        except ValueError as e:
            raise MalformedResponseError(f"{method} {path} did not return JSON") from e
        if not isinstance(payload, list):
            raise MalformedResponseError(
                f"{method} {path} returned {type(payload).__name__}, expected a list"
            )
        logger.debug("Upstream response", method=method, path=path, rows=len(payload))
        return payload

    @staticmethod
    def _parse(model: type[M], rows: Iterable[object]) -> list[M]:
        try:
            return [model.model_validate(row) for row in rows]
        except ValidationError as e:
            raise MalformedResponseError(f"Invalid {model.__name__} record: {e}") from e

    async def _first(self, model: type[M], path: str, params: Mapping[str, object]) -> M | None:
        rows: list[JsonRecord] = await self._request("GET", path, params=params)
        parsed: list[M] = self._parse(model, rows[:1])
        return parsed[0] if parsed else None

    async def fetch_paged(
        self,
        path: str,
        unique_by: UniqueKey,
        params: Mapping[str, object] | None = None,
    ) -> list[JsonRecord]:
        """Fetch every page of a collection with ``offset``/``limit``.

        Stops after the first page shorter than the limit. ``unique_by`` names
        the field (or pair of fields) that must be unique across all pages;
        ``NO_CHECK`` disables the check.
        """
        rows: list[JsonRecord] = []
        offset: int = 0
        while True:
            page: list[JsonRecord] = await self._request(
                "GET",
                path,
                params={**(params or {}), "offset": offset, "limit": self.page_limit},
            )
            rows.extend(page)
            offset += len(page)
            if len(page) < self.page_limit:
                break

        logger.debug("Fetched collection", path=path, rows=len(rows), pages=offset // self.page_limit + 1)
        if unique_by is not NO_CHECK:
            ensure_unique(rows, unique_by, path)
        return rows

    async def forward(
        self,
        method: str,
        path: str,
        params: Sequence[tuple[str, str]] = (),
        headers: Mapping[str, str] | None = None,
        content: bytes | None = None,
    ) -> httpx.Response:
        """Send a raw request upstream with the server-side bearer token."""
        outgoing: dict[str, str] = {
            k: v for k, v in (headers or {}).items() if k.lower() not in HOP_BY_HOP_HEADERS
        }
        if self._token:
            outgoing["Authorization"] = f"Bearer {self._token}"
        request: httpx.Request = self._http.build_request(
            method, path.lstrip("/"), params=list(params), headers=outgoing, content=content
        )
        try:
            return await self._http.send(request)
        except httpx.HTTPError as e:
            raise UpstreamRequestError(f"{method} {path} failed: {e!r}") from e

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    async def get_tip_epoch(self) -> int:
        rows: list[JsonRecord] = await self._request("GET", "/tip")
        epoch: object = rows[0].get("epoch_no") if rows else None
        if not isinstance(epoch, int):
            raise MalformedResponseError("/tip did not report an epoch_no")
        return epoch

    async def get_tokenomic_stats(self) -> dict[int, TokenomicRecord]:
        rows: list[JsonRecord] = await self.fetch_paged("/totals", "epoch_no")
        return index_by_epoch(self._parse(TokenomicRecord, rows))

    async def get_protocol_parameters(self, epoch: int) -> ProtocolParameters:
        _check_epoch(epoch)
        params: ProtocolParameters | None = await self._first(
            ProtocolParameters, "/epoch_params", {"_epoch_no": epoch}
        )
        if params is None:
            raise MissingEpochDataError(f"No protocol parameters for epoch {epoch}")
        return params

    async def get_epoch_info(self, epoch: int) -> EpochInfo:
        _check_epoch(epoch)
        info: EpochInfo | None = await self._first(EpochInfo, "/epoch_info", {"_epoch_no": epoch})
        if info is None:
            raise MissingEpochDataError(f"No epoch info for epoch {epoch}")
        return info

    async def get_genesis(self) -> GenesisInfo:
        genesis: GenesisInfo | None = await self._first(GenesisInfo, "/genesis", {})
        if genesis is None:
            raise MalformedResponseError("/genesis returned no rows")
        return genesis

    async def get_blocks_in_epoch(self, epoch: int) -> list[BlockRecord]:
        """All blocks minted in ``epoch``.

        ``/blocks`` is newest-first and epoch boundaries do not line up with
        page boundaries, so each page is windowed to the target epoch until
        a block of an older epoch shows up.
        """
        _check_epoch(epoch)
        blocks: list[BlockRecord] = []
        offset: int = 0
        while True:
            rows: list[JsonRecord] = await self._request(
                "GET", "/blocks", params={"offset": offset, "limit": self.page_limit}
            )
            page: list[BlockRecord] = self._parse(BlockRecord, rows)
            offset += self.page_limit
            kept, done = window_blocks(page, epoch)
            blocks.extend(kept)
            if done or len(page) < self.page_limit:
                break

        logger.info("Fetched blocks for epoch", epoch=epoch, blocks=len(blocks))
        return blocks

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

    async def get_pool_list(self) -> list[PoolListEntry]:
        rows: list[JsonRecord] = await self.fetch_paged("/pool_list", "pool_id_bech32")
        return self._parse(PoolListEntry, rows)

    async def get_pool_history(
        self, pool_id: str | None = None, epoch: int | None = None
    ) -> dict[int, PoolEpochRecord]:
        """Pool history keyed by epoch. Defaults to the configured pool."""
        params: dict[str, object] = {"_pool_bech32": pool_id or self.pool_id}
        if epoch is not None:
            _check_epoch(epoch)
            params["_epoch_no"] = epoch
        rows: list[JsonRecord] = await self.fetch_paged("/pool_history", "epoch_no", params)
        return index_by_epoch(self._parse(PoolEpochRecord, rows))

    async def get_pool_epoch(self, pool_id: str, epoch: int) -> PoolEpochRecord:
        history: dict[int, PoolEpochRecord] = await self.get_pool_history(pool_id, epoch)
        record: PoolEpochRecord | None = history.get(epoch)
        if record is None:
            raise MissingEpochDataError(f"No history for pool {pool_id} in epoch {epoch}")
        return record

    async def get_pool_margins_for_all_epochs(
        self, pool_list: Sequence[PoolListEntry]
    ) -> dict[int, list[Decimal]]:
        """Margins charged per epoch by every pool that minted a block in it.

        One history request per pool, so only run on cold start. Epochs in
        which a pool was registered but minted nothing still get an (empty)
        bucket.
        """
        margins: dict[int, list[Decimal]] = {}
        total: int = len(pool_list)
        for n, pool in enumerate(pool_list, start=1):
            if n % 250 == 0 or n == total:
                logger.info("Fetching pool histories", progress=f"{n}/{total}")
            history: dict[int, PoolEpochRecord] = await self.get_pool_history(pool.pool_id_bech32)
            for epoch, record in history.items():
                bucket: list[Decimal] = margins.setdefault(epoch, [])
                if record.block_cnt and record.margin is not None:
                    bucket.append(record.margin)
        return margins

    async def get_pool_info(self, pool_id: str | None = None) -> PoolUpdate:
        """Latest registration update (pledge, margin, fixed cost) of a pool."""
        pool: str = pool_id or self.pool_id
        update: PoolUpdate | None = await self._first(
            PoolUpdate, "/pool_updates", {"_pool_bech32": pool}
        )
        if update is None:
            raise MalformedResponseError(f"/pool_updates returned nothing for {pool}")
        return update

    async def get_pool_owner_history(self) -> list[PoolOwnerRecord]:
        rows: list[JsonRecord] = await self._request(
            "POST", "/pool_owner_history", json_body={"_pool_bech32_ids": [self.pool_id]}
        )
        return self._parse(PoolOwnerRecord, rows)

    # ------------------------------------------------------------------
    # Delegators
    # ------------------------------------------------------------------

    async def get_delegator_history(
        self, first_epoch: int, last_epoch: int
    ) -> dict[int, list[DelegatorStakeRecord]]:
        """Active stake snapshots of the pool's delegators for a closed epoch range.

        Walks from ``last_epoch`` down. An empty result means the pool was
        not registered in that epoch and is skipped, not treated as an error.
        """
        _check_epoch(first_epoch)
        _check_epoch(last_epoch)
        if first_epoch > last_epoch:
            raise ValueError(f"Empty epoch range {first_epoch}..{last_epoch}")

        history: dict[int, list[DelegatorStakeRecord]] = {}
        for epoch in range(last_epoch, first_epoch - 1, -1):
            rows: list[JsonRecord] = await self.fetch_paged(
                "/pool_delegators_history",
                "stake_address",
                {"_pool_bech32": self.pool_id, "_epoch_no": epoch},
            )
            if not rows:
                continue
            history[epoch] = self._parse(
                DelegatorStakeRecord, ({"epoch_no": epoch, **row} for row in rows)
            )
            logger.debug("Fetched delegators", epoch=epoch, delegators=len(rows))
        return history

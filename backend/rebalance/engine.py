"""
Run Trigger — dispatch named engine passes and report what they produced.

Modes:
  V1 / V2 / both  → remote allocation engine (baseline coverage, demand-weighted split)
  rebalance       → remote full rebalance pass
  tiers           → remote store tier recalculation
  recall          → local recall engine (rebalance.recall)

The remote engine is reached over HTTPS RPC (PostgREST-style
POST {base_url}/rpc/{function}). Only connection failures are retried:
a request that reached the engine may already have created a run, so it
is never replayed.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from rebalance.exceptions import EngineRunError
from rebalance.recall import run_recall_engine

logger = structlog.get_logger()


class EngineMode(str, Enum):
    V1 = "V1"
    V2 = "V2"
    BOTH = "both"
    REBALANCE = "rebalance"
    RECALL = "recall"
    TIERS = "tiers"


ALLOCATION_MODES = (EngineMode.V1, EngineMode.V2, EngineMode.BOTH)

RPC_RUN_ALLOCATION = "fn_run_allocation_engine"
RPC_RUN_REBALANCE = "fn_run_rebalance_engine"
RPC_RECALC_TIERS = "fn_recalc_store_tiers"


class AllocationEngineClient:
    """Client for the remote allocation engine RPC functions."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.allocation_engine_url).rstrip("/")
        self.timeout = timeout or settings.allocation_engine_timeout_seconds
        self.transport = transport
        key = api_key if api_key is not None else settings.allocation_engine_api_key
        self.headers = {"Content-Type": "application/json"}
        if key:
            self.headers["apikey"] = key
            self.headers["Authorization"] = f"Bearer {key}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        reraise=True,
    )
    async def _post(self, function: str, payload: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await client.post(f"{self.base_url}/rpc/{function}", headers=self.headers, json=payload)

    async def _call(self, function: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._post(function, payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            raise EngineRunError(
                f"{function} failed with HTTP {exc.response.status_code}: {exc.response.text[:300]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EngineRunError(f"{function} unreachable: {exc}") from exc
        except ValueError as exc:
            raise EngineRunError(f"{function} returned a non-JSON body") from exc

        # RPC functions returning a single row come back as a one-element list
        if isinstance(data, list):
            data = data[0] if data else {}
        if not isinstance(data, dict):
            raise EngineRunError(f"{function} returned an unexpected payload: {data!r}")
        return data

    async def run_allocation(self, customer_id: uuid.UUID, mode: EngineMode) -> dict[str, Any]:
        return await self._call(RPC_RUN_ALLOCATION, {"p_tenant_id": str(customer_id), "p_mode": mode.value})

    async def run_rebalance(self, customer_id: uuid.UUID) -> dict[str, Any]:
        return await self._call(RPC_RUN_REBALANCE, {"p_tenant_id": str(customer_id)})

    async def recalc_store_tiers(self, customer_id: uuid.UUID) -> dict[str, Any]:
        return await self._call(RPC_RECALC_TIERS, {"p_tenant_id": str(customer_id)})


@dataclass
class RunOutcome:
    mode: EngineMode
    suggestions_created: int = 0
    run_id: uuid.UUID | None = None
    total_units: int | None = None
    total_stores: int | None = None
    tier_changes: int | None = None
    message: str = ""


def _int_field(data: dict[str, Any], name: str, function: str) -> int:
    value = data.get(name, 0)
    try:
        return int(value or 0)
    except (TypeError, ValueError) as exc:
        raise EngineRunError(f"{function} returned a non-integer '{name}': {value!r}") from exc


def _run_id(data: dict[str, Any]) -> uuid.UUID | None:
    raw = data.get("run_id")
    try:
        return uuid.UUID(str(raw)) if raw else None
    except ValueError:
        return None


class RunTrigger:
    """Runs one engine pass for a tenant."""

    def __init__(
        self,
        db: AsyncSession,
        customer_id: uuid.UUID,
        client: AllocationEngineClient | None = None,
    ):
        self.db = db
        self.customer_id = customer_id
        self.client = client or AllocationEngineClient()

    async def trigger(self, mode: EngineMode | str) -> RunOutcome:
        mode = EngineMode(mode)
        log = logger.bind(customer_id=str(self.customer_id), mode=mode.value)
        log.info("engine.run_started")

        try:
            if mode in ALLOCATION_MODES:
                data = await self.client.run_allocation(self.customer_id, mode)
                created = _int_field(data, "suggestions_created", RPC_RUN_ALLOCATION)
                outcome = RunOutcome(
                    mode=mode,
                    suggestions_created=created,
                    run_id=_run_id(data),
                    message=f"Allocation {mode.value}: {created} suggestions created",
                )
            elif mode == EngineMode.REBALANCE:
                data = await self.client.run_rebalance(self.customer_id)
                created = _int_field(data, "suggestions_created", RPC_RUN_REBALANCE)
                outcome = RunOutcome(
                    mode=mode,
                    suggestions_created=created,
                    run_id=_run_id(data),
                    message=f"Rebalance: {created} suggestions created",
                )
            elif mode == EngineMode.TIERS:
                data = await self.client.recalc_store_tiers(self.customer_id)
                total = _int_field(data, "total_stores", RPC_RECALC_TIERS)
                changes = _int_field(data, "tier_changes", RPC_RECALC_TIERS)
                outcome = RunOutcome(
                    mode=mode,
                    total_stores=total,
                    tier_changes=changes,
                    message=f"Tiers recalculated for {total} stores, {changes} changed",
                )
            else:
                result = await run_recall_engine(self.db, self.customer_id)
                outcome = RunOutcome(
                    mode=mode,
                    suggestions_created=result.total_suggestions,
                    run_id=result.run_id,
                    total_units=result.total_units,
                    message=f"Recall: {result.total_suggestions} suggestions, {result.total_units} units",
                )
        except EngineRunError as exc:
            log.error("engine.run_failed", error=str(exc))
            raise

        log.info("engine.run_completed", suggestions_created=outcome.suggestions_created)
        return outcome

"""Ledger client that talks to a two-tier ledger gateway over HTTP.

The gateway owns signing and wire encoding; this adapter only maps the
logical operations onto JSON endpoints and the responses onto
`LedgerRejected` / `ReconciliationTimeout`.
"""

from __future__ import annotations

import asyncio
import time

import httpx

from ..errors import LedgerRejected, ReconciliationTimeout
from ..utils.logging_config import StructuredLogger
from .client import LedgerSession, LedgerSessionStatus

logger = StructuredLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


class HttpLedgerClient:
    def __init__(
        self,
        *,
        base_url: str,
        accelerated_url: str,
        owner_id: str,
        timeout: float = 30.0,
        proof_timeout: float = 60.0,
        proof_poll_interval: float = 0.25,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.owner_id = owner_id
        self.proof_timeout = proof_timeout
        self.proof_poll_interval = proof_poll_interval
        limits = httpx.Limits(max_connections=20, max_keepalive_connections=10)
        self._base = httpx.AsyncClient(base_url=base_url, timeout=timeout, limits=limits, transport=transport)
        self._accelerated = httpx.AsyncClient(
            base_url=accelerated_url, timeout=timeout, limits=limits, transport=transport
        )

    async def _call(self, step: str, client: httpx.AsyncClient, method: str, path: str, **kwargs) -> dict:
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("Ledger transport error", step=step, path=path, error=str(exc))
            raise LedgerRejected(step, f"transport error: {exc}") from exc

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning("Ledger rejected call", step=step, status=response.status_code, detail=detail)
            raise LedgerRejected(step, detail)

        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise LedgerRejected(step, "malformed response body") from exc
        return body if isinstance(body, dict) else {}

    async def open_session(
        self,
        session_id: str,
        charger_id: str,
        unit: int,
        decimals: int,
        deposit: int,
        rate_per_unit: int,
        merchant_id: str,
    ) -> None:
        await self._call(
            "open_session",
            self._base,
            "POST",
            "/sessions",
            json={
                "session_id": session_id,
                "owner_id": self.owner_id,
                "charger_id": charger_id,
                "unit": unit,
                "decimals": decimals,
                "deposit": deposit,
                "rate_per_unit": rate_per_unit,
                "merchant_id": merchant_id,
            },
        )

    async def delegate(self, session_id: str, owner_id: str) -> None:
        await self._call("delegate", self._base, "POST", f"/sessions/{session_id}/delegate", json={"owner_id": owner_id})

    async def record_usage(self, session_id: str, increment: int, uniqueness_tag: str) -> None:
        await self._call(
            "record_usage",
            self._accelerated,
            "POST",
            f"/sessions/{session_id}/usage",
            json={"increment": increment, "tag": uniqueness_tag},
        )

    async def reconcile_and_undelegate(self, session_id: str) -> str:
        body = await self._call("reconcile", self._accelerated, "POST", f"/sessions/{session_id}/commit-and-undelegate")
        tx_ref = body.get("tx_ref")
        if not tx_ref:
            raise LedgerRejected("reconcile", "gateway returned no transaction reference")
        return str(tx_ref)

    async def await_commitment_proof(self, tx_ref: str) -> None:
        """Poll the base tier until the reconciliation is observable there."""
        started = time.monotonic()
        while True:
            body = await self._call("commitment_proof", self._base, "GET", f"/commitments/{tx_ref}")
            if body.get("committed"):
                logger.info("Commitment observed on base tier", tx_ref=tx_ref, signature=body.get("signature"))
                return
            waited = time.monotonic() - started
            if waited >= self.proof_timeout:
                raise ReconciliationTimeout(tx_ref, waited)
            await asyncio.sleep(self.proof_poll_interval)

    async def settle(self, session_id: str) -> None:
        await self._call("settle", self._base, "POST", f"/sessions/{session_id}/settle")

    async def fetch_session(self, session_id: str) -> LedgerSession:
        body = await self._call("fetch_session", self._base, "GET", f"/sessions/{session_id}")
        try:
            return LedgerSession(
                total_usage=int(body["total_usage"]),
                settled_cost=int(body["settled_cost"]),
                refunded=int(body["refunded"]),
                status=LedgerSessionStatus(str(body["status"]).upper()),
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise LedgerRejected("fetch_session", f"malformed session record: {exc}") from exc

    async def get_balance(self, account_id: str) -> int:
        body = await self._call("get_balance", self._base, "GET", f"/accounts/{account_id}/balance")
        try:
            return int(body["balance"])
        except (KeyError, ValueError, TypeError) as exc:
            raise LedgerRejected("get_balance", f"malformed balance: {exc}") from exc

    async def aclose(self) -> None:
        for client in (self._base, self._accelerated):
            if not client.is_closed:
                await client.aclose()

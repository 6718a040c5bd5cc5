"""
External collaborators: billing ledger and processing backends.

Both are consumed through small protocols so deployments can plug in their
own implementations. ``InMemoryBilling`` and ``HttpProcessingBackend`` are
the defaults used by the CLI and the HTTP server.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, runtime_checkable

import httpx

from image_agent.errors import BackendError
from image_agent.logging import get_logger

logger = get_logger("services")


@runtime_checkable
class BillingService(Protocol):
    """Read/debit capability over a user's credit balance."""

    async def get_available_credits(self, user_id: str) -> int: ...

    async def debit(self, user_id: str, amount: int) -> bool: ...


@runtime_checkable
class ProcessingBackend(Protocol):
    """Opaque remote operation behind a tool."""

    async def process(self, operation: str, input: Any, params: dict[str, Any]) -> dict[str, Any]: ...


class InMemoryBilling:
    """Process-local credit ledger.

    The balance is read without reservation; ``debit`` fails when it would go
    negative, so two sessions of the same user can both pass the executor's
    pre-check and the later debit is the one that fails.
    """

    def __init__(self, default_credits: int = 100, balances: dict[str, int] | None = None) -> None:
        self.default_credits = default_credits
        self._balances: dict[str, int] = dict(balances or {})
        self._lock = asyncio.Lock()

    async def get_available_credits(self, user_id: str) -> int:
        return self._balances.get(user_id, self.default_credits)

    async def debit(self, user_id: str, amount: int) -> bool:
        if amount <= 0:
            return True
        async with self._lock:
            balance = self._balances.get(user_id, self.default_credits)
            if balance < amount:
                logger.info("Debit of %d refused for %s (balance %d)", amount, user_id, balance)
                return False
            self._balances[user_id] = balance - amount
            return True

    def set_balance(self, user_id: str, credits: int) -> None:
        self._balances[user_id] = credits

    def balance(self, user_id: str) -> int:
        return self._balances.get(user_id, self.default_credits)


class HttpProcessingBackend:
    """Processing backend that POSTs each operation to ``{base_url}/{operation}``.

    The request body is ``{"input": ..., "params": {...}}`` and the response
    body is returned as the tool's data. Non-2xx responses and transport
    failures raise BackendError.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers: dict[str, str] = {}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=30.0),
        )

    async def process(self, operation: str, input: Any, params: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = await self._client.post(f"/{operation}", json={"input": input, "params": params})
        except httpx.HTTPError as exc:
            raise BackendError(f"{operation} request failed: {exc}", operation=operation) from exc

        if resp.status_code >= 400:
            message = _error_message(resp) or f"HTTP {resp.status_code}"
            raise BackendError(f"{operation} failed: {message}", operation=operation, status=resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            raise BackendError(f"{operation} returned invalid JSON", operation=operation) from exc
        return data if isinstance(data, dict) else {"result": data}

    async def close(self) -> None:
        await self._client.aclose()


def _error_message(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message")
        return error or body.get("message")
    return None

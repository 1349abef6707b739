from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from app.schemas.chain import TransactionReceipt
from app.services.exceptions import RPCError
from app.services.networks import NetworkConfig

logger = logging.getLogger(__name__)


class ChainRpcClient:
    """Async JSON-RPC client for reading receipts from EVM nodes."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._ids = itertools.count(1)
        self._client: Optional[httpx.AsyncClient] = None

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            headers=self._headers,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def call(self, rpc_url: str, method: str, params: List[Any]) -> Any:
        client = await self._ensure_client()
        payload: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await client.post(rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            logger.warning("RPC %s timed out after %ss: %s", method, self._timeout, rpc_url)
            raise RPCError(f"RPC node timed out on {method}", cause=exc) from exc
        except httpx.HTTPStatusError as exc:
            logger.exception("RPC node returned error %s", exc.response.status_code)
            raise RPCError(
                "RPC node returned an error response",
                http_status=exc.response.status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach RPC node: %s", exc)
            raise RPCError("Unable to reach RPC node", cause=exc) from exc
        except ValueError as exc:
            raise RPCError("RPC node returned invalid JSON", cause=exc) from exc

        if not isinstance(body, dict):
            raise RPCError("RPC node returned an unexpected payload")
        error = body.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            logger.warning("RPC %s failed with %s: %s", method, code, message)
            raise RPCError(f"RPC error: {message}", rpc_code=code)
        return body.get("result")

    async def get_transaction_receipt(
        self, network: NetworkConfig, tx_hash: str
    ) -> Optional[TransactionReceipt]:
        """Return the mined receipt for ``tx_hash`` or ``None`` if unknown."""

        logger.debug("Fetching receipt %s on %s", tx_hash, network.name)
        result = await self.call(network.rpc_url, "eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None
        try:
            return TransactionReceipt.model_validate(result)
        except ValidationError as exc:
            logger.exception("Malformed receipt for %s on %s", tx_hash, network.name)
            raise RPCError("RPC node returned a malformed receipt", cause=exc) from exc

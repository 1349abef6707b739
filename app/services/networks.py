"""Supported EVM networks and the stablecoin each one settles in."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Dict

from app.config import Settings
from app.services.exceptions import UnsupportedNetwork

_ADDRESS_RE = re.compile(r"0x[0-9a-fA-F]{40}")
_TX_HASH_RE = re.compile(r"0x[0-9a-fA-F]{64}")


@dataclass(frozen=True)
class NetworkConfig:
    name: str
    chain_id: int
    rpc_url: str
    token_symbol: str
    token_address: str
    token_decimals: int
    explorer_url: str

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


NETWORKS: Dict[str, NetworkConfig] = {
    "base": NetworkConfig(
        name="base",
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        token_symbol="USDC",
        token_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        token_decimals=6,
        explorer_url="https://basescan.org",
    ),
    "celo": NetworkConfig(
        name="celo",
        chain_id=42220,
        rpc_url="https://forno.celo.org",
        token_symbol="cUSD",
        token_address="0x765DE816845861e75A25fCA122bb6898B8B1282a",
        token_decimals=18,
        explorer_url="https://celoscan.io",
    ),
}


def get_network(name: str, settings: Settings | None = None) -> NetworkConfig:
    """Return the configuration for ``name``, applying any RPC override."""

    config = NETWORKS.get((name or "").lower())
    if config is None:
        raise UnsupportedNetwork(name)
    if settings is not None:
        rpc_url = settings.rpc_url_for(config.name)
        if rpc_url:
            config = replace(config, rpc_url=rpc_url)
    return config


def to_smallest_unit(amount: Decimal, decimals: int) -> int:
    """Scale a USD amount to integer token units.

    Rounds half-up at the token's precision, so ``Decimal("100")`` at six
    decimals is exactly ``100_000_000``.
    """

    with localcontext() as ctx:
        # uint256 needs up to 78 significant digits
        ctx.prec = 80
        quantum = Decimal(1).scaleb(-decimals)
        quantized = Decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)
        return int(quantized.scaleb(decimals))


def is_address(value: str | None) -> bool:
    return bool(value) and bool(_ADDRESS_RE.fullmatch(value))


def normalize_tx_hash(value: str | None) -> str | None:
    """Lower-case a transaction hash, or return ``None`` if it is malformed."""

    candidate = (value or "").strip()
    if not _TX_HASH_RE.fullmatch(candidate):
        return None
    return candidate.lower()

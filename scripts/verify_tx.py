#!/usr/bin/env python3
"""Check a transaction against invoice terms without touching the store."""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from decimal import Decimal

from app.clients.rpc import ChainRpcClient
from app.config import get_settings
from app.schemas.billing import Invoice, InvoiceStatus
from app.schemas.chain import VerificationResult
from app.services.exceptions import PaymentError
from app.services.verifier import PaymentVerifier


def _adhoc_invoice(network: str, recipient: str, amount: Decimal) -> Invoice:
    now = datetime.now(timezone.utc)
    return Invoice(
        id="adhoc",
        merchant_id="adhoc",
        invoice_number="ADHOC",
        client_email="adhoc@localhost",
        amount=amount,
        network=network,
        recipient_address=recipient,
        status=InvoiceStatus.SENT,
        issued_at=now,
        due_at=now,
        created_at=now,
        updated_at=now,
    )


async def run_check(network: str, recipient: str, amount: Decimal, tx_hash: str) -> VerificationResult:
    settings = get_settings()
    client = ChainRpcClient(timeout=settings.rpc_timeout)
    try:
        verifier = PaymentVerifier(client, settings=settings)
        return await verifier.verify(_adhoc_invoice(network, recipient, amount), tx_hash.lower())
    finally:
        await client.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description=(
            "Fetch a transaction receipt and report whether it pays the given "
            "amount of the network's stablecoin to the given wallet."
        )
    )
    parser.add_argument("tx_hash", help="0x-prefixed transaction hash")
    parser.add_argument("--network", default="base", help="base or celo")
    parser.add_argument("--recipient", required=True, help="Expected receiving wallet")
    parser.add_argument("--amount", required=True, type=Decimal, help="Amount owed in USD")

    args = parser.parse_args(argv)

    try:
        result = asyncio.run(run_check(args.network, args.recipient, args.amount, args.tx_hash))
    except PaymentError as exc:
        print(f"Rejected ({exc.kind}): {exc}", file=sys.stderr)
        return 2 if exc.transient else 1

    print(f"Verified in block {result.block_number}: {result.amount} units from {result.sender}")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual diagnostic utility
    raise SystemExit(main())

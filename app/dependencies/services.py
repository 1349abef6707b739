from __future__ import annotations

import hashlib
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException

from app.clients.rpc import ChainRpcClient
from app.config import Settings, get_settings
from app.services import InvoiceService, PaymentVerifier
from app.services.notifier import LoggingNotifier, PaymentNotifier


@lru_cache(maxsize=1)
def get_rpc_client_cached() -> ChainRpcClient:
    settings = get_settings()
    return ChainRpcClient(timeout=settings.rpc_timeout)


def get_rpc_client(settings: Settings = Depends(get_settings)) -> ChainRpcClient:
    return get_rpc_client_cached()


def get_notifier() -> PaymentNotifier:
    return LoggingNotifier()


def get_payment_verifier(
    client: ChainRpcClient = Depends(get_rpc_client),
    settings: Settings = Depends(get_settings),
) -> PaymentVerifier:
    return PaymentVerifier(client, settings=settings)


def get_invoice_service(
    verifier: PaymentVerifier = Depends(get_payment_verifier),
    notifier: PaymentNotifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> InvoiceService:
    return InvoiceService(verifier, notifier=notifier, settings=settings)


def hash_api_key(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def require_merchant(
    x_api_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> str:
    """Resolve the ``X-API-Key`` header to the merchant that owns it."""

    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required in X-API-Key header")
    merchant_id = settings.api_keys.get(hash_api_key(x_api_key))
    if merchant_id is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return merchant_id


def build_invoice_service() -> InvoiceService:
    """Service wired from cached settings, for callers outside FastAPI DI."""

    settings = get_settings()
    verifier = PaymentVerifier(get_rpc_client_cached(), settings=settings)
    return InvoiceService(verifier, notifier=get_notifier(), settings=settings)

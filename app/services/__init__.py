"""Service package public API definitions.

Service implementations are imported lazily. ``app.clients.rpc`` imports
``app.services.exceptions``; importing the services eagerly here would pull
the client back in through the verifier and create a circular import.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "InvoiceService",
    "PaymentVerifier",
]

_SERVICE_MODULES = {
    "InvoiceService": "invoice",
    "PaymentVerifier": "verifier",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .invoice import InvoiceService as InvoiceService
    from .verifier import PaymentVerifier as PaymentVerifier

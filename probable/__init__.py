"""Probable CTF exchange client: order signing, API authentication and trading."""

from .auth import AccountType
from .client import CancelResult, OrdersResult, PlaceOrderParams, PlaceOrderResult, ProbableClient
from .credentials import ApiKeyCreds, FileCredentialStore, MemoryCredentialStore
from .errors import (
    ApiError,
    ChainError,
    CredentialExpiredError,
    InsufficientBalanceError,
    PreconditionError,
    ProbableError,
    SignerMismatchError,
)
from .order import OrderBuilder, Side, SignatureType, SignedOrder, UserOrder, create_order
from .signer import LocalAccountWallet, Wallet

__all__ = [
    "AccountType",
    "ApiError",
    "ApiKeyCreds",
    "CancelResult",
    "ChainError",
    "CredentialExpiredError",
    "FileCredentialStore",
    "InsufficientBalanceError",
    "LocalAccountWallet",
    "MemoryCredentialStore",
    "OrderBuilder",
    "OrdersResult",
    "PlaceOrderParams",
    "PlaceOrderResult",
    "PreconditionError",
    "ProbableClient",
    "ProbableError",
    "Side",
    "SignatureType",
    "SignedOrder",
    "SignerMismatchError",
    "UserOrder",
    "Wallet",
    "create_order",
]

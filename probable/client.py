"""Probable order-entry REST client: API keys, order submission, cancellation."""

import logging
import random
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TypeVar
from urllib.parse import urlencode

import httpx
from eth_utils import to_checksum_address

from .auth import AccountType, create_l1_headers, create_l2_headers, serialize_body
from .balance import check_collateral_balance, ensure_sufficient_balance
from .chain import RpcClient
from .constants import (
    API_KEY_PATH,
    CANCEL_PATH,
    CHAIN_ID,
    COLLATERAL_TOKEN_DECIMALS,
    CTF_EXCHANGE_ADDRESS,
    ENTRY_SERVICE,
    OPEN_ORDERS_PATH,
    ORDER_PATH,
)
from .credentials import ApiKeyCreds, ApiKeyResult, CredentialStore, MemoryCredentialStore
from .errors import (
    ApiError,
    ChainError,
    CredentialExpiredError,
    InsufficientBalanceError,
    PreconditionError,
    error_from_response,
)
from .order import Side, SignedOrder, UserOrder, create_order, order_to_payload, parse_side
from .rounding import Number
from .signer import Wallet

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_CODES = {429, 500, 502, 503, 504}
# Order submission is never replayed by the transport layer.
_IDEMPOTENT_METHODS = {"GET", "DELETE"}


@dataclass(frozen=True)
class PlaceOrderParams:
    token_id: str
    side: Side
    price: Number
    size: Number
    tick_size: str = "0.01"
    fee_rate_bps: int | None = None
    nonce: int | None = None
    expiration: int | None = None
    taker: str | None = None

    def to_user_order(self) -> UserOrder:
        return UserOrder(
            token_id=self.token_id,
            price=self.price,
            size=self.size,
            side=parse_side(self.side),
            fee_rate_bps=self.fee_rate_bps,
            nonce=self.nonce,
            expiration=self.expiration,
            taker=self.taker,
        )


@dataclass(frozen=True)
class PlaceOrderResult:
    success: bool
    order_id: str | None = None
    order: dict | None = None
    signed_order: SignedOrder | None = None


@dataclass(frozen=True)
class OrdersResult:
    orders: list[dict]
    total: int


@dataclass
class CancelResult:
    success: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)


class ProbableClient:
    """Synchronous client for the Probable order-entry service.

    Args:
        wallet: Signing capability of the EOA that owns the account.
        credential_store: Where API credentials are loaded from and saved to.
        proxy_address: Proxy wallet funding orders (required in PROXY mode).
        account_type: EOA or PROXY; drives maker, signature type and headers.
        base_url: Order-entry service base URL.
        chain_id: Chain id used in paths and EIP-712 domains.
        exchange_address: CTF exchange contract (order verifying contract).
        collateral_decimals: Fixed-point decimals of the collateral token.
        timeout: HTTP timeout in seconds.
        max_retries: Retries on transient errors for GET/DELETE.
        base_delay: Initial backoff delay in seconds.
        rpc: Optional chain client, enables balance checks and enrichment.
        check_balance: Verify collateral before submitting BUY orders.
    """

    def __init__(
        self,
        wallet: Wallet,
        credential_store: CredentialStore | None = None,
        *,
        proxy_address: str | None = None,
        account_type: AccountType = AccountType.PROXY,
        base_url: str = ENTRY_SERVICE,
        chain_id: int = CHAIN_ID,
        exchange_address: str = CTF_EXCHANGE_ADDRESS,
        collateral_decimals: int = COLLATERAL_TOKEN_DECIMALS,
        timeout: float = 15,
        max_retries: int = 3,
        base_delay: float = 1.0,
        rpc: RpcClient | None = None,
        check_balance: bool = False,
    ):
        if wallet is None or not wallet.address:
            raise PreconditionError("Wallet client and account are required.")
        self.account_type = AccountType(account_type)
        if self.account_type is AccountType.PROXY and not proxy_address:
            raise PreconditionError("A proxy wallet address is required for proxy accounts")

        self._wallet = wallet
        self._store = credential_store if credential_store is not None else MemoryCredentialStore()
        self.proxy_address = to_checksum_address(proxy_address) if proxy_address else None
        self.base_url = base_url
        self.chain_id = chain_id
        self.exchange_address = exchange_address
        self.collateral_decimals = collateral_decimals
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.rpc = rpc
        self.check_balance = check_balance

        self._http = httpx.Client(base_url=base_url, timeout=timeout)

    def __repr__(self) -> str:
        return f"ProbableClient(address={self.address}, account_type={self.account_type.value})"

    @property
    def address(self) -> str:
        """The EOA address; identifies the caller in every auth header."""
        return self._wallet.address

    @property
    def funder_address(self) -> str:
        """The address holding collateral and acting as order maker."""
        if self.account_type is AccountType.EOA:
            return self.address
        return self.proxy_address

    # ------------------------------------------------------------------
    # Low-level request
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        body: dict | None = None,
        creds: ApiKeyCreds | None = None,
        headers: dict | None = None,
        action: str = "complete request",
    ) -> dict | list:
        body_str = serialize_body(body) if body is not None else None

        for attempt in range(self.max_retries + 1):
            retryable = method in _IDEMPOTENT_METHODS and attempt < self.max_retries
            # Headers are rebuilt per attempt so the HMAC timestamp stays fresh
            req_headers = {"Content-Type": "application/json", "Accept": "*/*"}
            if headers:
                req_headers.update(headers)
            if creds is not None:
                req_headers.update(
                    create_l2_headers(self.address, creds, method, path, body_str, self.account_type)
                )

            try:
                resp = self._http.request(
                    method,
                    path,
                    content=body_str.encode() if body_str else None,
                    headers=req_headers,
                )
            except httpx.TimeoutException as exc:
                if not retryable:
                    raise ApiError(f"Failed to {action}: {exc}") from exc
                delay = self.base_delay * (2**attempt) * (0.5 + random.random())
                logger.warning("Timeout on %s %s, retry %d/%d in %.1fs",
                               method, path, attempt + 1, self.max_retries, delay)
                time.sleep(delay)
                continue
            except httpx.HTTPError as exc:
                raise ApiError(f"Failed to {action}: {exc}") from exc

            if resp.status_code in _RETRYABLE_CODES and retryable:
                delay = self.base_delay * (2**attempt) * (0.5 + random.random())
                logger.warning("HTTP %d on %s %s, retry %d/%d in %.1fs",
                               resp.status_code, method, path, attempt + 1, self.max_retries, delay)
                time.sleep(delay)
                continue
            if resp.status_code >= 400:
                logger.error("HTTP %d %s %s: %s", resp.status_code, method, path, resp.text)
                raise error_from_response(resp, action)
            if not resp.content:
                return {}
            return resp.json()

        raise AssertionError("unreachable: the final attempt always returns or raises")

    # ------------------------------------------------------------------
    # API credentials
    # ------------------------------------------------------------------

    def create_api_key(self, nonce: int | None = None) -> ApiKeyCreds:
        """Mint API credentials with an L1 (wallet signature) request."""
        headers = create_l1_headers(self._wallet, self.chain_id, nonce)
        data = self._request(
            "POST",
            API_KEY_PATH.format(chain_id=self.chain_id),
            body={},
            headers=headers,
            action="create API key",
        )
        logger.info("Created API key for %s", self.address)
        return ApiKeyCreds.from_raw(data)

    def create_or_load_api_key(self, force_regenerate: bool = False) -> ApiKeyResult:
        if force_regenerate:
            logger.info("Force regenerating API key, deleting stored credentials")
            self._store.delete()
        else:
            existing = self._store.load()
            if existing is not None:
                return ApiKeyResult(api_key=existing, is_new=False)

        creds = self.create_api_key()
        self._store.save(creds)
        return ApiKeyResult(api_key=creds, is_new=True)

    def with_credentials(self, operation: Callable[[ApiKeyCreds], T], name: str) -> T:
        """Run ``operation`` with stored (or freshly minted) credentials.

        If the service reports the key as invalid or expired, the key is
        regenerated and the operation retried exactly once. Whatever the
        retry raises reaches the caller as is.
        """
        creds = self.create_or_load_api_key().api_key
        try:
            return operation(creds)
        except CredentialExpiredError as exc:
            logger.warning("API key rejected while %s (%s), regenerating", name, exc)
        creds = self.create_or_load_api_key(force_regenerate=True).api_key
        return operation(creds)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(self, params: PlaceOrderParams) -> SignedOrder:
        funder = self.proxy_address if self.account_type is AccountType.PROXY else None
        return create_order(
            self._wallet,
            self.chain_id,
            self.account_type.signature_type,
            funder,
            params.to_user_order(),
            tick_size=params.tick_size,
            exchange_address=self.exchange_address,
            collateral_decimals=self.collateral_decimals,
        )

    def submit_order(
        self,
        signed_order: SignedOrder,
        owner: str,
        creds: ApiKeyCreds,
    ) -> dict:
        """POST a signed order (good-till-cancelled)."""
        body = {
            "deferExec": True,
            "order": order_to_payload(signed_order),
            "owner": owner,
            "orderType": "GTC",
        }
        return self._request(
            "POST", ORDER_PATH.format(chain_id=self.chain_id), body=body, creds=creds,
            action="submit order",
        )

    def _collateral_required(self, order: SignedOrder) -> Decimal | None:
        if order.side != Side.BUY:
            return None
        return Decimal(order.maker_amount) / (Decimal(10) ** self.collateral_decimals)

    def _enrich_insufficient(self, exc: InsufficientBalanceError, order: SignedOrder) -> InsufficientBalanceError:
        required = self._collateral_required(order)
        try:
            status = check_collateral_balance(
                self.rpc, self.funder_address, fallback_decimals=self.collateral_decimals
            )
        except (ChainError, httpx.HTTPError) as lookup_exc:
            logger.warning("Could not read collateral balance: %s", lookup_exc)
            return exc
        return InsufficientBalanceError(
            required=required,
            balance=status.balance_formatted,
            detail=exc.detail,
            status_code=exc.status_code,
            code=exc.code,
            response=exc.response,
        )

    def place_order(self, params: PlaceOrderParams, creds: ApiKeyCreds) -> PlaceOrderResult:
        """Build, sign and submit an order with the given credentials."""
        signed = self.create_order(params)

        required = self._collateral_required(signed)
        if self.check_balance and self.rpc is not None and required is not None:
            ensure_sufficient_balance(
                self.rpc, self.funder_address, required, fallback_decimals=self.collateral_decimals
            )

        try:
            submitted = self.submit_order(signed, signed.signer, creds)
        except InsufficientBalanceError as exc:
            if self.rpc is None or exc.balance is not None:
                raise
            raise self._enrich_insufficient(exc, signed) from exc

        logger.info("Placed %s order token=%s price=%s size=%s",
                    signed.side.name, params.token_id, params.price, params.size)
        order_id = submitted.get("id") or submitted.get("orderId") if isinstance(submitted, dict) else None
        return PlaceOrderResult(
            success=True,
            order_id=str(order_id) if order_id is not None else None,
            order=submitted,
            signed_order=signed,
        )

    def get_open_orders(self, creds: ApiKeyCreds, page: int = 1, limit: int = 20) -> OrdersResult:
        path = OPEN_ORDERS_PATH.format(chain_id=self.chain_id) + "?" + urlencode(
            {"page": page, "limit": limit}
        )
        data = self._request("GET", path, creds=creds, action="fetch open orders")
        if isinstance(data, dict):
            orders = data.get("orders") or []
        else:
            orders = data or []
        return OrdersResult(orders=orders, total=len(orders))

    def cancel_order(self, order: dict, creds: ApiKeyCreds) -> bool:
        """Cancel one open order (as returned by ``get_open_orders``)."""
        order_id = order["orderId"]
        params = {"tokenId": order.get("ctfTokenId") or order.get("tokenId")}
        if order.get("clientOrderId"):
            params["origClientOrderId"] = order["clientOrderId"]
        path = CANCEL_PATH.format(chain_id=self.chain_id, order_id=order_id) + "?" + urlencode(params)
        self._request("DELETE", path, creds=creds, action=f"cancel order {order_id}")
        return True

    def cancel_orders(self, orders: list[dict], creds: ApiKeyCreds) -> CancelResult:
        """Cancel orders one by one, recording failures instead of stopping.

        An expired API key aborts the batch, since every remaining request
        would be rejected the same way.
        """
        result = CancelResult()
        self._cancel_pending(deque(orders), creds, result)
        return result

    def _cancel_pending(self, pending: deque, creds: ApiKeyCreds, result: CancelResult) -> None:
        # An order leaves ``pending`` only once its outcome is in ``result``
        while pending:
            order = pending[0]
            try:
                self.cancel_order(order, creds)
                result.success += 1
            except CredentialExpiredError:
                raise
            except Exception as exc:
                result.failed += 1
                result.errors.append({"orderId": order.get("orderId"), "error": str(exc)})
                logger.warning("Failed to cancel order %s: %s", order.get("orderId"), exc)
            pending.popleft()

    # ------------------------------------------------------------------
    # Auto-credential entry points
    # ------------------------------------------------------------------

    def place_order_with_api_key(self, params: PlaceOrderParams) -> PlaceOrderResult:
        return self.with_credentials(lambda creds: self.place_order(params, creds), "placing order")

    def get_open_orders_with_api_key(self, page: int = 1, limit: int = 20) -> OrdersResult:
        return self.with_credentials(
            lambda creds: self.get_open_orders(creds, page, limit), "fetching open orders"
        )

    def cancel_order_with_api_key(self, order: dict) -> bool:
        return self.with_credentials(lambda creds: self.cancel_order(order, creds), "cancelling order")

    def cancel_orders_with_api_key(self, orders: list[dict]) -> CancelResult:
        """Cancel a batch, resuming after a key rotation without repeating orders."""
        pending = deque(orders)
        result = CancelResult()

        def cancel_remaining(creds: ApiKeyCreds) -> CancelResult:
            self._cancel_pending(pending, creds, result)
            return result

        return self.with_credentials(cancel_remaining, "cancelling orders")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

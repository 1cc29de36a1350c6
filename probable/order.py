"""Order construction, amount rounding and EIP-712 order signing."""

import logging
import random
import time
from dataclasses import dataclass, fields
from decimal import ROUND_DOWN, Decimal
from enum import IntEnum

from .constants import (
    COLLATERAL_TOKEN_DECIMALS,
    CTF_EXCHANGE_ADDRESS,
    EIP712_DOMAIN,
    EXCHANGE_NAME,
    ORDER_STRUCTURE,
    PROTOCOL_VERSION,
    ROUNDING_CONFIG,
    ZERO_ADDRESS,
)
from .errors import PreconditionError, SignerMismatchError
from .rounding import Number, decimal_places, round_down, round_normal, round_up, to_decimal
from .signer import Wallet

logger = logging.getLogger(__name__)


class Side(IntEnum):
    BUY = 0
    SELL = 1


_SIDE_WIRE = {Side.BUY: "BUY", Side.SELL: "SELL"}


def side_to_wire(side: Side) -> str:
    """Map a Side to the string the order-entry service expects."""
    try:
        return _SIDE_WIRE[Side(side)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Unknown order side: {side!r}") from exc


def parse_side(side: "str | Side") -> Side:
    """Accept ``Side`` members or case-insensitive ``"buy"``/``"sell"``."""
    if isinstance(side, Side):
        return side
    if isinstance(side, str) and side.upper() in Side.__members__:
        return Side[side.upper()]
    raise ValueError(f"Unknown order side: {side!r}")


class SignatureType(IntEnum):
    EOA = 0                 # ECDSA EIP-712 signature by the EOA itself
    PROB_PROXY = 1          # EOA signing for a proxy wallet
    PROB_GNOSIS_SAFE = 2    # EOA signing for a Gnosis safe it owns


@dataclass(frozen=True)
class RoundConfig:
    """Decimal places allowed for price, size and derived amounts."""

    price: int
    size: int
    amount: int


ROUND_CONFIGS = {tick: RoundConfig(**cfg) for tick, cfg in ROUNDING_CONFIG.items()}


def round_config_for(tick_size: str) -> RoundConfig:
    try:
        return ROUND_CONFIGS[str(tick_size)]
    except KeyError:
        raise ValueError(
            f"Unsupported tick size {tick_size!r} (expected one of {', '.join(ROUND_CONFIGS)})"
        ) from None


@dataclass(frozen=True)
class UserOrder:
    """A trade intent as the user expresses it.

    Args:
        token_id: Conditional token id of the market outcome.
        price: Price per share, 0 < price < 1.
        size: Number of outcome tokens.
        side: BUY or SELL.
        fee_rate_bps: Maker fee rate in basis points.
        nonce: On-chain cancellation nonce.
        expiration: Unix seconds, 0 = never.
        taker: Restrict the fill to one address (default: anyone).
    """

    token_id: str
    price: Number
    size: Number
    side: Side
    fee_rate_bps: int | None = None
    nonce: int | None = None
    expiration: int | None = None
    taker: str | None = None


@dataclass(frozen=True)
class OrderData:
    maker: str
    taker: str
    token_id: str
    maker_amount: str
    taker_amount: str
    side: Side
    fee_rate_bps: str
    nonce: str
    signer: str | None = None
    expiration: str | None = None
    signature_type: SignatureType | None = None


@dataclass(frozen=True)
class Order:
    salt: str
    maker: str
    signer: str
    taker: str
    token_id: str
    maker_amount: str
    taker_amount: str
    expiration: str
    nonce: str
    fee_rate_bps: str
    side: Side
    signature_type: SignatureType


@dataclass(frozen=True)
class SignedOrder(Order):
    signature: str

    @classmethod
    def from_order(cls, order: Order, signature: str) -> "SignedOrder":
        return cls(**{f.name: getattr(order, f.name) for f in fields(Order)}, signature=signature)


# ----------------------------------------------------------------------
# Amounts
# ----------------------------------------------------------------------

def _bound_precision(amount: Decimal, decimals: int) -> Decimal:
    # Round up first so the collateral side is never silently truncated,
    # then cap to the allowed precision if that was not enough.
    if decimal_places(amount) > decimals:
        amount = round_up(amount, decimals + 4)
        if decimal_places(amount) > decimals:
            amount = round_down(amount, decimals)
    return amount


def get_order_raw_amounts(
    side: Side, size: Number, price: Number, round_config: RoundConfig
) -> tuple[Decimal, Decimal]:
    """Derive ``(raw_maker_amount, raw_taker_amount)`` in decimal units.

    BUY: taker amount is the tokens bought, maker amount the collateral paid.
    SELL: maker amount is the tokens sold, taker amount the collateral received.
    """
    raw_price = round_normal(price, round_config.price)

    if parse_side(side) == Side.BUY:
        raw_taker_amt = round_down(size, round_config.size)
        raw_maker_amt = _bound_precision(raw_taker_amt * raw_price, round_config.amount)
    else:
        raw_maker_amt = round_down(size, round_config.size)
        raw_taker_amt = _bound_precision(raw_maker_amt * raw_price, round_config.amount)
    return raw_maker_amt, raw_taker_amt


def parse_units(amount: Number, decimals: int) -> str:
    """Decimal units to a fixed-point integer string (truncated)."""
    scaled = to_decimal(amount) * (Decimal(10) ** decimals)
    return str(int(scaled.to_integral_value(rounding=ROUND_DOWN)))


def build_order_creation_args(
    signer: str,
    maker: str,
    signature_type: SignatureType,
    user_order: UserOrder,
    round_config: RoundConfig,
    collateral_decimals: int = COLLATERAL_TOKEN_DECIMALS,
) -> OrderData:
    """Turn a UserOrder into the exact on-chain order fields.

    Zero price or size yields a zero-amount order; rejecting those is left
    to the caller.
    """
    side = parse_side(user_order.side)
    raw_maker_amt, raw_taker_amt = get_order_raw_amounts(
        side, user_order.size, user_order.price, round_config
    )

    return OrderData(
        maker=maker,
        taker=user_order.taker or ZERO_ADDRESS,
        token_id=str(user_order.token_id),
        maker_amount=parse_units(raw_maker_amt, collateral_decimals),
        taker_amount=parse_units(raw_taker_amt, collateral_decimals),
        side=side,
        fee_rate_bps=str(user_order.fee_rate_bps or 0),
        nonce=str(user_order.nonce or 0),
        signer=signer,
        expiration=str(user_order.expiration or 0),
        signature_type=signature_type,
    )


def generate_order_salt() -> str:
    """Uniqueness salt for on-chain replay avoidance. Not a security value."""
    return str(round(random.random() * time.time() * 1000))


# ----------------------------------------------------------------------
# Signing
# ----------------------------------------------------------------------

class OrderBuilder:
    """Assembles Orders and signs them as EIP-712 typed data.

    Args:
        contract_address: Exchange contract (EIP-712 verifying contract).
        chain_id: Chain the exchange lives on.
        wallet: Signing capability; its address must be the order signer.
        generate_salt: Salt factory, replaceable for deterministic tests.
    """

    def __init__(
        self,
        contract_address: str,
        chain_id: int,
        wallet: Wallet,
        generate_salt=generate_order_salt,
    ):
        self.contract_address = contract_address
        self.chain_id = chain_id
        self._wallet = wallet
        self._generate_salt = generate_salt

    def build_signed_order(self, order_data: OrderData) -> SignedOrder:
        order = self.build_order(order_data)
        typed_data = self.build_order_typed_data(order)
        return SignedOrder.from_order(order, self.build_order_signature(typed_data))

    def build_order(self, order_data: OrderData) -> Order:
        """Apply defaults and check the signer before anything is signed."""
        signer = order_data.signer or order_data.maker
        wallet_address = self._wallet.address
        if not wallet_address or signer.lower() != wallet_address.lower():
            raise SignerMismatchError(signer, wallet_address)

        return Order(
            salt=self._generate_salt(),
            maker=order_data.maker,
            signer=signer,
            taker=order_data.taker,
            token_id=order_data.token_id,
            maker_amount=order_data.maker_amount,
            taker_amount=order_data.taker_amount,
            expiration=order_data.expiration or "0",
            nonce=order_data.nonce,
            fee_rate_bps=order_data.fee_rate_bps,
            side=order_data.side,
            signature_type=(
                SignatureType.EOA if order_data.signature_type is None else order_data.signature_type
            ),
        )

    def build_order_typed_data(self, order: Order) -> dict:
        return {
            "primaryType": "Order",
            "types": {
                "EIP712Domain": EIP712_DOMAIN,
                "Order": ORDER_STRUCTURE,
            },
            "domain": {
                "name": EXCHANGE_NAME,
                "version": PROTOCOL_VERSION,
                "chainId": self.chain_id,
                "verifyingContract": self.contract_address,
            },
            "message": {
                "salt": int(order.salt),
                "maker": order.maker,
                "signer": order.signer,
                "taker": order.taker,
                "tokenId": int(order.token_id),
                "makerAmount": int(order.maker_amount),
                "takerAmount": int(order.taker_amount),
                "expiration": int(order.expiration),
                "nonce": int(order.nonce),
                "feeRateBps": int(order.fee_rate_bps),
                "side": int(order.side),
                "signatureType": int(order.signature_type),
            },
        }

    def build_order_signature(self, typed_data: dict) -> str:
        # Signers treat the domain type as implicit; passing it again
        # produces a different type hash.
        types = {k: v for k, v in typed_data["types"].items() if k != "EIP712Domain"}
        return self._wallet.sign_typed_data(
            typed_data["domain"], types, typed_data["primaryType"], typed_data["message"]
        )


def create_order(
    wallet: Wallet,
    chain_id: int,
    signature_type: SignatureType,
    funder_address: str | None,
    user_order: UserOrder,
    tick_size: str = "0.01",
    exchange_address: str = CTF_EXCHANGE_ADDRESS,
    collateral_decimals: int = COLLATERAL_TOKEN_DECIMALS,
) -> SignedOrder:
    """Build and sign an order. The maker is the funder (proxy) when given."""
    signer = wallet.address
    if not signer:
        raise PreconditionError("Wallet address is not defined")
    maker = funder_address or signer

    order_data = build_order_creation_args(
        signer,
        maker,
        signature_type,
        user_order,
        round_config_for(tick_size),
        collateral_decimals,
    )
    logger.debug(
        "Built order %s token=%s maker_amount=%s taker_amount=%s",
        side_to_wire(order_data.side), order_data.token_id,
        order_data.maker_amount, order_data.taker_amount,
    )
    return OrderBuilder(exchange_address, chain_id, wallet).build_signed_order(order_data)


def order_to_payload(order: SignedOrder) -> dict:
    """Wire representation of a signed order (string amounts, string side)."""
    return {
        "salt": order.salt,
        "maker": order.maker,
        "signer": order.signer,
        "taker": order.taker,
        "tokenId": order.token_id,
        "makerAmount": order.maker_amount,
        "takerAmount": order.taker_amount,
        "side": side_to_wire(order.side),
        "expiration": order.expiration,
        "nonce": order.nonce,
        "feeRateBps": order.fee_rate_bps,
        "signatureType": int(order.signature_type),
        "signature": order.signature,
    }

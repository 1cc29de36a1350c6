"""Collateral (USDT) balance checks."""

import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

from .chain import RpcClient
from .constants import COLLATERAL_TOKEN_DECIMALS, USDT_ADDRESS
from .errors import ChainError, InsufficientBalanceError
from .rounding import Number, to_decimal

logger = logging.getLogger(__name__)

BALANCE_OF_SELECTOR = keccak(b"balanceOf(address)")[:4]
DECIMALS_SELECTOR = keccak(b"decimals()")[:4]


@dataclass(frozen=True)
class CollateralBalance:
    balance: int                  # smallest token unit
    balance_formatted: Decimal    # whole tokens
    decimals: int
    has_minimum_balance: bool
    minimum_required: Decimal


def get_token_decimals(rpc: RpcClient, token: str, fallback: int) -> int:
    """Read ``decimals()`` from the token, or use the configured fallback."""
    try:
        (decimals,) = decode(["uint8"], rpc.eth_call(token, DECIMALS_SELECTOR))
        return decimals
    except (ChainError, httpx.HTTPError, DecodingError) as exc:
        logger.warning("Failed to read decimals from %s, using %d: %s", token, fallback, exc)
        return fallback


def check_collateral_balance(
    rpc: RpcClient,
    address: str,
    minimum_required: Number = 1,
    token: str = USDT_ADDRESS,
    fallback_decimals: int = COLLATERAL_TOKEN_DECIMALS,
) -> CollateralBalance:
    decimals = get_token_decimals(rpc, token, fallback_decimals)
    calldata = BALANCE_OF_SELECTOR + encode(["address"], [to_checksum_address(address)])
    (balance,) = decode(["uint256"], rpc.eth_call(token, calldata))

    formatted = Decimal(balance) / (Decimal(10) ** decimals)
    minimum = to_decimal(minimum_required)
    return CollateralBalance(
        balance=balance,
        balance_formatted=formatted,
        decimals=decimals,
        has_minimum_balance=formatted >= minimum,
        minimum_required=minimum,
    )


def ensure_sufficient_balance(rpc: RpcClient, address: str, required: Number, **kwargs) -> CollateralBalance:
    """Raise InsufficientBalanceError unless ``address`` holds ``required`` collateral."""
    status = check_collateral_balance(rpc, address, required, **kwargs)
    if not status.has_minimum_balance:
        raise InsufficientBalanceError(required=status.minimum_required, balance=status.balance_formatted)
    return status

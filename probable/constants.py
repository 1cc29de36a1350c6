"""Probable exchange constants: network addresses, endpoints, EIP-712 types."""

from eth_utils import to_checksum_address

# URLs
ENTRY_SERVICE = "https://api.probable.markets"
RPC_URL = "https://bsc-dataseed1.binance.org/"

CHAIN_ID = 56  # BSC mainnet

# Contract addresses (BSC)
PROXY_FACTORY_ADDRESS = to_checksum_address("0xB99159aBF0bF59a512970586F38292f8b9029924")
USDT_ADDRESS = to_checksum_address("0x55d398326f99059fF775485246999027B3197955")
CTF_TOKEN_ADDRESS = to_checksum_address("0x364d05055614B506e2b9A287E4ac34167204cA83")
CTF_EXCHANGE_ADDRESS = to_checksum_address("0xF99F5367ce708c66F0860B77B4331301A5597c86")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
MAX_UINT256 = 2**256 - 1

# USDT on BSC has 18 decimals
COLLATERAL_TOKEN_DECIMALS = 18

PROTOCOL_VERSION = "1"
EXCHANGE_NAME = "Probable CTF Exchange"
PROXY_FACTORY_NAME = "Probable Contract Proxy Factory"

# Order-entry service paths (chain id is appended)
API_KEY_PATH = "/public/api/v1/auth/api-key/{chain_id}"
ORDER_PATH = "/public/api/v1/order/{chain_id}"
CANCEL_PATH = "/public/api/v1/order/{chain_id}/{order_id}"
OPEN_ORDERS_PATH = "/public/api/v1/orders/{chain_id}/open"

# Auth header names
HEADER_ADDRESS = "PROB_ADDRESS"
HEADER_SIGNATURE = "PROB_SIGNATURE"
HEADER_TIMESTAMP = "PROB_TIMESTAMP"
HEADER_NONCE = "PROB_NONCE"
HEADER_API_KEY = "PROB_API_KEY"
HEADER_PASSPHRASE = "PROB_PASSPHRASE"
HEADER_ACCOUNT_TYPE = "PROB_ACCOUNT_TYPE"

MSG_TO_SIGN = "This message attests that I control the given wallet"

# Rounding precision per tick size: (price, size, amount) decimal places
ROUNDING_CONFIG = {
    "0.1": {"price": 1, "size": 2, "amount": 3},
    "0.01": {"price": 2, "size": 2, "amount": 4},
    "0.001": {"price": 3, "size": 2, "amount": 5},
    "0.0001": {"price": 4, "size": 2, "amount": 6},
}

# EIP-712 domain type (implicit for signers, listed for completeness)
EIP712_DOMAIN = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

# EIP-712 Order type (12 fields)
ORDER_STRUCTURE = [
    {"name": "salt", "type": "uint256"},
    {"name": "maker", "type": "address"},
    {"name": "signer", "type": "address"},
    {"name": "taker", "type": "address"},
    {"name": "tokenId", "type": "uint256"},
    {"name": "makerAmount", "type": "uint256"},
    {"name": "takerAmount", "type": "uint256"},
    {"name": "expiration", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "feeRateBps", "type": "uint256"},
    {"name": "side", "type": "uint8"},
    {"name": "signatureType", "type": "uint8"},
]

CLOB_AUTH_STRUCTURE = [
    {"name": "address", "type": "address"},
    {"name": "timestamp", "type": "string"},
    {"name": "nonce", "type": "uint256"},
    {"name": "message", "type": "string"},
]

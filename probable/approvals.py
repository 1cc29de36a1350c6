"""Token approvals needed before trading.

Required approvals (3 total):
  - USDT approve() for: Conditional Tokens (splitting), CTF Exchange
  - ConditionalTokens setApprovalForAll() for: CTF Exchange

Approvals must be set by the address that holds the funds: the EOA itself,
or the proxy (Gnosis safe) which executes them via ``execTransaction``.
"""

import logging
from dataclasses import dataclass, field

from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address

from .chain import RpcClient
from .constants import (
    CTF_EXCHANGE_ADDRESS,
    CTF_TOKEN_ADDRESS,
    MAX_UINT256,
    USDT_ADDRESS,
    ZERO_ADDRESS,
)
from .signer import TransactionSigner, split_signature

logger = logging.getLogger(__name__)

# Function selectors
APPROVE_SELECTOR = keccak(b"approve(address,uint256)")[:4]
ALLOWANCE_SELECTOR = keccak(b"allowance(address,address)")[:4]
SET_APPROVAL_FOR_ALL_SELECTOR = keccak(b"setApprovalForAll(address,bool)")[:4]
IS_APPROVED_FOR_ALL_SELECTOR = keccak(b"isApprovedForAll(address,address)")[:4]
SAFE_NONCE_SELECTOR = keccak(b"nonce()")[:4]
EXEC_TRANSACTION_SELECTOR = keccak(
    b"execTransaction(address,uint256,bytes,uint8,uint256,uint256,uint256,address,address,bytes)"
)[:4]

SAFE_TX_STRUCTURE = [
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "data", "type": "bytes"},
    {"name": "operation", "type": "uint8"},
    {"name": "safeTxGas", "type": "uint256"},
    {"name": "baseGas", "type": "uint256"},
    {"name": "gasPrice", "type": "uint256"},
    {"name": "gasToken", "type": "address"},
    {"name": "refundReceiver", "type": "address"},
    {"name": "nonce", "type": "uint256"},
]


@dataclass(frozen=True)
class ApprovalStatus:
    needs_usdt_for_ctf_token: bool
    needs_usdt_for_exchange: bool
    needs_ctf_token_for_exchange: bool

    @property
    def needs_any(self) -> bool:
        return (
            self.needs_usdt_for_ctf_token
            or self.needs_usdt_for_exchange
            or self.needs_ctf_token_for_exchange
        )


@dataclass
class ApprovalResult:
    success: bool
    approvals_executed: int = 0
    transaction_hashes: list[str] = field(default_factory=list)


# -- Checks --

def check_usdt_allowance(rpc: RpcClient, owner: str, spender: str) -> int:
    calldata = ALLOWANCE_SELECTOR + encode(["address", "address"], [owner, spender])
    return decode(["uint256"], rpc.eth_call(USDT_ADDRESS, calldata))[0]


def check_ctf_approval(rpc: RpcClient, owner: str, operator: str) -> bool:
    calldata = IS_APPROVED_FOR_ALL_SELECTOR + encode(["address", "address"], [owner, operator])
    return decode(["bool"], rpc.eth_call(CTF_TOKEN_ADDRESS, calldata))[0]


def check_approvals(rpc: RpcClient, address: str) -> ApprovalStatus:
    """Report which of the three trading approvals ``address`` still lacks."""
    owner = to_checksum_address(address)
    return ApprovalStatus(
        needs_usdt_for_ctf_token=check_usdt_allowance(rpc, owner, CTF_TOKEN_ADDRESS) < MAX_UINT256,
        needs_usdt_for_exchange=check_usdt_allowance(rpc, owner, CTF_EXCHANGE_ADDRESS) < MAX_UINT256,
        needs_ctf_token_for_exchange=not check_ctf_approval(rpc, owner, CTF_EXCHANGE_ADDRESS),
    )


def _pending_calls(status: ApprovalStatus) -> list[tuple[str, str, bytes]]:
    """(label, target contract, calldata) for each missing approval."""
    calls = []
    if status.needs_usdt_for_ctf_token:
        calls.append((
            "USDT approve for Conditional Tokens",
            USDT_ADDRESS,
            APPROVE_SELECTOR + encode(["address", "uint256"], [CTF_TOKEN_ADDRESS, MAX_UINT256]),
        ))
    if status.needs_usdt_for_exchange:
        calls.append((
            "USDT approve for CTF Exchange",
            USDT_ADDRESS,
            APPROVE_SELECTOR + encode(["address", "uint256"], [CTF_EXCHANGE_ADDRESS, MAX_UINT256]),
        ))
    if status.needs_ctf_token_for_exchange:
        calls.append((
            "CTF setApprovalForAll for CTF Exchange",
            CTF_TOKEN_ADDRESS,
            SET_APPROVAL_FOR_ALL_SELECTOR + encode(["address", "bool"], [CTF_EXCHANGE_ADDRESS, True]),
        ))
    return calls


# -- EOA --

def approve_tokens_for_eoa(rpc: RpcClient, wallet: TransactionSigner) -> ApprovalResult:
    """Send each missing approval directly from the EOA."""
    calls = _pending_calls(check_approvals(rpc, wallet.address))
    result = ApprovalResult(success=True)
    if not calls:
        logger.info("All approvals already set for %s", wallet.address)
        return result

    # Track nonce locally to avoid collisions on rapid transactions
    nonce = rpc.get_transaction_count(wallet.address)
    for label, target, calldata in calls:
        logger.info("%s from EOA %s", label, wallet.address)
        tx_hash = rpc.send_transaction(wallet, target, calldata, nonce=nonce)
        nonce += 1
        rpc.confirm(tx_hash, label)
        result.transaction_hashes.append(tx_hash)
        result.approvals_executed += 1
    return result


# -- Proxy (Gnosis safe) --

def get_safe_nonce(rpc: RpcClient, safe_address: str) -> int:
    return decode(["uint256"], rpc.eth_call(safe_address, SAFE_NONCE_SELECTOR))[0]


def build_safe_tx_typed_data(safe_address: str, chain_id: int, to: str, data: bytes, nonce: int) -> dict:
    return {
        "primaryType": "SafeTx",
        "types": {"SafeTx": SAFE_TX_STRUCTURE},
        "domain": {"chainId": chain_id, "verifyingContract": safe_address},
        "message": {
            "to": to,
            "value": 0,
            "data": "0x" + data.hex(),
            "operation": 0,
            "safeTxGas": 0,
            "baseGas": 0,
            "gasPrice": 0,
            "gasToken": ZERO_ADDRESS,
            "refundReceiver": ZERO_ADDRESS,
            "nonce": nonce,
        },
    }


def exec_safe_transaction(
    rpc: RpcClient, wallet: TransactionSigner, safe_address: str, to: str, data: bytes
) -> str:
    """Execute a call from a 1-of-1 safe owned by ``wallet``. Returns the tx hash."""
    safe = to_checksum_address(safe_address)
    typed = build_safe_tx_typed_data(safe, rpc.chain_id, to, data, get_safe_nonce(rpc, safe))
    signature = wallet.sign_typed_data(
        typed["domain"], typed["types"], typed["primaryType"], typed["message"]
    )
    v, r, s = split_signature(signature)
    packed_sig = bytes.fromhex(r[2:]) + bytes.fromhex(s[2:]) + bytes([v])

    calldata = EXEC_TRANSACTION_SELECTOR + encode(
        ["address", "uint256", "bytes", "uint8", "uint256", "uint256", "uint256",
         "address", "address", "bytes"],
        [to, 0, data, 0, 0, 0, 0, ZERO_ADDRESS, ZERO_ADDRESS, packed_sig],
    )
    return rpc.send_transaction(wallet, safe, calldata)


def approve_tokens_for_proxy(
    rpc: RpcClient, wallet: TransactionSigner, proxy_address: str
) -> ApprovalResult:
    """Set each missing approval on the proxy, executed by the proxy itself."""
    proxy = to_checksum_address(proxy_address)
    calls = _pending_calls(check_approvals(rpc, proxy))
    result = ApprovalResult(success=True)
    if not calls:
        logger.info("All approvals already set for proxy %s", proxy)
        return result

    for label, target, calldata in calls:
        logger.info("%s from proxy %s", label, proxy)
        tx_hash = exec_safe_transaction(rpc, wallet, proxy, target, calldata)
        rpc.confirm(tx_hash, label)
        result.transaction_hashes.append(tx_hash)
        result.approvals_executed += 1
    return result

"""Proxy trading wallet: lookup through the factory and creation."""

import logging
from dataclasses import dataclass

from eth_abi import decode, encode
from eth_utils import keccak, to_checksum_address

from .chain import RpcClient
from .constants import PROXY_FACTORY_ADDRESS, PROXY_FACTORY_NAME, ZERO_ADDRESS
from .signer import TransactionSigner, split_signature

logger = logging.getLogger(__name__)

COMPUTE_PROXY_ADDRESS_SELECTOR = keccak(b"computeProxyAddress(address)")[:4]
CREATE_PROXY_SELECTOR = keccak(b"createProxy(address,uint256,address,(uint8,bytes32,bytes32))")[:4]

CREATE_PROXY_STRUCTURE = [
    {"name": "paymentToken", "type": "address"},
    {"name": "payment", "type": "uint256"},
    {"name": "paymentReceiver", "type": "address"},
]


@dataclass(frozen=True)
class ProxyWalletResult:
    address: str
    exists: bool
    transaction_hash: str | None = None


def compute_proxy_address(rpc: RpcClient, user_address: str,
                          factory: str = PROXY_FACTORY_ADDRESS) -> str:
    calldata = COMPUTE_PROXY_ADDRESS_SELECTOR + encode(["address"], [to_checksum_address(user_address)])
    (proxy,) = decode(["address"], rpc.eth_call(factory, calldata))
    return to_checksum_address(proxy)


def check_proxy_wallet(rpc: RpcClient, user_address: str,
                       factory: str = PROXY_FACTORY_ADDRESS) -> ProxyWalletResult:
    """Deterministic proxy address for ``user_address`` and whether it is deployed."""
    proxy = compute_proxy_address(rpc, user_address, factory)
    if proxy == ZERO_ADDRESS:
        return ProxyWalletResult(address=proxy, exists=False)
    code = rpc.get_code(proxy)
    return ProxyWalletResult(address=proxy, exists=code not in (None, "", "0x"))


def build_create_proxy_typed_data(chain_id: int, factory: str = PROXY_FACTORY_ADDRESS) -> dict:
    # Free creation: no payment token, amount or receiver.
    return {
        "primaryType": "CreateProxy",
        "types": {"CreateProxy": CREATE_PROXY_STRUCTURE},
        "domain": {
            "name": PROXY_FACTORY_NAME,
            "chainId": chain_id,
            "verifyingContract": factory,
        },
        "message": {
            "paymentToken": ZERO_ADDRESS,
            "payment": 0,
            "paymentReceiver": ZERO_ADDRESS,
        },
    }


def create_proxy_wallet(rpc: RpcClient, wallet: TransactionSigner,
                        factory: str = PROXY_FACTORY_ADDRESS) -> ProxyWalletResult:
    """Deploy the proxy wallet for ``wallet`` and wait for confirmation."""
    proxy = compute_proxy_address(rpc, wallet.address, factory)
    typed = build_create_proxy_typed_data(rpc.chain_id, factory)
    signature = wallet.sign_typed_data(
        typed["domain"], typed["types"], typed["primaryType"], typed["message"]
    )
    v, r, s = split_signature(signature)

    calldata = CREATE_PROXY_SELECTOR + encode(
        ["address", "uint256", "address", "(uint8,bytes32,bytes32)"],
        [ZERO_ADDRESS, 0, ZERO_ADDRESS, (v, bytes.fromhex(r[2:]), bytes.fromhex(s[2:]))],
    )
    tx_hash = rpc.send_transaction(wallet, factory, calldata)
    rpc.confirm(tx_hash, f"createProxy for {wallet.address}")
    logger.info("Proxy wallet %s created for %s", proxy, wallet.address)
    return ProxyWalletResult(address=proxy, exists=True, transaction_hash=tx_hash)


def ensure_proxy_wallet(rpc: RpcClient, wallet: TransactionSigner,
                        factory: str = PROXY_FACTORY_ADDRESS) -> ProxyWalletResult:
    status = check_proxy_wallet(rpc, wallet.address, factory)
    if status.exists:
        return status
    return create_proxy_wallet(rpc, wallet, factory)

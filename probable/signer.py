"""Wallet signing capability: EIP-712 typed data and raw transactions."""

from typing import Protocol, runtime_checkable

from eth_account import Account
from eth_account.messages import encode_typed_data


@runtime_checkable
class Wallet(Protocol):
    """The narrow slice of a wallet the order and auth builders depend on.

    ``types`` never contains ``EIP712Domain``; the domain type is implied by
    the ``domain`` dict.
    """

    @property
    def address(self) -> str: ...

    def sign_typed_data(
        self, domain: dict, types: dict, primary_type: str, message: dict
    ) -> str: ...


@runtime_checkable
class TransactionSigner(Wallet, Protocol):
    """A wallet that can also sign raw transactions (approvals, proxy creation)."""

    def sign_transaction(self, tx: dict) -> str: ...


def _signable(domain: dict, types: dict, primary_type: str, message: dict):
    # encode_typed_data derives the primary type from the type graph, so only
    # hand it the primary struct and the structs it references.
    message_types = {primary_type: types[primary_type]}
    message_types.update({k: v for k, v in types.items() if k not in (primary_type, "EIP712Domain")})
    return encode_typed_data(
        domain_data=domain,
        message_types=message_types,
        message_data=message,
    )


class LocalAccountWallet:
    """Wallet backed by a raw private key (hex string with 0x prefix)."""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    def __repr__(self) -> str:
        return f"LocalAccountWallet(address={self.address})"

    @property
    def address(self) -> str:
        return self._account.address

    def sign_typed_data(
        self, domain: dict, types: dict, primary_type: str, message: dict
    ) -> str:
        """Sign EIP-712 typed data and return the 0x-prefixed 65-byte signature."""
        signed = self._account.sign_message(_signable(domain, types, primary_type, message))
        return "0x" + bytes(signed.signature).hex()

    def sign_transaction(self, tx: dict) -> str:
        """Sign a transaction dict and return the raw transaction as 0x hex."""
        signed = self._account.sign_transaction(tx)
        return "0x" + bytes(signed.raw_transaction).hex()


def recover_typed_data_signer(
    domain: dict, types: dict, primary_type: str, message: dict, signature: str
) -> str:
    """Recover the checksummed address that produced an EIP-712 signature."""
    return Account.recover_message(
        _signable(domain, types, primary_type, message), signature=signature
    )


def split_signature(signature: str) -> tuple[int, str, str]:
    """Split a 65-byte hex signature into ``(v, r, s)`` with v normalized to 27/28."""
    sig = signature.removeprefix("0x")
    if len(sig) != 130:
        raise ValueError(f"Expected a 65-byte signature, got {len(sig) // 2} bytes")
    r = "0x" + sig[0:64]
    s = "0x" + sig[64:128]
    v = int(sig[128:130], 16)
    if v < 27:
        v += 27
    return v, r, s

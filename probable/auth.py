"""Probable authentication: L1 wallet-signature headers + L2 HMAC request signing."""

import base64
import hashlib
import hmac
import json
import time
from enum import Enum

from .constants import (
    CLOB_AUTH_STRUCTURE,
    HEADER_ACCOUNT_TYPE,
    HEADER_ADDRESS,
    HEADER_API_KEY,
    HEADER_NONCE,
    HEADER_PASSPHRASE,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    MSG_TO_SIGN,
)
from .credentials import ApiKeyCreds
from .errors import PreconditionError
from .order import SignatureType
from .signer import Wallet


class AccountType(str, Enum):
    """How the service resolves the trading identity behind L2 requests.

    EOA orders are made and signed by the wallet itself; PROXY orders are
    funded by the user's proxy (Gnosis safe) and signed by its owner.
    """

    EOA = "eoa"
    PROXY = "proxy"

    @property
    def signature_type(self) -> SignatureType:
        return SignatureType.EOA if self is AccountType.EOA else SignatureType.PROB_GNOSIS_SAFE


# ----------------------------------------------------------------------
# L1
# ----------------------------------------------------------------------

def build_clob_auth_typed_data(address: str, chain_id: int, timestamp: int, nonce: int) -> dict:
    return {
        "primaryType": "ClobAuth",
        "types": {"ClobAuth": CLOB_AUTH_STRUCTURE},
        "domain": {
            "name": "ClobAuthDomain",
            "version": "1",
            "chainId": chain_id,
        },
        "message": {
            "address": address,
            "timestamp": str(timestamp),
            "nonce": nonce,
            "message": MSG_TO_SIGN,
        },
    }


def build_clob_eip712_signature(wallet: Wallet, chain_id: int, timestamp: int, nonce: int) -> str:
    """Have the wallet sign the ClobAuth attestation."""
    address = wallet.address
    if not address:
        raise PreconditionError("Wallet address is not defined")
    typed = build_clob_auth_typed_data(address, chain_id, timestamp, nonce)
    return wallet.sign_typed_data(
        typed["domain"], typed["types"], typed["primaryType"], typed["message"]
    )


def create_l1_headers(
    wallet: Wallet,
    chain_id: int,
    nonce: int | None = None,
    timestamp: int | None = None,
) -> dict:
    """Headers proving wallet ownership, used to mint API credentials."""
    ts = int(time.time()) if timestamp is None else timestamp
    n = 0 if nonce is None else nonce
    sig = build_clob_eip712_signature(wallet, chain_id, ts, n)
    return {
        HEADER_ADDRESS: wallet.address,
        HEADER_SIGNATURE: sig,
        HEADER_TIMESTAMP: str(ts),
        HEADER_NONCE: str(n),
    }


# ----------------------------------------------------------------------
# L2
# ----------------------------------------------------------------------

def serialize_body(body) -> str:
    """Compact JSON: the exact bytes that are both signed and sent."""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def build_hmac_signature(
    secret: str,
    timestamp: int | str,
    method: str,
    request_path: str,
    body: str | None = None,
) -> str:
    """HMAC-SHA256 over ``timestamp + method + path [+ body]``, URL-safe base64.

    The secret may use either base64 alphabet. Padding is kept in the output.
    """
    if not secret:
        raise ValueError("API secret is required for L2 request signing")
    message = f"{timestamp}{method}{request_path}"
    if body is not None:
        message += body
    key = base64.b64decode(secret.replace("-", "+").replace("_", "/"), validate=True)
    sig = hmac.new(key, message.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(sig).decode()


def create_l2_headers(
    address: str,
    creds: ApiKeyCreds,
    method: str,
    request_path: str,
    body: str | None = None,
    account_type: AccountType = AccountType.PROXY,
    timestamp: int | None = None,
) -> dict:
    """Build the full set of L2 authentication headers for one request."""
    ts = int(time.time()) if timestamp is None else timestamp
    sig = build_hmac_signature(creds.secret, ts, method, request_path, body or "")
    headers = {
        HEADER_ADDRESS: address,
        HEADER_SIGNATURE: sig,
        HEADER_TIMESTAMP: str(ts),
        HEADER_API_KEY: creds.key,
        HEADER_PASSPHRASE: creds.passphrase,
        "Content-Type": "application/json",
    }
    if AccountType(account_type) is AccountType.EOA:
        headers[HEADER_ACCOUNT_TYPE] = AccountType.EOA.value
    return headers

"""Minimal JSON-RPC client for on-chain reads and transactions (BSC)."""

import logging
import random
import time

import httpx

from .constants import CHAIN_ID, RPC_URL
from .errors import ChainError
from .signer import TransactionSigner

logger = logging.getLogger(__name__)

_RETRYABLE_CODES = {429, 500, 502, 503, 504}
_GAS_MARGIN = 10_000


class RpcClient:
    """Synchronous JSON-RPC client with retry on rate limits and transient errors.

    Args:
        url: RPC endpoint.
        chain_id: Chain id stamped on outgoing transactions.
        timeout: HTTP timeout in seconds.
        max_retries: Retries on rate limits / transient HTTP errors.
        base_delay: Initial backoff delay in seconds.
    """

    def __init__(
        self,
        url: str = RPC_URL,
        chain_id: int = CHAIN_ID,
        timeout: float = 30,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ):
        self.url = url
        self.chain_id = chain_id
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._http = httpx.Client(timeout=timeout)
        self._next_id = 1

    def __repr__(self) -> str:
        return f"RpcClient(url={self.url})"

    def _backoff(self, attempt: int) -> float:
        return self.base_delay * (2**attempt) * (0.5 + random.random())

    def call(self, method: str, params: list):
        """Send one JSON-RPC request and return its ``result``."""
        for attempt in range(self.max_retries + 1):
            payload = {"jsonrpc": "2.0", "id": self._next_id, "method": method, "params": params}
            self._next_id += 1
            resp = self._http.post(self.url, json=payload)
            if resp.status_code in _RETRYABLE_CODES and attempt < self.max_retries:
                delay = self._backoff(attempt)
                logger.warning("RPC %d on %s, retry %d/%d in %.1fs",
                               resp.status_code, method, attempt + 1, self.max_retries, delay)
                time.sleep(delay)
                continue
            resp.raise_for_status()
            data = resp.json()
            if "error" in data:
                err = data["error"]
                if "rate limit" in str(err.get("message", "")).lower() and attempt < self.max_retries:
                    delay = self._backoff(attempt)
                    logger.warning("RPC rate limited on %s, retry in %.1fs", method, delay)
                    time.sleep(delay)
                    continue
                raise ChainError(f"RPC error on {method}: {err}")
            return data["result"]
        raise ChainError(f"RPC retries exhausted for {method}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def eth_call(self, to: str, data: bytes) -> bytes:
        result = self.call("eth_call", [{"to": to, "data": "0x" + data.hex()}, "latest"])
        return bytes.fromhex(result.removeprefix("0x"))

    def get_code(self, address: str) -> str:
        return self.call("eth_getCode", [address, "latest"])

    def get_transaction_count(self, address: str) -> int:
        return int(self.call("eth_getTransactionCount", [address, "pending"]), 16)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def send_transaction(self, wallet: TransactionSigner, to: str, data: bytes,
                         nonce: int | None = None) -> str:
        """Build, sign and broadcast a legacy transaction. Returns the tx hash."""
        sender = wallet.address
        if nonce is None:
            nonce = self.get_transaction_count(sender)
        gas_price = int(self.call("eth_gasPrice", []), 16)
        gas_estimate = int(self.call("eth_estimateGas", [{
            "from": sender,
            "to": to,
            "data": "0x" + data.hex(),
        }]), 16)

        tx = {
            "chainId": self.chain_id,
            "nonce": nonce,
            "to": to,
            "data": "0x" + data.hex(),
            "gas": gas_estimate + _GAS_MARGIN,
            "gasPrice": gas_price,
            "value": 0,
        }
        raw = wallet.sign_transaction(tx)
        tx_hash = self.call("eth_sendRawTransaction", [raw])
        logger.info("Sent tx %s to %s (nonce %d)", tx_hash, to, nonce)
        return tx_hash

    def wait_for_receipt(self, tx_hash: str, timeout: float = 120, poll_interval: float = 2.0) -> dict:
        start = time.monotonic()
        while time.monotonic() - start < timeout:
            try:
                receipt = self.call("eth_getTransactionReceipt", [tx_hash])
            except (ChainError, httpx.HTTPError) as exc:
                logger.debug("Receipt poll for %s failed: %s", tx_hash, exc)
                receipt = None
            if receipt is not None:
                return receipt
            time.sleep(poll_interval)
        raise TimeoutError(f"Transaction {tx_hash} not mined within {timeout}s")

    def confirm(self, tx_hash: str, label: str) -> dict:
        """Wait for a transaction and raise ChainError if it reverted."""
        receipt = self.wait_for_receipt(tx_hash)
        if int(receipt["status"], 16) != 1:
            raise ChainError(f"Transaction reverted: {label} (tx: {tx_hash})")
        logger.info("%s confirmed in block %d", label, int(receipt["blockNumber"], 16))
        return receipt

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

"""Tests for probable.client: REST client with mocked HTTP."""

import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
import pytest
from eth_account import Account

from probable.auth import AccountType, build_hmac_signature
from probable.balance import CollateralBalance
from probable.client import CancelResult, PlaceOrderParams, ProbableClient
from probable.credentials import ApiKeyCreds, MemoryCredentialStore
from probable.errors import (
    ApiError,
    CredentialExpiredError,
    InsufficientBalanceError,
    PreconditionError,
)
from probable.order import Side
from probable.signer import LocalAccountWallet

_FAKE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
_ADDRESS = Account.from_key(_FAKE_KEY).address
_PROXY = "0x1111111111111111111111111111111111111111"
_CREDS = ApiKeyCreds(
    key="test-api-key",
    secret="dGVzdC1zZWNyZXQta2V5LTMyYnl0ZXMhYWJjZGVmZ2g=",  # base64
    passphrase="test-passphrase",
)
_NEW_RAW = {
    "apiKey": "new-api-key",
    "secret": "bmV3LXNlY3JldC1rZXktMzJieXRlcyFhYmNkZWZnaA==",
    "passphrase": "new-passphrase",
}
_PARAMS = PlaceOrderParams(token_id="12345678", side=Side.BUY, price=0.5, size=1)


def _make_client(creds=_CREDS, **kwargs) -> ProbableClient:
    """Client with stored creds and a mocked HTTP transport."""
    kwargs.setdefault("proxy_address", _PROXY)
    client = ProbableClient(LocalAccountWallet(_FAKE_KEY), MemoryCredentialStore(creds), **kwargs)
    client._http = MagicMock()
    return client


def _mock_response(status_code=200, json_data=None):
    """Create a mock httpx.Response with given status and JSON data."""
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status_code
    resp.json.return_value = json_data if json_data is not None else {}
    resp.text = json.dumps(json_data) if json_data is not None else ""
    resp.content = resp.text.encode()
    return resp


def _sent(client, index=-1):
    """(method, path, headers, body dict or None) of a recorded request."""
    call = client._http.request.call_args_list[index]
    method, path = call[0]
    content = call[1]["content"]
    return method, path, call[1]["headers"], json.loads(content) if content else None


class TestClientInit:
    def test_requires_wallet_address(self):
        wallet = MagicMock()
        wallet.address = ""
        with pytest.raises(PreconditionError):
            ProbableClient(wallet, proxy_address=_PROXY)

    def test_proxy_mode_requires_proxy(self):
        with pytest.raises(PreconditionError):
            ProbableClient(LocalAccountWallet(_FAKE_KEY))

    def test_eoa_mode(self):
        client = ProbableClient(LocalAccountWallet(_FAKE_KEY), account_type=AccountType.EOA)
        assert client.funder_address == _ADDRESS
        assert client.address == _ADDRESS

    def test_proxy_funds_orders(self):
        client = _make_client()
        assert client.funder_address == _PROXY
        assert client.address == _ADDRESS

    def test_repr(self):
        assert "proxy" in repr(_make_client())


class TestRequest:
    @patch("probable.client.time.sleep")
    def test_get_retried_on_503(self, mock_sleep):
        client = _make_client()
        client._http.request.side_effect = [_mock_response(503), _mock_response(200, {"orders": []})]

        result = client.get_open_orders(_CREDS)
        assert result.orders == []
        assert client._http.request.call_count == 2
        mock_sleep.assert_called_once()

    @patch("probable.client.time.sleep")
    def test_get_retried_on_timeout(self, mock_sleep):
        client = _make_client()
        client._http.request.side_effect = [httpx.ReadTimeout("slow"), _mock_response(200, [])]
        assert client.get_open_orders(_CREDS).total == 0
        assert client._http.request.call_count == 2

    @patch("probable.client.time.sleep")
    def test_retries_exhausted(self, mock_sleep):
        client = _make_client(max_retries=2)
        client._http.request.return_value = _mock_response(503, {"message": "down"})
        with pytest.raises(ApiError) as exc_info:
            client.get_open_orders(_CREDS)
        assert exc_info.value.status_code == 503
        assert client._http.request.call_count == 3

    @patch("probable.client.time.sleep")
    def test_post_never_retried(self, mock_sleep):
        client = _make_client()
        client._http.request.return_value = _mock_response(503, {"message": "down"})
        with pytest.raises(ApiError):
            client.place_order(_PARAMS, _CREDS)
        assert client._http.request.call_count == 1
        mock_sleep.assert_not_called()

    def test_post_timeout_wrapped(self):
        client = _make_client()
        client._http.request.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(ApiError, match="Failed to submit order: slow") as exc_info:
            client.place_order(_PARAMS, _CREDS)
        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ReadTimeout)
        assert client._http.request.call_count == 1

    @patch("probable.client.time.sleep")
    def test_timeouts_exhausted_wrapped(self, mock_sleep):
        client = _make_client(max_retries=1)
        client._http.request.side_effect = httpx.ReadTimeout("slow")
        with pytest.raises(ApiError, match="Failed to fetch open orders: slow"):
            client.get_open_orders(_CREDS)
        assert client._http.request.call_count == 2

    def test_connection_error_wrapped(self):
        client = _make_client()
        client._http.request.side_effect = httpx.ConnectError("connection refused")
        with pytest.raises(ApiError, match="Failed to fetch open orders: connection refused") as exc_info:
            client.get_open_orders(_CREDS)
        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert client._http.request.call_count == 1

    def test_client_error_raises(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(400, {"message": "bad order"})
        with pytest.raises(ApiError, match="Failed to submit order: bad order"):
            client.place_order(_PARAMS, _CREDS)

    def test_empty_body_returns_empty_dict(self):
        client = _make_client()
        resp = _mock_response(200)
        resp.content = b""
        client._http.request.return_value = resp
        assert client.cancel_order({"orderId": "1", "tokenId": "9"}, _CREDS) is True


class TestSubmitOrder:
    def test_body_and_signature(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, {"id": "ord-1"})

        result = client.place_order(_PARAMS, _CREDS)
        assert result.success is True
        assert result.order_id == "ord-1"
        assert result.order == {"id": "ord-1"}

        method, path, headers, body = _sent(client)
        assert method == "POST"
        assert path == "/public/api/v1/order/56"
        assert body["deferExec"] is True
        assert body["orderType"] == "GTC"
        assert body["owner"] == _ADDRESS
        assert body["order"]["side"] == "BUY"
        assert body["order"]["makerAmount"] == "500000000000000000"
        assert body["order"]["takerAmount"] == "1000000000000000000"

        # the HMAC covers exactly the bytes sent
        content = client._http.request.call_args[1]["content"].decode()
        assert headers["PROB_SIGNATURE"] == build_hmac_signature(
            _CREDS.secret, headers["PROB_TIMESTAMP"], "POST", path, content
        )
        assert headers["PROB_ADDRESS"] == _ADDRESS
        assert headers["PROB_API_KEY"] == "test-api-key"

    def test_proxy_order_fields(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, {"id": "ord-1"})
        client.place_order(_PARAMS, _CREDS)

        _, _, headers, body = _sent(client)
        assert body["order"]["maker"] == _PROXY
        assert body["order"]["signer"] == _ADDRESS
        assert body["order"]["signatureType"] == 2
        assert "PROB_ACCOUNT_TYPE" not in headers

    def test_eoa_order_fields(self):
        client = _make_client(account_type=AccountType.EOA, proxy_address=None)
        client._http.request.return_value = _mock_response(200, {"orderId": 77})
        result = client.place_order(_PARAMS, _CREDS)

        _, _, headers, body = _sent(client)
        assert body["order"]["maker"] == _ADDRESS
        assert body["order"]["signatureType"] == 0
        assert headers["PROB_ACCOUNT_TYPE"] == "eoa"
        assert result.order_id == "77"

    def test_signed_order_returned(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, {"id": "ord-1"})
        result = client.place_order(_PARAMS, _CREDS)
        assert result.signed_order.signer == _ADDRESS
        assert result.signed_order.side is Side.BUY


class TestApiKeys:
    def test_create_api_key_uses_l1_headers(self):
        client = _make_client(creds=None)
        client._http.request.return_value = _mock_response(200, _NEW_RAW)

        creds = client.create_api_key()
        assert creds == ApiKeyCreds.from_raw(_NEW_RAW)

        method, path, headers, body = _sent(client)
        assert method == "POST"
        assert path == "/public/api/v1/auth/api-key/56"
        assert body == {}
        assert headers["PROB_ADDRESS"] == _ADDRESS
        assert headers["PROB_NONCE"] == "0"
        assert headers["PROB_SIGNATURE"].startswith("0x")
        assert "PROB_API_KEY" not in headers

    def test_loads_stored_creds(self):
        client = _make_client()
        result = client.create_or_load_api_key()
        assert result.api_key == _CREDS
        assert result.is_new is False
        client._http.request.assert_not_called()

    def test_creates_and_saves_when_missing(self):
        client = _make_client(creds=None)
        client._http.request.return_value = _mock_response(200, _NEW_RAW)

        result = client.create_or_load_api_key()
        assert result.is_new is True
        assert result.api_key.key == "new-api-key"
        assert client._store.load() == result.api_key

    def test_force_regenerate(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, _NEW_RAW)

        result = client.create_or_load_api_key(force_regenerate=True)
        assert result.is_new is True
        assert result.api_key.key == "new-api-key"
        assert client._store.load().key == "new-api-key"


class TestWithCredentials:
    def test_success_uses_stored_creds(self):
        client = _make_client()
        operation = MagicMock(return_value="ok")
        assert client.with_credentials(operation, "testing") == "ok"
        operation.assert_called_once_with(_CREDS)

    def test_expired_key_regenerated_once(self):
        client = _make_client()
        fresh = ApiKeyCreds.from_raw(_NEW_RAW)
        operation = MagicMock(side_effect=[CredentialExpiredError("expired"), "ok"])

        with patch.object(client, "create_api_key", return_value=fresh) as mock_create:
            assert client.with_credentials(operation, "testing") == "ok"

        mock_create.assert_called_once()
        assert operation.call_count == 2
        assert operation.call_args_list[1][0][0] == fresh

    def test_second_expiry_propagates(self):
        client = _make_client()
        second = CredentialExpiredError("still expired")
        operation = MagicMock(side_effect=[CredentialExpiredError("expired"), second])

        with patch.object(client, "create_api_key", return_value=ApiKeyCreds.from_raw(_NEW_RAW)) as mock_create:
            with pytest.raises(CredentialExpiredError) as exc_info:
                client.with_credentials(operation, "testing")

        assert exc_info.value is second
        assert operation.call_count == 2
        mock_create.assert_called_once()

    def test_other_errors_not_retried(self):
        client = _make_client()
        operation = MagicMock(side_effect=ApiError("bad order"))
        with patch.object(client, "create_api_key") as mock_create:
            with pytest.raises(ApiError):
                client.with_credentials(operation, "testing")
        mock_create.assert_not_called()
        operation.assert_called_once()

    def test_place_order_recovers_from_pas_4008(self):
        client = _make_client()
        client._http.request.side_effect = [
            _mock_response(401, {"error": {"code": "PAS-4008", "message": "Unauthorized"}}),
            _mock_response(200, _NEW_RAW),
            _mock_response(200, {"id": "ord-9"}),
        ]

        result = client.place_order_with_api_key(_PARAMS)
        assert result.order_id == "ord-9"
        assert client._http.request.call_count == 3
        _, path, _, _ = _sent(client, 1)
        assert path == "/public/api/v1/auth/api-key/56"
        _, _, headers, _ = _sent(client, 2)
        assert headers["PROB_API_KEY"] == "new-api-key"
        assert client._store.load().key == "new-api-key"


class TestOpenOrders:
    def test_orders_envelope(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, {"orders": [{"orderId": "1"}]})
        result = client.get_open_orders(_CREDS)
        assert result.orders == [{"orderId": "1"}]
        assert result.total == 1

        method, path, headers, body = _sent(client)
        assert method == "GET"
        assert path == "/public/api/v1/orders/56/open?page=1&limit=20"
        assert body is None
        assert headers["PROB_SIGNATURE"] == build_hmac_signature(
            _CREDS.secret, headers["PROB_TIMESTAMP"], "GET", path
        )

    def test_bare_list(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, [{"orderId": "1"}, {"orderId": "2"}])
        assert client.get_open_orders(_CREDS, page=2, limit=5).total == 2
        assert _sent(client)[1].endswith("?page=2&limit=5")

    def test_unexpected_shape(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, {"data": "?"})
        assert client.get_open_orders(_CREDS).orders == []

    def test_with_api_key(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, {"orders": []})
        assert client.get_open_orders_with_api_key().total == 0


class TestCancel:
    def test_cancel_path_prefers_ctf_token(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, {"ok": True})
        client.cancel_order({"orderId": "abc", "ctfTokenId": "ctf1", "tokenId": "t1"}, _CREDS)

        method, path, headers, body = _sent(client)
        assert method == "DELETE"
        assert path == "/public/api/v1/order/56/abc?tokenId=ctf1"
        assert body is None
        assert headers["PROB_SIGNATURE"] == build_hmac_signature(
            _CREDS.secret, headers["PROB_TIMESTAMP"], "DELETE", path
        )

    def test_cancel_with_client_order_id(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, {})
        client.cancel_order({"orderId": "abc", "tokenId": "t1", "clientOrderId": "c-7"}, _CREDS)
        assert _sent(client)[1] == "/public/api/v1/order/56/abc?tokenId=t1&origClientOrderId=c-7"

    def test_cancel_all_is_best_effort(self):
        client = _make_client()
        orders = [{"orderId": "1"}, {"orderId": "2"}, {"orderId": "3"}]
        with patch.object(client, "cancel_order", side_effect=[True, ApiError("boom"), True]) as mock_cancel:
            result = client.cancel_orders(orders, _CREDS)

        assert result == CancelResult(success=2, failed=1, errors=[{"orderId": "2", "error": "boom"}])
        assert mock_cancel.call_count == 3
        assert mock_cancel.call_args_list[2][0][0] == {"orderId": "3"}

    def test_cancel_all_aborts_on_expired_key(self):
        client = _make_client()
        orders = [{"orderId": "1"}, {"orderId": "2"}]
        with patch.object(client, "cancel_order", side_effect=CredentialExpiredError("expired")) as mock_cancel:
            with pytest.raises(CredentialExpiredError):
                client.cancel_orders(orders, _CREDS)
        mock_cancel.assert_called_once()

    def test_cancel_all_with_api_key(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, {})
        result = client.cancel_orders_with_api_key([{"orderId": "1", "tokenId": "t"}])
        assert result.success == 1
        assert result.failed == 0

    def test_cancel_all_resumes_after_key_rotation(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, _NEW_RAW)
        orders = [{"orderId": "1"}, {"orderId": "2"}]
        effects = [True, CredentialExpiredError("expired"), True]
        with patch.object(client, "cancel_order", side_effect=effects) as mock_cancel:
            result = client.cancel_orders_with_api_key(orders)

        assert result == CancelResult(success=2, failed=0, errors=[])
        assert [c[0][0]["orderId"] for c in mock_cancel.call_args_list] == ["1", "2", "2"]
        assert mock_cancel.call_args_list[2][0][1].key == "new-api-key"
        assert client._store.load().key == "new-api-key"

    def test_cancel_all_keeps_failures_across_rotation(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(200, _NEW_RAW)
        orders = [{"orderId": "1"}, {"orderId": "2"}, {"orderId": "3"}]
        effects = [ApiError("order not found"), CredentialExpiredError("expired"), True, True]
        with patch.object(client, "cancel_order", side_effect=effects) as mock_cancel:
            result = client.cancel_orders_with_api_key(orders)

        assert result == CancelResult(
            success=2, failed=1, errors=[{"orderId": "1", "error": "order not found"}]
        )
        assert mock_cancel.call_count == 4


class TestBalance:
    def test_remote_insufficient_balance(self):
        client = _make_client()
        client._http.request.return_value = _mock_response(400, {"message": "insufficient balance"})
        with pytest.raises(InsufficientBalanceError) as exc_info:
            client.place_order(_PARAMS, _CREDS)
        assert exc_info.value.balance is None

    @patch("probable.client.check_collateral_balance")
    def test_remote_insufficient_balance_enriched(self, mock_check):
        mock_check.return_value = CollateralBalance(
            balance=2 * 10**17,
            balance_formatted=Decimal("0.2"),
            decimals=18,
            has_minimum_balance=False,
            minimum_required=Decimal("1"),
        )
        client = _make_client(rpc=MagicMock())
        client._http.request.return_value = _mock_response(400, {"message": "Insufficient balance"})

        with pytest.raises(InsufficientBalanceError) as exc_info:
            client.place_order(_PARAMS, _CREDS)

        exc = exc_info.value
        assert exc.balance == Decimal("0.2")
        assert exc.required == Decimal("0.5")
        assert exc.status_code == 400
        assert mock_check.call_args[0][1] == _PROXY

    @patch("probable.client.ensure_sufficient_balance")
    def test_preflight_check_blocks_submission(self, mock_ensure):
        mock_ensure.side_effect = InsufficientBalanceError(required=Decimal("0.5"), balance=Decimal("0"))
        client = _make_client(rpc=MagicMock(), check_balance=True)

        with pytest.raises(InsufficientBalanceError):
            client.place_order(_PARAMS, _CREDS)
        client._http.request.assert_not_called()
        assert mock_ensure.call_args[0][2] == Decimal("0.5")

    @patch("probable.client.ensure_sufficient_balance")
    def test_preflight_skipped_for_sell(self, mock_ensure):
        client = _make_client(rpc=MagicMock(), check_balance=True)
        client._http.request.return_value = _mock_response(200, {"id": "s-1"})
        client.place_order(PlaceOrderParams(token_id="1", side="sell", price=0.5, size=1), _CREDS)
        mock_ensure.assert_not_called()


class TestLifecycle:
    def test_context_manager_closes(self):
        client = _make_client()
        with client as c:
            assert c is client
        client._http.close.assert_called_once()

"""Probable CLI: run with: python3 -m probable <command>"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from .auth import AccountType
from .chain import RpcClient
from .config import Config
from .credentials import FileCredentialStore
from .errors import ProbableError
from .signer import LocalAccountWallet

logger = logging.getLogger(__name__)


def _setup_logging(level: str = "INFO", json_log: bool = False) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_log:
        fmt = logging.Formatter(
            '{"time":"%(asctime)s","level":"%(levelname)s","module":"%(name)s","msg":"%(message)s"}'
        )
    else:
        fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S")
    handler.setFormatter(fmt)
    root.addHandler(handler)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _get_wallet(args, config: Config) -> LocalAccountWallet:
    key = args.private_key or config.private_key
    if not key:
        print("Error: set PROB_PRIVATE_KEY env var or pass --private-key")
        sys.exit(1)
    return LocalAccountWallet(key)


def _get_rpc(config: Config) -> RpcClient:
    return RpcClient(url=config.rpc_url, chain_id=config.chain_id)


def _account_type(args, config: Config) -> AccountType:
    return AccountType.EOA if (args.eoa or config.use_eoa) else AccountType.PROXY


def _resolve_proxy(config: Config, wallet, rpc: RpcClient) -> str:
    """Configured proxy address, else the factory-computed one."""
    if config.proxy_address:
        return config.proxy_address
    from .wallet import check_proxy_wallet

    status = check_proxy_wallet(rpc, wallet.address)
    if not status.exists:
        logger.warning("Proxy wallet %s is not deployed yet (run: proxy --create)", status.address)
    return status.address


def _get_client(args, config: Config):
    """Authenticated client: requires a private key."""
    from .client import ProbableClient

    wallet = _get_wallet(args, config)
    rpc = _get_rpc(config)
    account_type = _account_type(args, config)
    proxy = _resolve_proxy(config, wallet, rpc) if account_type is AccountType.PROXY else None
    store = FileCredentialStore(str(config.creds_path(args.config_dir)))

    return ProbableClient(
        wallet,
        store,
        proxy_address=proxy,
        account_type=account_type,
        base_url=config.entry_service,
        chain_id=config.chain_id,
        exchange_address=config.exchange_address,
        collateral_decimals=config.collateral_decimals,
        timeout=config.request_timeout,
        max_retries=config.max_retries,
        rpc=rpc,
        check_balance=config.check_balance,
    )


# -- Commands ----------------------------------------------------------------

def cmd_whoami(args, config):
    """Show the signer, account mode and funding address."""
    from .signer import recover_typed_data_signer
    from .auth import build_clob_auth_typed_data

    wallet = _get_wallet(args, config)
    typed = build_clob_auth_typed_data(wallet.address, config.chain_id, 0, 0)
    sig = wallet.sign_typed_data(typed["domain"], typed["types"], typed["primaryType"], typed["message"])
    recovered = recover_typed_data_signer(
        typed["domain"], typed["types"], typed["primaryType"], typed["message"], sig
    )
    _print_json({
        "address": wallet.address,
        "accountType": _account_type(args, config).value,
        "proxyAddress": config.proxy_address or None,
        "signatureRecovers": recovered == wallet.address,
    })


def cmd_derive(args, config):
    """Create (or load) API credentials via L1 auth."""
    with _get_client(args, config) as client:
        result = client.create_or_load_api_key(force_regenerate=args.force)
        print(f"API key: {result.api_key.key} ({'new' if result.is_new else 'stored'})")
        if args.show:
            _print_json(result.api_key.to_dict())


def cmd_order(args, config):
    """Place a limit order."""
    from .client import PlaceOrderParams

    with _get_client(args, config) as client:
        params = PlaceOrderParams(
            token_id=args.token_id,
            side=args.side.upper(),
            price=args.price,
            size=args.size,
            tick_size=args.tick_size or config.default_tick_size,
        )
        result = client.place_order_with_api_key(params)
        _print_json({"success": result.success, "orderId": result.order_id, "order": result.order})


def cmd_orders(args, config):
    """List open orders."""
    with _get_client(args, config) as client:
        result = client.get_open_orders_with_api_key(page=args.page, limit=args.limit)
        if not result.orders:
            print("No open orders.")
            return
        for o in result.orders:
            print(f"  {o.get('orderId', '?')}  {o.get('side', '?')}  "
                  f"price={o.get('price', '?')}  size={o.get('size', o.get('origQty', '?'))}")
        print(f"\n{result.total} open order(s)")


def cmd_cancel(args, config):
    """Cancel an order or all open orders."""
    if args.order_id != "all" and not args.token_id:
        print("Error: --token-id is required to cancel a single order")
        sys.exit(1)
    with _get_client(args, config) as client:
        if args.order_id == "all":
            orders = client.get_open_orders_with_api_key(limit=args.limit).orders
        else:
            orders = [{"orderId": args.order_id, "tokenId": args.token_id}]
        result = client.cancel_orders_with_api_key(orders)
        _print_json(asdict(result))


def cmd_balance(args, config):
    """Show the collateral balance of the funding address."""
    from .balance import check_collateral_balance

    wallet = _get_wallet(args, config)
    with _get_rpc(config) as rpc:
        if _account_type(args, config) is AccountType.EOA:
            address = wallet.address
        else:
            address = _resolve_proxy(config, wallet, rpc)
        status = check_collateral_balance(rpc, address, fallback_decimals=config.collateral_decimals)
        _print_json({"address": address, **asdict(status)})


def cmd_approvals(args, config):
    """Check (and optionally set) the trading approvals."""
    from .approvals import approve_tokens_for_eoa, approve_tokens_for_proxy, check_approvals

    wallet = _get_wallet(args, config)
    with _get_rpc(config) as rpc:
        eoa = _account_type(args, config) is AccountType.EOA
        address = wallet.address if eoa else _resolve_proxy(config, wallet, rpc)
        status = check_approvals(rpc, address)
        _print_json({"address": address, **asdict(status), "needsAny": status.needs_any})
        if args.approve and status.needs_any:
            if eoa:
                result = approve_tokens_for_eoa(rpc, wallet)
            else:
                result = approve_tokens_for_proxy(rpc, wallet, address)
            _print_json(asdict(result))


def cmd_proxy(args, config):
    """Show (and optionally deploy) the proxy wallet."""
    from .wallet import check_proxy_wallet, ensure_proxy_wallet

    wallet = _get_wallet(args, config)
    with _get_rpc(config) as rpc:
        if args.create:
            result = ensure_proxy_wallet(rpc, wallet)
        else:
            result = check_proxy_wallet(rpc, wallet.address)
        _print_json(asdict(result))


# -- CLI setup ---------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python3 -m probable",
        description="Probable CTF exchange client",
    )
    parser.add_argument("--private-key", help="Private key (or set PROB_PRIVATE_KEY)")
    parser.add_argument("--eoa", action="store_true", help="Trade from the EOA instead of the proxy wallet")
    parser.add_argument("--config-dir", default=".", help="Directory holding config.json and creds")
    parser.add_argument(
        "--set", action="append", metavar="KEY=VALUE",
        help="Override config value (e.g. --set default_tick_size=0.001)",
    )
    parser.add_argument("--verbose", action="store_true", help="DEBUG logging")
    parser.add_argument("--json-log", action="store_true", help="Structured JSON logs")
    sub = parser.add_subparsers(dest="command", required=True)

    # whoami
    p = sub.add_parser("whoami", help="Show signer and account mode")
    p.set_defaults(func=cmd_whoami)

    # derive
    p = sub.add_parser("derive", help="Create or load API credentials")
    p.add_argument("--force", action="store_true", help="Delete stored creds and create new ones")
    p.add_argument("--show", action="store_true", help="Print the full credentials")
    p.set_defaults(func=cmd_derive)

    # order
    p = sub.add_parser("order", help="Place a limit order")
    p.add_argument("token_id")
    p.add_argument("side", choices=["buy", "sell", "BUY", "SELL"])
    p.add_argument("price")
    p.add_argument("size")
    p.add_argument("--tick-size", choices=["0.1", "0.01", "0.001", "0.0001"])
    p.set_defaults(func=cmd_order)

    # orders
    p = sub.add_parser("orders", help="List open orders")
    p.add_argument("--page", type=int, default=1)
    p.add_argument("--limit", type=int, default=20)
    p.set_defaults(func=cmd_orders)

    # cancel
    p = sub.add_parser("cancel", help="Cancel order(s)")
    p.add_argument("order_id", help="Order ID or 'all'")
    p.add_argument("--token-id", help="Token of the order (single cancel)")
    p.add_argument("--limit", type=int, default=100, help="Max open orders to cancel with 'all'")
    p.set_defaults(func=cmd_cancel)

    # balance
    p = sub.add_parser("balance", help="Show collateral balance")
    p.set_defaults(func=cmd_balance)

    # approvals
    p = sub.add_parser("approvals", help="Check trading approvals")
    p.add_argument("--approve", action="store_true", help="Send the missing approvals")
    p.set_defaults(func=cmd_approvals)

    # proxy
    p = sub.add_parser("proxy", help="Show the proxy wallet")
    p.add_argument("--create", action="store_true", help="Deploy it if missing")
    p.set_defaults(func=cmd_proxy)

    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config_dir = str(Path(args.config_dir))
    config = Config.load(config_dir)

    log_level = "DEBUG" if args.verbose else config.log_level
    _setup_logging(level=log_level, json_log=args.json_log)

    # --set overrides
    if args.set:
        updates = {}
        for item in args.set:
            if "=" in item:
                k, v = item.split("=", 1)
                updates[k] = v
        if updates:
            config.update(updates)
            config.save(config_dir)
            logger.info("Config updated: %s", updates)

    try:
        args.func(args, config)
    except ProbableError as exc:
        logger.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()

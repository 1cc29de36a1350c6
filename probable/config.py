"""Configuration management: dataclass with config.json > env > defaults."""

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path

from .constants import CHAIN_ID, COLLATERAL_TOKEN_DECIMALS, CTF_EXCHANGE_ADDRESS, ENTRY_SERVICE, RPC_URL

logger = logging.getLogger(__name__)

_ENV_MAP = {
    "private_key": "PROB_PRIVATE_KEY",
    "proxy_address": "PROB_PROXY_ADDRESS",
    "creds_file": "PROB_CREDS_FILE",
    "entry_service": "PROB_ENTRY_SERVICE",
    "rpc_url": "PROB_RPC_URL",
    "use_eoa": "PROB_USE_EOA",
    "log_level": "PROB_LOG_LEVEL",
}


@dataclass
class Config:
    # Auth
    private_key: str = ""
    proxy_address: str = ""
    use_eoa: bool = False
    creds_file: str = "creds.json"

    # Endpoints
    entry_service: str = ENTRY_SERVICE
    rpc_url: str = RPC_URL
    chain_id: int = CHAIN_ID
    exchange_address: str = CTF_EXCHANGE_ADDRESS
    collateral_decimals: int = COLLATERAL_TOKEN_DECIMALS

    # Orders
    default_tick_size: str = "0.01"
    check_balance: bool = True

    # HTTP
    request_timeout: float = 15.0
    max_retries: int = 3

    # Logging
    log_level: str = "INFO"

    @classmethod
    def load(cls, config_dir: str) -> "Config":
        config_path = Path(config_dir) / "config.json"
        file_cfg: dict = {}
        if config_path.exists():
            try:
                with open(config_path) as f:
                    file_cfg = json.load(f)
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Failed to load %s: %s", config_path, exc)

        kwargs: dict = {}
        field_types = {f.name: f.type for f in fields(cls)}

        for f in fields(cls):
            name = f.name
            if name in file_cfg:
                kwargs[name] = _coerce(file_cfg[name], field_types[name])
            elif name in _ENV_MAP:
                env_val = os.environ.get(_ENV_MAP[name])
                if env_val is not None:
                    kwargs[name] = _coerce(env_val, field_types[name])

        return cls(**kwargs)

    def save(self, config_dir: str) -> None:
        config_path = Path(config_dir) / "config.json"
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data.pop("private_key", None)  # Never persist the private key
        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)
        logger.info("Config saved to %s", config_path)

    def update(self, overrides: dict) -> None:
        field_types = {f.name: f.type for f in fields(self)}
        for key, value in overrides.items():
            if key not in field_types:
                logger.warning("Unknown config key: %s", key)
                continue
            setattr(self, key, _coerce(value, field_types[key]))

    def creds_path(self, config_dir: str) -> Path:
        path = Path(self.creds_file)
        if path.is_absolute():
            return path
        return Path(config_dir) / path


def _coerce(value, type_hint):
    if type_hint == "bool" or type_hint is bool:
        if isinstance(value, bool):
            return value
        return str(value).lower() in ("true", "1", "yes")
    if type_hint == "int" or type_hint is int:
        return int(value)
    if type_hint == "float" or type_hint is float:
        return float(value)
    return str(value)

"""API key credentials and the stores that persist them."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApiKeyCreds:
    """L2 credential triple issued by the order-entry service."""

    key: str
    secret: str
    passphrase: str

    def __repr__(self) -> str:
        return f"ApiKeyCreds(key={self.key!r})"

    @classmethod
    def from_raw(cls, raw: dict) -> "ApiKeyCreds":
        """Build from the service response ``{apiKey, secret, passphrase}``."""
        return cls(key=raw["apiKey"], secret=raw["secret"], passphrase=raw["passphrase"])

    @classmethod
    def from_dict(cls, data: dict) -> "ApiKeyCreds":
        if "apiKey" in data:
            return cls.from_raw(data)
        return cls(key=data["key"], secret=data["secret"], passphrase=data["passphrase"])

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ApiKeyResult:
    api_key: ApiKeyCreds
    is_new: bool


@runtime_checkable
class CredentialStore(Protocol):
    def load(self) -> ApiKeyCreds | None: ...
    def save(self, creds: ApiKeyCreds) -> None: ...
    def delete(self) -> None: ...


class MemoryCredentialStore:
    """Process-local store, for tests and short-lived sessions."""

    def __init__(self, creds: ApiKeyCreds | None = None):
        self._creds = creds

    def load(self) -> ApiKeyCreds | None:
        return self._creds

    def save(self, creds: ApiKeyCreds) -> None:
        self._creds = creds

    def delete(self) -> None:
        self._creds = None


class FileCredentialStore:
    """JSON file store. Writes are atomic and the file is owner-readable only."""

    def __init__(self, path: str):
        self.path = str(path)

    def __repr__(self) -> str:
        return f"FileCredentialStore(path={self.path!r})"

    def load(self) -> ApiKeyCreds | None:
        try:
            with open(self.path) as f:
                return ApiKeyCreds.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.warning("Ignoring unreadable credentials file %s: %s", self.path, exc)
            return None

    def save(self, creds: ApiKeyCreds) -> None:
        dir_path = os.path.dirname(self.path) or "."
        fd, tmp = tempfile.mkstemp(dir=dir_path, suffix=".tmp")
        try:
            os.chmod(tmp, 0o600)
            with os.fdopen(fd, "w") as f:
                json.dump(creds.to_dict(), f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise
        logger.info("API credentials saved to %s", self.path)

    def delete(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

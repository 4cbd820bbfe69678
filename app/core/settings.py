"""
CTG Vault settings.

Validated, typed settings loaded once from the environment (and a `.env`
file via python-dotenv). Misconfiguration fails at start-up with
SettingsValidationError rather than at the first transaction.

Usage:
    from app.core.settings import settings

    delay = settings.settle_delays.get(NetworkId.BSC)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from dotenv import load_dotenv

from networks import NetworkId, NetworkMode

# Load environment variables from .env file
load_dotenv()


class SignerType(Enum):
    """Signer backend types."""

    ENV_PRIVATE_KEY = "env_private_key"
    KEYSTORE = "keystore"
    REMOTE = "remote"


class SettingsValidationError(Exception):
    """Raised when settings validation fails."""

    def __init__(self, field: str, value: Any, message: str):
        self.field = field
        self.value = value
        super().__init__(f"Invalid configuration for {field}={value!r}: {message}")


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean from environment variable."""
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int | None = None) -> int | None:
    """Parse an integer from environment variable."""
    if value is None or value.strip() == "":
        return default
    try:
        return int(value.strip(), 0)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float | None = None) -> float | None:
    if value is None or value.strip() == "":
        return default
    try:
        return float(value.strip())
    except ValueError:
        return default


def _parse_enum(enum_cls: type, value: str | None, default: Enum) -> Any:
    raw = (value or "").strip().lower()
    for member in enum_cls:
        if member.value.lower() == raw:
            return member
    return default


def _per_network(prefix: str) -> Dict[NetworkId, str]:
    """Collect `<prefix>_<NET>` env values (e.g. VAULT_CONTRACT_BSC)."""
    out: Dict[NetworkId, str] = {}
    for network in NetworkId:
        raw = os.getenv(f"{prefix}_{network.value}")
        if raw and raw.strip():
            out[network] = raw.strip()
    return out


def _settle_overrides() -> Dict[NetworkId, int]:
    out: Dict[NetworkId, int] = {}
    for network, raw in _per_network("SETTLE_DELAY_MS").items():
        parsed = _parse_int(raw)
        if parsed is not None:
            out[network] = parsed
    return out


@dataclass
class Settings:
    """
    Unified settings class with validation.
    """

    PROJECT_NAME: str = "CTG-Vault-Core"

    # Networks
    NETWORK_MODE: NetworkMode = field(
        default_factory=lambda: _parse_enum(NetworkMode, os.getenv("NETWORK_MODE"), NetworkMode.TESTNET)
    )
    ACTIVE_NETWORK: str = field(default_factory=lambda: os.getenv("ACTIVE_NETWORK", "ETH").strip())
    VAULT_CONTRACTS: Dict[NetworkId, str] = field(default_factory=lambda: _per_network("VAULT_CONTRACT"))
    SETTLE_DELAY_OVERRIDES_MS: Dict[NetworkId, int] = field(default_factory=_settle_overrides)

    # Transactions
    RECEIPT_TIMEOUT_SEC: float = field(default_factory=lambda: _parse_float(os.getenv("RECEIPT_TIMEOUT_SEC"), 180.0) or 180.0)
    RECEIPT_POLL_SEC: float = field(default_factory=lambda: _parse_float(os.getenv("RECEIPT_POLL_SEC"), 1.0) or 1.0)
    HTTP_TIMEOUT_SEC: int = field(default_factory=lambda: _parse_int(os.getenv("HTTP_TIMEOUT_SEC"), 10) or 10)
    DEFAULT_TOKEN_DECIMALS: int = field(default_factory=lambda: _parse_int(os.getenv("DEFAULT_TOKEN_DECIMALS"), 18))
    AUTO_APPROVE_DEPOSITS: bool = field(default_factory=lambda: _parse_bool(os.getenv("AUTO_APPROVE_DEPOSITS"), True))

    # Signer settings
    SIGNER_TYPE: SignerType = field(
        default_factory=lambda: _parse_enum(SignerType, os.getenv("SIGNER_TYPE"), SignerType.ENV_PRIVATE_KEY)
    )
    PRIVATE_KEY: str | None = field(default_factory=lambda: os.getenv("PRIVATE_KEY"))
    KEYSTORE_PATH: str | None = field(default_factory=lambda: os.getenv("KEYSTORE_PATH"))
    KEYSTORE_PASSWORD: str | None = field(default_factory=lambda: os.getenv("KEYSTORE_PASSWORD"))
    SIGNER_REMOTE_URL: str | None = field(default_factory=lambda: os.getenv("SIGNER_REMOTE_URL"))
    REMOTE_SIGNER_TIMEOUT_SEC: int = field(default_factory=lambda: _parse_int(os.getenv("REMOTE_SIGNER_TIMEOUT_SEC"), 30) or 30)

    # Observability
    AUDIT_DB_PATH: str | None = field(default_factory=lambda: os.getenv("AUDIT_DB_PATH"))
    VAULT_LOG_LEVEL: str = field(default_factory=lambda: os.getenv("VAULT_LOG_LEVEL", "info").strip().lower())
    VAULT_SERVICE_NAME: str = field(default_factory=lambda: os.getenv("VAULT_SERVICE_NAME", "ctgvault").strip())

    def __post_init__(self) -> None:
        """Validate settings after initialization."""
        self._validate()

    def _validate(self) -> None:
        errors: list[str] = []

        try:
            NetworkId.parse(self.ACTIVE_NETWORK)
        except ValueError:
            errors.append(f"ACTIVE_NETWORK must be one of ETH, BSC, BASE (got {self.ACTIVE_NETWORK!r})")

        if self.DEFAULT_TOKEN_DECIMALS is None or not (0 <= self.DEFAULT_TOKEN_DECIMALS <= 255):
            errors.append("DEFAULT_TOKEN_DECIMALS must be between 0 and 255")

        for network, delay in self.SETTLE_DELAY_OVERRIDES_MS.items():
            if delay < 0:
                errors.append(f"SETTLE_DELAY_MS_{network.value} must be >= 0")

        for network, address in self.VAULT_CONTRACTS.items():
            if not (address.startswith("0x") and len(address) == 42):
                errors.append(f"VAULT_CONTRACT_{network.value} is not a 0x-prefixed 20-byte address")

        if self.RECEIPT_TIMEOUT_SEC <= 0:
            errors.append("RECEIPT_TIMEOUT_SEC must be > 0")

        if self.VAULT_LOG_LEVEL not in ("debug", "info", "warning", "error"):
            errors.append(f"VAULT_LOG_LEVEL must be debug|info|warning|error (got {self.VAULT_LOG_LEVEL!r})")

        if errors:
            raise SettingsValidationError("MULTIPLE", None, "; ".join(errors))

    @property
    def active_network(self) -> NetworkId:
        return NetworkId.parse(self.ACTIVE_NETWORK)

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to dictionary (redacting secrets)."""
        result: dict[str, Any] = {}
        for key in dir(self):
            if key.startswith("_") or key.isupper() is False:
                continue
            value = getattr(self, key)
            if any(s in key.upper() for s in ["SECRET", "PASSWORD", "PRIVATE_KEY"]):
                result[key] = "***REDACTED***" if value else None
            elif isinstance(value, dict):
                result[key] = {k.value if isinstance(k, Enum) else k: v for k, v in value.items()}
            elif isinstance(value, Enum):
                result[key] = value.value
            else:
                result[key] = value
        return result


# Global settings instance
settings = Settings()

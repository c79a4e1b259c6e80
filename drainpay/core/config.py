"""
Provider configuration.

Sources, lowest to highest precedence:
    1. defaults below
    2. YAML file  (ProviderConfig.from_yaml)
    3. environment variables  (CHAIN_ID, PROVIDER_PRIVATE_KEY, ...)
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from drainpay.core.exceptions import ConfigError


POLYGON_MAINNET = 137
POLYGON_AMOY    = 80002

DRAIN_ADDRESSES: Dict[int, str] = {
    POLYGON_MAINNET: "0x1C1918C99b6DcE977392E4131C91654d8aB71e64",
    POLYGON_AMOY:    "0x61f1C1E04d6Da1C92D0aF1a3d7Dc0fEFc8794d7C",
}

DEFAULT_RPC_URLS: Dict[int, str] = {
    POLYGON_MAINNET: "https://polygon-rpc.com",
    POLYGON_AMOY:    "https://rpc-amoy.polygon.technology",
}

# USDC, 6 decimals
USDC_DECIMALS = 6

# EIP-712 domain name/version of the DrainChannel contract
EIP712_NAME    = "DrainChannel"
EIP712_VERSION = "1"

RETENTION_CHOICES = ("retain", "prune")
LOG_FORMAT_CHOICES = ("text", "json")

# env var → field name
_ENV_KEYS = {
    "CHAIN_ID":             "chain_id",
    "RPC_URL":              "rpc_url",
    "PROVIDER_PRIVATE_KEY": "provider_private_key",
    "CONTRACT_ADDRESS":     "contract_address",
    "CLAIM_THRESHOLD":      "claim_threshold",
    "STORAGE_PATH":         "storage_path",
    "VOUCHER_RETENTION":    "retention",
    "AUTO_CLAIM_INTERVAL":  "auto_claim_interval",
    "AUTO_CLAIM_BUFFER":    "auto_claim_buffer",
    "LOG_LEVEL":            "log_level",
    "LOG_FORMAT":           "log_format",
}

_INT_FIELDS = {"chain_id", "claim_threshold", "auto_claim_interval", "auto_claim_buffer"}


@dataclass
class ProviderConfig:
    """Everything the payment core needs to run one provider instance."""

    provider_private_key: str
    chain_id:             int = POLYGON_MAINNET
    rpc_url:              Optional[str] = None
    contract_address:     Optional[str] = None
    claim_threshold:      int = 10_000_000
    storage_path:         Path = field(default_factory=lambda: Path("./data/vouchers.json"))
    retention:            str = "retain"
    auto_claim_interval:  int = 600
    auto_claim_buffer:    int = 3600
    log_level:            str = "INFO"
    log_format:           str = "text"

    def __post_init__(self) -> None:
        self.storage_path = Path(self.storage_path)
        if self.chain_id not in DRAIN_ADDRESSES:
            raise ConfigError(
                f"Invalid CHAIN_ID: {self.chain_id}. "
                f"Must be {POLYGON_MAINNET} (mainnet) or {POLYGON_AMOY} (testnet)."
            )
        if not self.provider_private_key:
            raise ConfigError("PROVIDER_PRIVATE_KEY is required")
        if self.rpc_url is None:
            self.rpc_url = DEFAULT_RPC_URLS[self.chain_id]
        if self.contract_address is None:
            self.contract_address = DRAIN_ADDRESSES[self.chain_id]
        if self.retention not in RETENTION_CHOICES:
            raise ConfigError(
                f"retention must be one of {RETENTION_CHOICES}, got {self.retention!r}"
            )
        if self.log_format not in LOG_FORMAT_CHOICES:
            raise ConfigError(
                f"log_format must be one of {LOG_FORMAT_CHOICES}, got {self.log_format!r}"
            )
        if self.claim_threshold < 0:
            raise ConfigError("claim_threshold must be non-negative")
        if self.auto_claim_interval <= 0:
            raise ConfigError("auto_claim_interval must be positive")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ProviderConfig":
        """Build from a snake_case mapping, coercing numeric strings."""
        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {sorted(unknown)}")

        kwargs: Dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if key in _INT_FIELDS:
                try:
                    value = int(value)
                except (TypeError, ValueError) as exc:
                    raise ConfigError(f"{key} must be an integer, got {value!r}") from exc
            kwargs[key] = value

        if "provider_private_key" not in kwargs:
            raise ConfigError("PROVIDER_PRIVATE_KEY is required")
        return cls(**kwargs)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base:    Optional[Mapping[str, Any]] = None,
    ) -> "ProviderConfig":
        """Environment variables override `base` (e.g. values read from YAML)."""
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = dict(base or {})
        for env_key, field_name in _ENV_KEYS.items():
            raw = environ.get(env_key)
            if raw:
                values[field_name] = raw
        return cls.from_mapping(values)

    @classmethod
    def from_yaml(
        cls,
        config_file: Path,
        environ:     Optional[Mapping[str, str]] = None,
    ) -> "ProviderConfig":
        """Load from a YAML file; environment variables still win."""
        config_file = Path(config_file)
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        with open(config_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {config_file} must contain a mapping")
        return cls.from_env(environ=environ, base=data)

    def __repr__(self) -> str:
        return (
            f"ProviderConfig(chain_id={self.chain_id}, "
            f"contract_address={self.contract_address!r}, "
            f"claim_threshold={self.claim_threshold}, "
            f"storage_path={str(self.storage_path)!r})"
        )

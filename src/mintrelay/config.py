"""Relayer configuration.

Values come from the process environment. The CLI loads a ``.env`` file first
with python-dotenv, so either source works.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from web3 import Web3

from .errors import ConfigurationError, create_missing_config_error

DEFAULT_SOURCE_CHAIN_ID = 11155111
DEFAULT_DEST_CHAIN_ID = 421614


def _first(env: Mapping[str, str], *keys: str) -> Optional[str]:
    for key in keys:
        value = env.get(key)
        if value is not None and value.strip():
            return value.strip()
    return None


def _get_int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = _first(env, key)
    if raw is None:
        return default
    try:
        return int(raw, 0)
    except ValueError:
        raise ConfigurationError(
            f"{key} must be an integer, got {raw!r}", config_key=key
        )


def _get_float(env: Mapping[str, str], key: str, default: Optional[float]) -> Optional[float]:
    raw = _first(env, key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"{key} must be a number, got {raw!r}", config_key=key
        )


@dataclass
class RelayerConfig:
    """Everything the relayer needs to run."""

    source_rpc: str
    dest_rpc: str
    source_bridge: str
    dest_bridge: str
    private_key: str = field(repr=False)
    relayer_address: Optional[str] = None
    source_chain_id: int = DEFAULT_SOURCE_CHAIN_ID
    dest_chain_id: int = DEFAULT_DEST_CHAIN_ID
    confirmations: int = 6
    max_retries: int = 5
    retry_base_ms: int = 1000
    poll_interval: float = 1.0
    finality_timeout: Optional[float] = None
    start_block: Optional[int] = None
    max_block_range: int = 2000
    receipt_timeout: float = 120.0
    db_path: str = "relayer-db.sqlite3"
    legacy_db_path: Optional[str] = "relayer-db.json"
    log_level: str = "info"
    log_format: str = "text"
    log_file: Optional[str] = None

    REQUIRED = {
        "source_rpc": ("SOURCE_RPC", "SEPOLIA_RPC_URL"),
        "dest_rpc": ("DEST_RPC", "ARB_SEPOLIA_RPC_URL"),
        "source_bridge": ("SOURCE_BRIDGE",),
        "dest_bridge": ("DEST_BRIDGE",),
        "private_key": ("RELAYER_PRIVATE_KEY",),
    }

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Check value ranges and address formats."""
        for name in ("source_bridge", "dest_bridge"):
            value = getattr(self, name)
            if not Web3.is_address(value):
                raise ConfigurationError(
                    f"{name} is not a valid address: {value!r}", config_key=name
                )
            setattr(self, name, Web3.to_checksum_address(value))

        if self.relayer_address is not None:
            if not Web3.is_address(self.relayer_address):
                raise ConfigurationError(
                    "relayer_address is not a valid address",
                    config_key="relayer_address",
                )
            self.relayer_address = Web3.to_checksum_address(self.relayer_address)

        if self.confirmations < 0:
            raise ConfigurationError(
                "confirmations must not be negative", config_key="confirmations"
            )
        if self.max_retries < 1:
            raise ConfigurationError(
                "max_retries must be at least 1", config_key="max_retries"
            )
        if self.retry_base_ms < 0:
            raise ConfigurationError(
                "retry_base_ms must not be negative", config_key="retry_base_ms"
            )
        if self.poll_interval <= 0:
            raise ConfigurationError(
                "poll_interval must be positive", config_key="poll_interval"
            )
        if self.max_block_range < 1:
            raise ConfigurationError(
                "max_block_range must be at least 1", config_key="max_block_range"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RelayerConfig":
        """Build configuration from environment variables.

        Raises ConfigurationError listing every missing mandatory variable.
        """
        env = os.environ if environ is None else environ

        values: Dict[str, object] = {}
        missing: List[str] = []
        for name, keys in cls.REQUIRED.items():
            value = _first(env, *keys)
            if value is None:
                missing.append(keys[0])
            values[name] = value

        if missing:
            raise create_missing_config_error(missing)

        finality_timeout = _get_float(env, "FINALITY_TIMEOUT", None)

        return cls(
            source_rpc=values["source_rpc"],
            dest_rpc=values["dest_rpc"],
            source_bridge=values["source_bridge"],
            dest_bridge=values["dest_bridge"],
            private_key=values["private_key"],
            relayer_address=_first(env, "RELAYER_ADDRESS"),
            source_chain_id=_get_int(env, "SOURCE_CHAIN_ID", DEFAULT_SOURCE_CHAIN_ID),
            dest_chain_id=_get_int(env, "DEST_CHAIN_ID", DEFAULT_DEST_CHAIN_ID),
            confirmations=_get_int(env, "CONFIRMATIONS", 6),
            max_retries=_get_int(env, "MAX_RETRIES", 5),
            retry_base_ms=_get_int(env, "RETRY_BASE_MS", 1000),
            poll_interval=_get_float(env, "POLL_INTERVAL", 1.0),
            finality_timeout=finality_timeout if finality_timeout else None,
            start_block=_get_int(env, "START_BLOCK", None),
            max_block_range=_get_int(env, "MAX_BLOCK_RANGE", 2000),
            receipt_timeout=_get_float(env, "RECEIPT_TIMEOUT", 120.0),
            db_path=_first(env, "RELAYER_DB") or "relayer-db.sqlite3",
            legacy_db_path=_first(env, "RELAYER_LEGACY_DB") or "relayer-db.json",
            log_level=_first(env, "LOG_LEVEL") or "info",
            log_format=_first(env, "LOG_FORMAT") or "text",
            log_file=_first(env, "LOG_FILE"),
        )

    def describe(self) -> Dict[str, object]:
        """Startup summary without secrets."""
        return {
            "source_bridge": self.source_bridge,
            "source_rpc": self.source_rpc,
            "source_chain_id": self.source_chain_id,
            "dest_bridge": self.dest_bridge,
            "dest_rpc": self.dest_rpc,
            "dest_chain_id": self.dest_chain_id,
            "confirmations": self.confirmations,
            "max_retries": self.max_retries,
            "retry_base_ms": self.retry_base_ms,
            "db_path": self.db_path,
        }

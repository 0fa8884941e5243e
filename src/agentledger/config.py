"""Ledger configuration models and loading helpers."""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Union

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator

from agentledger.errors import ConfigurationError
from agentledger.keystore import Keypair, load_keypair

Network = Literal["devnet", "mainnet-beta"]

CONFIG_ENV_VAR = "AGENTLEDGER_CONFIG"
DEFAULT_CONFIG_FILE = "agentledger.json"

DEFAULT_RPC_URLS: Dict[str, str] = {
    "devnet": "https://api.devnet.solana.com",
    "mainnet-beta": "https://api.mainnet-beta.solana.com",
}

HELIUS_RPC_URLS: Dict[str, str] = {
    "devnet": "https://devnet.helius-rpc.com",
    "mainnet-beta": "https://mainnet.helius-rpc.com",
}

HELIUS_API_URLS: Dict[str, str] = {
    "devnet": "https://api-devnet.helius.xyz",
    "mainnet-beta": "https://api.helius.xyz",
}

EXPLORER_BASE = "https://explorer.solana.com/tx"

# Environment variable -> config field
ENV_FIELDS: Dict[str, str] = {
    "AGENT_ID": "agent_id",
    "SOLANA_NETWORK": "network",
    "SOLANA_RPC_URL": "rpc_url",
    "HELIUS_API_KEY": "helius_api_key",
    "AGENT_WALLET_PATH": "wallet_path",
}

PRIVATE_KEY_ENV_VARS = ("AGENT_PRIVATE_KEY", "WALLET_SECRET_KEY")


class LedgerConfig(BaseModel):
    """Configuration for one AgentLedger instance."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    agent_id: str = Field(min_length=1)
    network: Network = "devnet"
    rpc_url: Optional[str] = None
    helius_api_key: Optional[SecretStr] = None
    wallet_path: Optional[str] = None
    commitment: Literal["processed", "confirmed", "finalized"] = "confirmed"
    timeout: float = Field(default=30.0, gt=0)
    confirm_timeout: float = Field(default=60.0, gt=0)
    oversample: int = Field(default=4, ge=1, le=10)
    fetch_concurrency: int = Field(default=10, ge=1, le=50)

    @field_validator("agent_id")
    @classmethod
    def _strip_agent_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("agent_id must not be blank")
        return value

    @field_validator("helius_api_key", mode="before")
    @classmethod
    def _blank_key_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def has_indexer(self) -> bool:
        return self.helius_api_key is not None

    @property
    def effective_rpc_url(self) -> str:
        """Explicit rpc_url, else Helius RPC when keyed, else the public endpoint."""
        if self.rpc_url:
            return self.rpc_url
        if self.helius_api_key is not None:
            key = self.helius_api_key.get_secret_value()
            return f"{HELIUS_RPC_URLS[self.network]}/?api-key={key}"
        return DEFAULT_RPC_URLS[self.network]

    @property
    def indexer_url(self) -> str:
        return HELIUS_API_URLS[self.network]

    def explorer_url(self, signature: str) -> str:
        return explorer_url(signature, self.network)


def explorer_url(signature: str, network: str = "devnet") -> str:
    """Solana explorer link for a transaction signature."""
    cluster = "?cluster=devnet" if network == "devnet" else ""
    return f"{EXPLORER_BASE}/{signature}{cluster}"


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")
    return data


def read_environment(
    environ: Optional[Mapping[str, str]] = None,
    *,
    load_env_file: bool = True,
) -> Mapping[str, str]:
    """The variables configuration is read from.

    An explicit ``environ`` is used as given. Otherwise the process
    environment is layered over a ``.env`` file found from the working
    directory (process variables win). ``os.environ`` is never modified.
    """
    if environ is not None:
        return environ
    if not load_env_file:
        return os.environ
    env_file = find_dotenv(usecwd=True)
    values: Dict[str, str] = {}
    if env_file:
        values.update((k, v) for k, v in dotenv_values(env_file).items() if v is not None)
    values.update(os.environ)
    return values


def load_config(
    path: Optional[Union[str, Path]] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    load_env_file: bool = True,
    **overrides: Any,
) -> LedgerConfig:
    """Load LedgerConfig.

    Precedence (lowest to highest): config file, environment variables,
    explicit ``overrides`` (None values are ignored).

    The config file is ``path``, else $AGENTLEDGER_CONFIG, else
    ./agentledger.json if it exists. Variables come from
    ``read_environment``: ``environ`` if given, else the process
    environment over a ``.env`` file unless ``load_env_file`` is False.
    """
    env = read_environment(environ, load_env_file=load_env_file)

    values: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        values.update(_read_config_file(config_path))
    else:
        config_path = Path(env.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE)
        if config_path.exists():
            values.update(_read_config_file(config_path))

    for var, field in ENV_FIELDS.items():
        if env.get(var):
            values[field] = env[var]

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return LedgerConfig.model_validate(values)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_wallet(
    config: LedgerConfig,
    *,
    environ: Optional[Mapping[str, str]] = None,
    load_env_file: bool = True,
) -> Keypair:
    """Load the agent wallet from $AGENT_PRIVATE_KEY / $WALLET_SECRET_KEY or config.wallet_path."""
    env = read_environment(environ, load_env_file=load_env_file)
    raw = next((env[v] for v in PRIVATE_KEY_ENV_VARS if env.get(v)), None)
    return load_keypair(raw=raw, path=config.wallet_path)


def write_config(config: LedgerConfig, path: Union[str, Path] = DEFAULT_CONFIG_FILE) -> Path:
    """Write ``config`` as JSON (secrets included in clear text)."""
    data = config.model_dump(mode="json", exclude_none=True, exclude_defaults=True)
    data["agent_id"] = config.agent_id
    data["network"] = config.network
    if config.helius_api_key is not None:
        data["helius_api_key"] = config.helius_api_key.get_secret_value()
    p = Path(path)
    p.write_text(json.dumps(data, indent=2) + "\n")
    return p


__all__ = [
    "Network",
    "LedgerConfig",
    "read_environment",
    "load_config",
    "load_wallet",
    "write_config",
    "explorer_url",
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_FILE",
    "DEFAULT_RPC_URLS",
    "PRIVATE_KEY_ENV_VARS",
]

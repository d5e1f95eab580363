"""Configuration system for begin-cli.

Loads settings from ``~/.begin-cli/config.yaml`` (or ``$BEGIN_CLI_HOME``),
supports ``${VAR}`` environment variable expansion, and resolves provider
credentials from the environment.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field

from begin_cli.errors import input_error
from begin_cli.utils import atomic_write_text, ensure_private_dir

HOME_ENV = "BEGIN_CLI_HOME"
MNEMONIC_ENV = "BEGIN_CLI_MNEMONIC"
PASSWORD_ENV = "BEGIN_CLI_WALLET_PASSWORD"


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    Unset variables are left as-is so validation can catch them later.
    """

    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------

NetworkName = Literal["mainnet", "preprod", "preview"]


class BlockfrostConfig(BaseModel):
    """Blockfrost chain data provider settings."""

    api_key: str = ""                 # ${BLOCKFROST_API_KEY}
    url: Optional[str] = None         # override the per-network endpoint


class ProviderConfig(BaseModel):
    blockfrost: BlockfrostConfig = Field(default_factory=BlockfrostConfig)


class RetryConfig(BaseModel):
    """Backoff policy shared by every outbound HTTP call."""

    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=0.5, gt=0)
    max_delay: float = Field(default=8.0, gt=0)
    jitter: float = Field(default=0.2, ge=0, le=1)


class ConfirmationConfig(BaseModel):
    """Polling for on-chain confirmation after submission."""

    poll_interval: float = Field(default=5.0, ge=0)
    max_attempts: int = Field(default=60, ge=1)


class SwapConfig(BaseModel):
    partner: Optional[str] = None


class MintConfig(BaseModel):
    """NMKR Studio credentials."""

    api_key: str = ""                 # ${NMKR_API_KEY}
    project_uid: str = ""             # ${NMKR_PROJECT_UID}


class CliConfig(BaseModel):
    """Root configuration object."""

    default_wallet: Optional[str] = None
    network: NetworkName = "mainnet"
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    confirmation: ConfirmationConfig = Field(default_factory=ConfirmationConfig)
    swap: SwapConfig = Field(default_factory=SwapConfig)
    mint: MintConfig = Field(default_factory=MintConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------

def get_root_dir(env: Mapping[str, str] | None = None) -> Path:
    """Return the begin-cli home directory (no auto-create)."""
    env = os.environ if env is None else env
    override = env.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".begin-cli"


def get_wallets_dir(root: Path) -> Path:
    return root / "wallets"


def get_config_path(root: Path) -> Path:
    return root / "config.yaml"


def get_journal_path(root: Path) -> Path:
    return root / "transactions.db"


def load_config(path: Path) -> CliConfig:
    """Load and validate configuration from a YAML file.

    A missing file yields the defaults.  Environment variable placeholders
    (``${VAR}``) are expanded before validation.
    """
    if not path.exists():
        return CliConfig()
    raw_data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    return CliConfig.model_validate(_expand_env_recursive(raw_data))


def update_config_file(path: Path, **changes: object) -> None:
    """Set top-level keys in the YAML file at *path*, leaving the rest as written.

    Works on the raw document, so ``${VAR}`` placeholders are kept rather
    than replaced by the secrets they expand to.  A value of ``None``
    removes the key.
    """
    raw_data: dict = {}
    if path.exists():
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw_data, dict):
            raise input_error(f"{path} does not hold a YAML mapping", code="INVALID_CONFIG")
    for key, value in changes.items():
        if value is None:
            raw_data.pop(key, None)
        else:
            raw_data[key] = value
    ensure_private_dir(path.parent)
    atomic_write_text(path, yaml.dump(raw_data, default_flow_style=False, sort_keys=False))


def resolve_blockfrost_key(
    config: CliConfig,
    network: str,
    env: Mapping[str, str] | None = None,
) -> str:
    """Find the Blockfrost project id for *network*.

    Lookup order: ``BLOCKFROST_API_KEY_<NETWORK>``, ``BLOCKFROST_API_KEY``,
    then the config file.
    """
    env = os.environ if env is None else env
    key = (
        env.get(f"BLOCKFROST_API_KEY_{network.upper()}")
        or env.get("BLOCKFROST_API_KEY")
        or config.provider.blockfrost.api_key
    )
    if not key or _ENV_VAR_RE.search(key):
        raise input_error(
            f"No Blockfrost API key for {network}. Set BLOCKFROST_API_KEY_{network.upper()} "
            "or BLOCKFROST_API_KEY, or add provider.blockfrost.api_key to config.yaml.",
            code="MISSING_ARGUMENT",
        )
    return key

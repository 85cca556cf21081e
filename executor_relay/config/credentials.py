"""Credential sources for signing transactions."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from solders.keypair import Keypair

from executor_relay.config.loader import ConfigError

DEFAULT_SOLANA_KEYPAIR = Path.home() / ".config" / "solana" / "id.json"


def _keypair_from_json(raw: str, *, source: str) -> Keypair:
    try:
        secret = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Keypair in {source} is not a JSON byte array") from exc
    if not isinstance(secret, list) or len(secret) != 64:
        raise ConfigError(f"Keypair in {source} must be a 64-element byte array")
    return Keypair.from_bytes(bytes(secret))


def load_solana_keypair(
    env_var: str = "PRIVATE_KEY_SOLANA",
    keypair_path: Optional[Path] = None,
) -> Keypair:
    """Load a Solana keypair from the environment or a keypair file.

    ``env_var`` may hold a JSON byte array or a base58 secret key. Otherwise
    ``keypair_path`` (or ``SOLANA_KEYPAIR_PATH``, or the CLI default) is read.
    """
    env_value = (os.getenv(env_var) or "").strip()
    if env_value:
        if env_value.startswith("["):
            return _keypair_from_json(env_value, source=env_var)
        try:
            return Keypair.from_base58_string(env_value)
        except ValueError as exc:
            raise ConfigError(f"{env_var} is neither a JSON byte array nor a base58 secret key") from exc

    path_env = (os.getenv("SOLANA_KEYPAIR_PATH") or "").strip()
    path = keypair_path or (Path(path_env).expanduser() if path_env else DEFAULT_SOLANA_KEYPAIR)
    if not path.is_file():
        raise ConfigError(f"No Solana keypair found: set {env_var} or provide {path}")
    return _keypair_from_json(path.read_text(encoding="utf-8"), source=str(path))


def load_evm_account(env_var: str = "PRIVATE_KEY_EVM") -> LocalAccount:
    """Load an EVM signing account from a hex private key in the environment."""
    private_key = (os.getenv(env_var) or "").strip()
    if not private_key:
        raise ConfigError(f"{env_var} environment variable not set")
    try:
        return Account.from_key(private_key)
    except (ValueError, TypeError) as exc:
        raise ConfigError(f"{env_var} is not a valid private key") from exc


__all__ = ["DEFAULT_SOLANA_KEYPAIR", "load_evm_account", "load_solana_keypair"]

"""Profile-driven configuration for Moove Money.

Settings come from a Movement CLI profile file (``.movement/config.yaml``)
plus a few environment overrides, and are handed to the orchestrator
explicitly.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from moove_money.batch import is_valid_address, normalize_address
from moove_money.errors import ConfigurationError
from moove_money.payload import COIN_TYPE

DEFAULT_CONFIG_PATH = Path(".movement") / "config.yaml"
DEFAULT_PROFILE = "default"
DEFAULT_EXPLORER_URL = "https://testnet.movementnetwork.xyz/txn"


@dataclass
class ProfileSettings:
    name: str
    account: str
    rest_url: str
    private_key: Optional[str] = None
    public_key: Optional[str] = None
    faucet_url: Optional[str] = None
    network: Optional[str] = None

    def validate(self) -> None:
        if not self.account or not is_valid_address(self.account):
            raise ConfigurationError(f"Profile '{self.name}' has no valid account address.")
        if not self.rest_url:
            raise ConfigurationError(f"Profile '{self.name}' has no rest_url.")


@dataclass
class DisbursementSettings:
    module_address: str
    coin_type: str = COIN_TYPE
    poll_interval: float = 1.0
    max_wait: float = 120.0
    preflight_workers: int = 8
    explorer_url: str = DEFAULT_EXPLORER_URL

    def validate(self) -> None:
        if not is_valid_address(self.module_address):
            raise ConfigurationError(f"Invalid module address: {self.module_address!r}")
        if not self.coin_type:
            raise ConfigurationError("Coin type must be configured.")
        if self.poll_interval <= 0:
            raise ConfigurationError("Poll interval must be positive.")
        if self.max_wait <= 0:
            raise ConfigurationError("Maximum settlement wait must be positive.")
        if self.preflight_workers <= 0:
            raise ConfigurationError("Preflight worker count must be positive.")


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    datefmt: str = "%Y-%m-%d %H:%M:%S"

    def validate(self) -> None:
        if not isinstance(logging.getLevelName(self.level.strip().upper()), int):
            raise ConfigurationError(f"Unknown logging level: {self.level!r}")
        if not self.format:
            raise ConfigurationError("Logging format must be provided.")


@dataclass
class Settings:
    profile: ProfileSettings
    disbursement: DisbursementSettings
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def validate(self) -> None:
        self.profile.validate()
        self.disbursement.validate()
        self.logging.validate()


def resolve_config_path(
    config_path: Optional[str | Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Path:
    env = os.environ if env is None else env
    if config_path:
        return Path(config_path)
    env_path = env.get("MOOVE_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_PATH


def read_profiles(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    profiles = data.get("profiles") if isinstance(data, dict) else None
    if not isinstance(profiles, dict) or not profiles:
        raise ConfigurationError(f"No profiles defined in {path}")
    return profiles


def profile_from_mapping(name: str, raw: Mapping[str, Any]) -> ProfileSettings:
    account = raw.get("account")
    return ProfileSettings(
        name=name,
        account=normalize_address(str(account)) if account else "",
        rest_url=str(raw.get("rest_url") or ""),
        private_key=raw.get("private_key"),
        public_key=raw.get("public_key"),
        faucet_url=raw.get("faucet_url"),
        network=raw.get("network"),
    )


def load_settings(
    config_path: Optional[str | Path] = None,
    profile: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build validated settings from the profile file and environment.

    The profile's own account doubles as the module address unless
    ``MOOVE_MODULE_ADDRESS`` says otherwise.
    """
    env = os.environ if env is None else env
    path = resolve_config_path(config_path, env)
    name = profile or env.get("MOOVE_PROFILE") or DEFAULT_PROFILE

    profiles = read_profiles(path)
    if name not in profiles:
        raise ConfigurationError(f"Profile '{name}' not found in {path}")
    profile_settings = profile_from_mapping(name, profiles[name] or {})

    if env.get("MOOVE_REST_URL"):
        profile_settings.rest_url = env["MOOVE_REST_URL"]

    disbursement = DisbursementSettings(
        module_address=normalize_address(
            env.get("MOOVE_MODULE_ADDRESS") or profile_settings.account or "0x"
        ),
    )
    if env.get("MOOVE_MAX_WAIT"):
        try:
            disbursement.max_wait = float(env["MOOVE_MAX_WAIT"])
        except ValueError as exc:
            raise ConfigurationError(f"Invalid MOOVE_MAX_WAIT: {env['MOOVE_MAX_WAIT']!r}") from exc

    logging_settings = LoggingSettings(level=env.get("MOOVE_LOG_LEVEL", "INFO"))

    settings = Settings(
        profile=profile_settings,
        disbursement=disbursement,
        logging=logging_settings,
    )
    settings.validate()
    return settings

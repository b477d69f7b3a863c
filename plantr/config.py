"""Configuration loading for plantr."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .records.record import PLANT_LOG_KIND, PLANT_POT_KIND


@dataclass
class IdentityConfig:
    owner_pubkey: str = ""  # hex identity of the human owner
    client: str = "plantr"


@dataclass
class RelayConfig:
    url: str = "wss://relay.samt.st"
    store_path: str = "~/.plantr/relay.db"
    query_timeout_seconds: float = 3.0


@dataclass
class SchemaConfig:
    """Which plant pot schema generation to read and write."""

    plant_pot_kind: int = PLANT_POT_KIND  # 34419 selects the later schema
    plant_log_kind: int = PLANT_LOG_KIND
    strict_validation: bool = True


@dataclass
class WeatherConfig:
    station_limit: int = 50


@dataclass
class Config:
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    schema: SchemaConfig = field(default_factory=SchemaConfig)
    weather: WeatherConfig = field(default_factory=WeatherConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with PLANTR_ prefix."""
    return os.environ.get(f"PLANTR_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Identity overrides
    if owner := _get_env("OWNER_PUBKEY"):
        config.identity.owner_pubkey = owner
    if client := _get_env("CLIENT"):
        config.identity.client = client

    # Relay overrides
    if url := _get_env("RELAY_URL"):
        config.relay.url = url
    if store_path := _get_env("RELAY_STORE_PATH"):
        config.relay.store_path = store_path
    if timeout := _get_env("QUERY_TIMEOUT"):
        config.relay.query_timeout_seconds = float(timeout)

    # Schema overrides
    if kind := _get_env("PLANT_POT_KIND"):
        config.schema.plant_pot_kind = int(kind)
    if strict := _get_env("STRICT_VALIDATION"):
        config.schema.strict_validation = _is_true(strict)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse identity config
            if "identity" in data:
                identity_data = data["identity"]
                config.identity = IdentityConfig(
                    owner_pubkey=identity_data.get("owner_pubkey", config.identity.owner_pubkey),
                    client=identity_data.get("client", config.identity.client),
                )

            # Parse relay config
            if "relay" in data:
                relay_data = data["relay"]
                config.relay = RelayConfig(
                    url=relay_data.get("url", config.relay.url),
                    store_path=relay_data.get("store_path", config.relay.store_path),
                    query_timeout_seconds=float(
                        relay_data.get(
                            "query_timeout_seconds", config.relay.query_timeout_seconds
                        )
                    ),
                )

            # Parse schema config
            if "schema" in data:
                schema_data = data["schema"]
                config.schema = SchemaConfig(
                    plant_pot_kind=int(
                        schema_data.get("plant_pot_kind", config.schema.plant_pot_kind)
                    ),
                    plant_log_kind=int(
                        schema_data.get("plant_log_kind", config.schema.plant_log_kind)
                    ),
                    strict_validation=schema_data.get(
                        "strict_validation", config.schema.strict_validation
                    ),
                )

            # Parse weather config
            if "weather" in data:
                config.weather = WeatherConfig(
                    station_limit=data["weather"].get(
                        "station_limit", config.weather.station_limit
                    )
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config

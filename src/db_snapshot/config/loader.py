"""TOML configuration loading for db-snapshot."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from db_snapshot.config.models import (
    DatabaseConfig,
    DatabaseProfile,
    IntegrityRules,
    RetentionPolicy,
    SnapshotSettings,
)


def load_db_config(config_path: Path | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to db.toml (default: ``db.toml`` in the current
            working directory)

    Returns:
        DatabaseConfig with profiles and snapshot/retention/integrity settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / "db.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Copy db.toml.example to db.toml and configure your profiles."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        # Parse profiles
        profiles = {}
        for name, profile_data in data.get("profiles", {}).items():
            profiles[name] = DatabaseProfile(**profile_data)

        return DatabaseConfig(
            profiles=profiles,
            snapshots=SnapshotSettings(**data.get("snapshots", {})),
            retention=RetentionPolicy(**data.get("retention", {})),
            integrity=IntegrityRules(**data.get("integrity", {})),
        )
    except ValidationError as e:
        raise ValueError(f"Invalid configuration in {config_path}:\n{e}") from e

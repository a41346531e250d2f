"""Database connection and engine factory.

Supports two configuration modes:
1. Profile mode (db.toml + .db-profile): named connection profiles plus
   snapshot, retention, and integrity settings
2. Direct mode ({prefix}DATABASE_URL or an explicit URL): a single
   database with default settings (db.toml settings still apply if present)
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from db_snapshot.adapters.postgres import AsyncPostgresAdapter
from db_snapshot.config.loader import load_db_config
from db_snapshot.config.models import ConnectionResult, DatabaseConfig, DatabaseProfile
from db_snapshot.engine import SnapshotEngine
from db_snapshot.errors import SchemaIntrospectionError
from db_snapshot.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)

# Profile lock file path
_PROFILE_LOCK_FILE = Path.cwd() / ".db-profile"


# ============================================================================
# Profile Lock File Operations
# ============================================================================


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip()
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file.

    Only call this after a successful connection check.

    Args:
        profile_name: Name of verified profile
    """
    _PROFILE_LOCK_FILE.write_text(profile_name)


def clear_profile_lock() -> None:
    """Remove profile lock file."""
    if _PROFILE_LOCK_FILE.exists():
        _PROFILE_LOCK_FILE.unlink()


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Priority:
    1. {env_prefix}DB_PROFILE env var (for initial connect or CI/CD)
    2. .db-profile file (verified profile from previous connect)
    3. Raise ProfileNotFoundError

    Args:
        env_prefix: Prefix for the profile env var (e.g. ``"APP_"`` reads
            ``APP_DB_PROFILE``).

    Returns:
        Profile name

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_var = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(env_var)
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Run: {env_var}=<name> db-snapshot connect\n"
        f"or set {env_prefix}DATABASE_URL."
    )


# ============================================================================
# URL Resolution
# ============================================================================


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def _load_config_or_default(config_path: Path | None) -> DatabaseConfig:
    """db.toml if present, otherwise built-in defaults."""
    # An explicitly named config must exist
    if config_path is None and not (Path.cwd() / "db.toml").exists():
        return DatabaseConfig()
    return load_db_config(config_path)


def resolve_database_url(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    config: DatabaseConfig | None = None,
) -> str:
    """Pick the connection URL.

    Priority:
    1. Explicit ``database_url``
    2. Explicit ``profile_name`` from db.toml
    3. {env_prefix}DATABASE_URL env var
    4. Active profile ({env_prefix}DB_PROFILE or .db-profile)

    Raises:
        ProfileNotFoundError: If nothing is configured
        KeyError: If the named profile is not in db.toml
    """
    if database_url:
        return database_url

    config = config or _load_config_or_default(None)

    if profile_name is None:
        env_url = os.environ.get(f"{env_prefix}DATABASE_URL")
        if env_url:
            return env_url
        profile_name = get_active_profile_name(env_prefix)

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise KeyError(f"Profile '{profile_name}' not found. Available: {available}")

    return resolve_url(config.profiles[profile_name])


# ============================================================================
# Connection Check
# ============================================================================


async def connect_and_validate(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
    validate_only: bool = False,
) -> ConnectionResult:
    """Connect to a profile's database and verify its catalog is readable.

    On success the profile is written to the ``.db-profile`` lock file
    (unless ``validate_only``), so later commands use it by default.

    Example:
        >>> result = await connect_and_validate("local")
        >>> if result.success:
        ...     print(f"Connected to {result.profile_name}: {result.table_count} tables")
    """
    if profile_name is None:
        try:
            profile_name = get_active_profile_name(env_prefix)
        except ProfileNotFoundError as e:
            return ConnectionResult(success=False, error=str(e))

    try:
        config = load_db_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        return ConnectionResult(success=False, error=str(e))

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys())
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Profile '{profile_name}' not found. Available: {available}",
        )

    url = resolve_url(config.profiles[profile_name])
    try:
        async with SchemaIntrospector(
            url,
            schema_name=config.snapshots.schema_name,
            excluded_tables=_excluded(config),
        ) as introspector:
            await introspector.test_connection()
            tables = await introspector.list_tables()
    except (ConnectionError, SchemaIntrospectionError) as e:
        return ConnectionResult(
            success=False,
            profile_name=profile_name,
            error=f"Failed to connect to database: {e}",
        )

    if not validate_only:
        write_profile_lock(profile_name)
    logger.info("Connected to profile '%s' (%d tables)", profile_name, len(tables))

    return ConnectionResult(success=True, profile_name=profile_name, table_count=len(tables))


# ============================================================================
# Adapter and Engine Factory
# ============================================================================


def _excluded(config: DatabaseConfig) -> set[str] | None:
    excluded = config.snapshots.excluded_tables
    return set(excluded) if excluded is not None else None


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    config_path: Path | None = None,
) -> AsyncPostgresAdapter:
    """Create an async adapter for the selected database.

    Raises:
        ProfileNotFoundError: If no database configuration found
    """
    config = _load_config_or_default(config_path)
    url = resolve_database_url(profile_name, env_prefix, database_url, config)
    return AsyncPostgresAdapter(
        url,
        disable_triggers=config.snapshots.disable_triggers,
        insert_batch_size=config.snapshots.insert_batch_size,
    )


async def build_engine(
    profile_name: str | None = None,
    env_prefix: str = "",
    database_url: str | None = None,
    config_path: Path | None = None,
) -> SnapshotEngine:
    """Build a ``SnapshotEngine`` for the selected database.

    The returned engine must be entered (``async with engine:``) to open
    its catalog connection; leaving the block closes both connections.

    Raises:
        ProfileNotFoundError: If no database configuration found
    """
    config = _load_config_or_default(config_path)
    url = resolve_database_url(profile_name, env_prefix, database_url, config)
    settings = config.snapshots

    adapter = AsyncPostgresAdapter(
        url,
        disable_triggers=settings.disable_triggers,
        insert_batch_size=settings.insert_batch_size,
    )
    introspector = SchemaIntrospector(
        url,
        schema_name=settings.schema_name,
        excluded_tables=_excluded(config),
    )
    return SnapshotEngine(
        adapter,
        introspector,
        settings.directory,
        target_key=url,
        settings=settings,
        retention=config.retention,
        integrity_rules=config.integrity,
    )

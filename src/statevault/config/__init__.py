"""Configuration module for statevault.

Configuration is stored in ~/.statevault/config.yaml (or $STATEVAULT_HOME).

Usage:
    from statevault.config import load_config_or_default

    config = load_config_or_default()
    chunk_size = config.storage.chunk_size
"""

from statevault.config.loader import (
    config_exists,
    create_default_config,
    ensure_config_dir,
    get_data_dir,
    load_config,
    load_config_or_default,
)
from statevault.config.models import (
    AutoSaveConfig,
    MigrationConfig,
    SnapshotConfig,
    StateVaultConfig,
    StorageConfig,
    get_config_dir,
    get_default_config,
)

__all__ = [
    # Models
    "AutoSaveConfig",
    "MigrationConfig",
    "SnapshotConfig",
    "StateVaultConfig",
    "StorageConfig",
    # Functions
    "config_exists",
    "create_default_config",
    "ensure_config_dir",
    "get_config_dir",
    "get_data_dir",
    "get_default_config",
    "load_config",
    "load_config_or_default",
]

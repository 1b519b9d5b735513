"""Configuration loading and management for statevault.

Functions:
    load_config: Load configuration from <home>/config.yaml
    create_default_config: Write a default config.yaml
    ensure_config_dir: Ensure the home directory and its subdirectories exist
    config_exists: Check whether config.yaml exists
    get_data_dir: Resolve the file backend directory for a configuration
"""

from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError
import yaml

from statevault.config.models import (
    StateVaultConfig,
    get_config_dir,
    get_default_config,
)
from statevault.core.errors import ConfigError


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure the configuration directory exists.

    Creates the directory plus its data/ and logs/ subdirectories.

    Args:
        config_dir: Directory to create. Defaults to get_config_dir().

    Returns:
        Path to the configuration directory.
    """
    if config_dir is None:
        config_dir = get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "data").mkdir(exist_ok=True)
    (config_dir / "logs").mkdir(exist_ok=True)
    return config_dir


def _model_to_yaml_dict(model: StateVaultConfig) -> dict[str, Any]:
    return model.model_dump(mode="json")


def create_default_config(
    config_dir: Path | None = None,
    *,
    overwrite: bool = False,
) -> Path:
    """Create a default config.yaml.

    Args:
        config_dir: Directory to create the file in. Defaults to the home dir.
        overwrite: If True, overwrite an existing file.

    Returns:
        Path of the written config file.

    Raises:
        ConfigError: If the file exists and overwrite=False.
    """
    config_dir = ensure_config_dir(config_dir)
    config_path = config_dir / "config.yaml"

    if config_path.exists() and not overwrite:
        raise ConfigError(
            f"Configuration file already exists: {config_path}",
            config_file=str(config_path),
        )

    with config_path.open("w", encoding="utf-8") as f:
        yaml.safe_dump(
            _model_to_yaml_dict(get_default_config()),
            f,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

    return config_path


def load_config(config_path: Path | None = None) -> StateVaultConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to config file. Defaults to <home>/config.yaml.

    Returns:
        Validated StateVaultConfig instance.

    Raises:
        ConfigError: If the file doesn't exist, is malformed, or fails validation.
    """
    if config_path is None:
        config_path = get_config_dir() / "config.yaml"

    if not config_path.exists():
        raise ConfigError(
            f"Configuration file not found: {config_path}. "
            "Run `statevault config init` to create default configuration.",
            config_file=str(config_path),
        )

    try:
        with config_path.open(encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse configuration file: {e}",
            config_file=str(config_path),
            details={"yaml_error": str(e)},
        ) from e

    if config_dict is None:
        config_dict = {}

    try:
        return StateVaultConfig.model_validate(config_dict)
    except PydanticValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            error_messages.append(f"  - {loc}: {error['msg']}")

        raise ConfigError(
            "Configuration validation failed:\n" + "\n".join(error_messages),
            config_file=str(config_path),
            details={"validation_errors": e.errors()},
        ) from e


def load_config_or_default(config_path: Path | None = None) -> StateVaultConfig:
    """Load configuration, falling back to defaults when no file exists.

    Malformed files still raise ConfigError.
    """
    if config_path is None:
        config_path = get_config_dir() / "config.yaml"
    if not config_path.exists():
        return get_default_config()
    return load_config(config_path)


def config_exists(config_dir: Path | None = None) -> bool:
    """Check whether config.yaml exists in the given or default directory."""
    if config_dir is None:
        config_dir = get_config_dir()
    return (config_dir / "config.yaml").exists()


def get_data_dir(config: StateVaultConfig, config_dir: Path | None = None) -> Path:
    """Resolve the file backend directory for a configuration.

    Relative data_dir values are resolved against the config directory.
    """
    data_dir = Path(config.storage.data_dir).expanduser()
    if data_dir.is_absolute():
        return data_dir
    return (config_dir or get_config_dir()) / data_dir

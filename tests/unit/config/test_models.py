"""Unit tests for statevault.config.models module."""

from pathlib import Path

from pydantic import ValidationError as PydanticValidationError
import pytest

from statevault.config.models import (
    DEFAULT_SIGNIFICANT_SOURCES,
    AutoSaveConfig,
    MigrationConfig,
    SnapshotConfig,
    StateVaultConfig,
    StorageConfig,
    get_config_dir,
    get_default_config,
)


class TestStorageConfig:
    """Test StorageConfig model."""

    def test_defaults(self) -> None:
        """StorageConfig has sensible defaults."""
        config = StorageConfig()
        assert config.prefix == "statevault_"
        assert config.chunk_size == 1024 * 1024
        assert config.max_backups == 5
        assert config.compression_enabled is True
        assert config.current_version == "1.0.0"

    def test_chunk_size_minimum(self) -> None:
        """Tiny chunk sizes are rejected."""
        with pytest.raises(PydanticValidationError):
            StorageConfig(chunk_size=4)

    @pytest.mark.parametrize("version", ["1", "1.0.2", "2.10.0-beta.1"])
    def test_valid_versions(self, version: str) -> None:
        """Dotted numeric versions are accepted."""
        assert StorageConfig(current_version=version).current_version == version

    @pytest.mark.parametrize("version", ["", "v1.0", "one.two"])
    def test_invalid_versions(self, version: str) -> None:
        """Non-numeric versions are rejected."""
        with pytest.raises(PydanticValidationError):
            StorageConfig(current_version=version)

    def test_frozen(self) -> None:
        """StorageConfig is immutable."""
        config = StorageConfig()
        with pytest.raises(PydanticValidationError):
            config.prefix = "x"  # type: ignore[misc]


class TestOtherSections:
    """Test migration, snapshot and auto-save sections."""

    def test_migration_defaults(self) -> None:
        """MigrationConfig enables safety features by default."""
        config = MigrationConfig()
        assert config.enable_rollback and config.create_backup
        assert config.max_history == 100
        assert config.register_builtin is False

    def test_snapshot_capacity_positive(self) -> None:
        """SnapshotConfig requires room for at least one snapshot."""
        assert SnapshotConfig().max_snapshots == 10
        with pytest.raises(PydanticValidationError):
            SnapshotConfig(max_snapshots=0)

    def test_auto_save_defaults(self) -> None:
        """AutoSaveConfig mirrors the default trigger policy."""
        config = AutoSaveConfig()
        assert config.interval == 30.0
        assert config.max_unsaved_changes == 100
        assert config.significant_sources == DEFAULT_SIGNIFICANT_SOURCES
        assert "realm:breakthrough" in config.significant_sources

    def test_auto_save_interval_positive(self) -> None:
        """A zero interval is rejected."""
        with pytest.raises(PydanticValidationError):
            AutoSaveConfig(interval=0)


class TestStateVaultConfig:
    """Test the top-level configuration."""

    def test_default_config(self) -> None:
        """get_default_config() builds every section."""
        config = get_default_config()
        assert config.slot == "main"
        assert isinstance(config.storage, StorageConfig)
        assert isinstance(config.auto_save, AutoSaveConfig)

    @pytest.mark.parametrize("slot", ["main_chunk_0", "a_backup_1", "main_emergency"])
    def test_reserved_slot_names_rejected(self, slot: str) -> None:
        """Slot names may not contain derived-key markers."""
        with pytest.raises(PydanticValidationError):
            StateVaultConfig(slot=slot)

    def test_nested_dict_validation(self) -> None:
        """Nested sections validate from plain dicts."""
        config = StateVaultConfig.model_validate(
            {"slot": "profile2", "storage": {"chunk_size": 4096}}
        )
        assert config.slot == "profile2"
        assert config.storage.chunk_size == 4096


class TestGetConfigDir:
    """Test home directory resolution."""

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        """STATEVAULT_HOME overrides the default location."""
        monkeypatch.setenv("STATEVAULT_HOME", str(tmp_path))
        assert get_config_dir() == tmp_path

    def test_default_location(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without the env var the home directory is used."""
        monkeypatch.delenv("STATEVAULT_HOME", raising=False)
        assert get_config_dir() == Path.home() / ".statevault"

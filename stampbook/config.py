"""
Configuration management for stampbook.

The configuration is stored as a TOML file in the home directory
(STAMPBOOK_HOME, default ~/.stampbook). It names the remote project,
sync bounds and the extraction provider. API keys and tokens are never
written to it; they come from the environment or the session file.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import tomli_w

from .firestore import DEFAULT_DATABASE, FIRESTORE_API_URL
from .remote import BATCH_MAX_OPS, LOAD_TIMEOUT, SAVE_TIMEOUT
from .store import DEBOUNCE_SECONDS
from .extraction import DEFAULT_MODEL


CONFIG_FILENAME = "stampbook.toml"
CONFIG_VERSION = 1

LOCAL_CACHE_FILENAME = "local.db"
SESSION_FILENAME = "session.json"


def get_home_directory() -> Path:
    """stampbook home: STAMPBOOK_HOME or ~/.stampbook."""
    home = os.environ.get("STAMPBOOK_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".stampbook"


@dataclass
class RemoteConfig:
    """Remote collection location. Empty project_id means local-only."""
    project_id: str = ""
    database: str = DEFAULT_DATABASE
    api_url: str = FIRESTORE_API_URL

    @property
    def enabled(self) -> bool:
        return bool(self.project_id)


@dataclass
class SyncConfig:
    """Bounds for remote work."""
    load_timeout: float = LOAD_TIMEOUT
    save_timeout: float = SAVE_TIMEOUT
    batch_size: int = BATCH_MAX_OPS
    debounce_seconds: float = DEBOUNCE_SECONDS


@dataclass
class ExtractionConfig:
    """Which extractor to use for passport photos."""
    provider: str = "gemini"
    model: str = DEFAULT_MODEL


@dataclass
class StampConfig:
    """Complete stampbook configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)

    @property
    def config_path(self) -> Path:
        """stampbook.toml inside the home directory."""
        return self.path / CONFIG_FILENAME

    @property
    def local_cache_path(self) -> Path:
        return self.path / LOCAL_CACHE_FILENAME

    @property
    def session_path(self) -> Path:
        return self.path / SESSION_FILENAME


def _apply_env(config: StampConfig) -> StampConfig:
    """Environment overrides (not persisted)."""
    project = os.environ.get("STAMPBOOK_FIREBASE_PROJECT_ID")
    if project:
        config.remote.project_id = project
    return config


def load_config(path: Path) -> StampConfig:
    """
    Load configuration from a home directory.

    Raises:
        FileNotFoundError: no stampbook.toml in `path`
        ValueError: unreadable values, out-of-range batch size, or a
            config written by a newer version
    """
    config_path = path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    remote = data.get("remote", {})
    sync = data.get("sync", {})
    extraction = data.get("extraction", {})
    try:
        config = StampConfig(
            path=path,
            version=version,
            created=data.get("store", {}).get("created", ""),
            remote=RemoteConfig(
                project_id=str(remote.get("project_id", "")),
                database=str(remote.get("database", DEFAULT_DATABASE)),
                api_url=str(remote.get("api_url", FIRESTORE_API_URL)),
            ),
            sync=SyncConfig(
                load_timeout=float(sync.get("load_timeout", LOAD_TIMEOUT)),
                save_timeout=float(sync.get("save_timeout", SAVE_TIMEOUT)),
                batch_size=int(sync.get("batch_size", BATCH_MAX_OPS)),
                debounce_seconds=float(sync.get("debounce_seconds", DEBOUNCE_SECONDS)),
            ),
            extraction=ExtractionConfig(
                provider=str(extraction.get("provider", "gemini")),
                model=str(extraction.get("model", DEFAULT_MODEL)),
            ),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid config {config_path}: {e}") from e

    if config.sync.batch_size < 1 or config.sync.batch_size > 500:
        raise ValueError(f"sync.batch_size must be 1-500, got {config.sync.batch_size}")
    return _apply_env(config)


def save_config(config: StampConfig) -> None:
    """
    Write stampbook.toml, creating the home directory as needed.

    Environment overrides are not written back.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "remote": {
            "project_id": config.remote.project_id,
            "database": config.remote.database,
            "api_url": config.remote.api_url,
        },
        "sync": {
            "load_timeout": config.sync.load_timeout,
            "save_timeout": config.sync.save_timeout,
            "batch_size": config.sync.batch_size,
            "debounce_seconds": config.sync.debounce_seconds,
        },
        "extraction": {
            "provider": config.extraction.provider,
            "model": config.extraction.model,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(path: Path) -> StampConfig:
    """
    Config for a home directory, writing defaults on first use.

    Used by every CLI command; environment overrides apply either way.
    """
    if (path / CONFIG_FILENAME).exists():
        return load_config(path)
    config = StampConfig(path=path)
    save_config(config)
    return _apply_env(config)

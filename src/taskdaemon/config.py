"""Configuration system for taskdaemon."""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any

import tomlkit
from tomlkit.exceptions import TOMLKitError

from taskdaemon.errors import ConfigurationError

DEFAULT_MAX_LOG_SIZE = 5 * 1024 * 1024  # 5MB

# camelCase spellings accepted by DaemonConfig.from_mapping
_DAEMON_KEY_ALIASES = {
    "pidFile": "pid_file",
    "logPath": "log_path",
    "maxWorkerCount": "max_worker_count",
    "scanInterval": "scan_interval",
    "maxLogSize": "max_log_size",
}


@dataclass(frozen=True)
class DaemonConfig:
    """Supervisor settings, fixed for the lifetime of the daemon.

    pid_file and log_path default to None so a half-filled config can still be
    constructed; Daemon.run() refuses to start until both are set.
    """

    pid_file: Path | None = None
    log_path: Path | None = None
    max_worker_count: int = 1  # Concurrent worker processes
    scan_interval: float = 10  # Seconds between polls
    max_log_size: int = DEFAULT_MAX_LOG_SIZE  # Rotate log files at this size

    def __post_init__(self) -> None:
        # Anchored to the launch directory: the daemon chdirs to / after forking
        if self.pid_file is not None:
            object.__setattr__(self, "pid_file", Path(self.pid_file).expanduser().absolute())
        if self.log_path is not None:
            object.__setattr__(self, "log_path", Path(self.log_path).expanduser().absolute())

        if isinstance(self.max_worker_count, bool) or not isinstance(self.max_worker_count, int):
            raise ConfigurationError(
                f"max_worker_count must be an integer, got {self.max_worker_count!r}"
            )
        if self.max_worker_count < 1:
            raise ConfigurationError(f"max_worker_count must be >= 1, got {self.max_worker_count}")
        if isinstance(self.scan_interval, bool) or not isinstance(self.scan_interval, (int, float)):
            raise ConfigurationError(f"scan_interval must be a number, got {self.scan_interval!r}")
        if self.scan_interval < 0:
            raise ConfigurationError(f"scan_interval must be >= 0, got {self.scan_interval}")
        if isinstance(self.max_log_size, bool) or not isinstance(self.max_log_size, int):
            raise ConfigurationError(f"max_log_size must be an integer, got {self.max_log_size!r}")
        if self.max_log_size <= 0:
            raise ConfigurationError(f"max_log_size must be > 0, got {self.max_log_size}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DaemonConfig":
        """Build a config from a key/value mapping.

        Accepts snake_case names and their camelCase aliases. Unknown keys are
        rejected rather than ignored.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        unknown = []
        for key, value in data.items():
            name = _DAEMON_KEY_ALIASES.get(key, key)
            if name not in known:
                unknown.append(key)
                continue
            if name in kwargs:
                raise ConfigurationError(f"Duplicate configuration key: {key!r}")
            kwargs[name] = value
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {sorted(unknown)}")
        return cls(**kwargs)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database accessor settings."""

    path: str | None = None  # sqlite database file, None disables Daemon.db
    timeout: float = 5.0  # Seconds to wait on a locked database

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DatabaseConfig":
        """Build a config from a key/value mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown database configuration keys: {unknown}")
        return cls(**dict(data))


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table, skipping unset values."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if value is None:
            continue
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        elif isinstance(value, Path):
            table.add(f.name, str(value))
        else:
            table.add(f.name, value)
    return table


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)

    @staticmethod
    def default_path() -> Path:
        """Default config file location."""
        return Path.home() / ".config" / "taskdaemon" / "config.toml"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.default_path()
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("daemon", "database"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions.

        Raises:
            ConfigurationError: If the file can't be parsed or holds unknown keys.
        """
        path = path or cls.default_path()
        if not path.exists():
            return cls()

        try:
            with open(path) as f:
                data = tomlkit.load(f).unwrap()
        except TOMLKitError as e:
            raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e

        unknown = sorted(set(data) - {"daemon", "database"})
        if unknown:
            raise ConfigurationError(f"Unknown sections in {path}: {unknown}")

        return cls(
            daemon=DaemonConfig.from_mapping(data.get("daemon", {})),
            database=DatabaseConfig.from_mapping(data.get("database", {})),
        )

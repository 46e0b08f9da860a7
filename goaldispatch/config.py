"""
Configuration management for goaldispatch.

Loads and validates $GOALDISPATCH_HOME/config.yaml (default
~/.config/goaldispatch/config.yaml):

    name: "@acme/delivery"
    version: "1.0.0"
    cache:
      enabled: true
      path: /opt/data
    signing:
      enabled: true
      signing_key: {name: acme.com/sdm, private_key_path: keys/sdm.pem, passphrase: ...}
      verification_keys:
        - {name: acme.com/sdm, public_key_path: keys/sdm-public.pem}
    scheduler:
      namespace: sdm
    logging:
      level: INFO
      format: pretty

Key material may be given inline (private_key / public_key, PEM text) or as
paths; relative paths resolve against the config file's directory.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from goaldispatch.errors import ConfigError


def get_goaldispatch_home() -> Path:
    """Directory holding config.yaml; GOALDISPATCH_HOME overrides the default."""
    home = os.environ.get("GOALDISPATCH_HOME")
    if home:
        return Path(home)
    return Path("~/.config/goaldispatch").expanduser()


@dataclass(frozen=True)
class CacheConfig:
    """
    Goal cache settings.

    Attributes:
        enabled: Global cache switch; when off, only cache-miss fallbacks run
        path: Root directory of the file-system cache backend; unset means
            the no-op backend
        max_age_hours: Entries older than this are pruned
    """
    enabled: bool = False
    path: Optional[str] = None
    max_age_hours: float = 2.0


@dataclass(frozen=True)
class GoalSigningKey:
    """Private key used to sign goals (PEM, optionally passphrase protected)."""
    name: str
    private_key: str
    passphrase: Optional[str] = None


@dataclass(frozen=True)
class GoalVerificationKey:
    """Public key trusted to verify goal signatures."""
    name: str
    public_key: str


@dataclass(frozen=True)
class GoalSigningConfig:
    """
    Goal signing settings.

    Several verification keys may be trusted at once so keys can be rotated
    without rejecting goals signed with the previous key.
    """
    enabled: bool = False
    signing_key: Optional[GoalSigningKey] = None
    verification_keys: tuple[GoalVerificationKey, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Isolated goal scheduling settings.

    Attributes:
        namespace: Namespace Jobs are created in (defaults to the pod's own)
        pod_name: Name of the running pod (defaults to $HOSTNAME)
    """
    namespace: Optional[str] = None
    pod_name: Optional[str] = None


@dataclass(frozen=True)
class LoggingConfig:
    """Logging settings, consumed by goaldispatch.utils.setup_logging."""
    level: str = "INFO"
    format: str = "pretty"
    console: bool = True
    file: Optional[str] = None


@dataclass(frozen=True)
class DispatchConfig:
    """Complete dispatcher configuration."""
    name: str = "goaldispatch"
    version: str = "0.0.0"
    cache: CacheConfig = field(default_factory=CacheConfig)
    signing: GoalSigningConfig = field(default_factory=GoalSigningConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base_dir: Optional[Path] = None) -> "DispatchConfig":
        """
        Build a config from parsed YAML.

        Args:
            data: Parsed YAML mapping
            base_dir: Directory used to resolve relative key paths

        Raises:
            ConfigError: If a section is malformed
        """
        base_dir = base_dir or Path.cwd()
        cache = _section(data, "cache")
        signing = _section(data, "signing")
        scheduler = _section(data, "scheduler")
        log = _section(data, "logging")

        log_format = log.get("format", "pretty")
        if log_format not in ("pretty", "structured"):
            raise ConfigError(f"logging.format must be 'pretty' or 'structured', got '{log_format}'")

        return cls(
            name=str(data.get("name", "goaldispatch")),
            version=str(data.get("version", "0.0.0")),
            cache=CacheConfig(
                enabled=bool(cache.get("enabled", False)),
                path=str(cache["path"]) if cache.get("path") else None,
                max_age_hours=float(cache.get("max_age_hours", 2.0)),
            ),
            signing=_signing_from_dict(signing, base_dir),
            scheduler=SchedulerConfig(
                namespace=scheduler.get("namespace"),
                pod_name=scheduler.get("pod_name"),
            ),
            logging=LoggingConfig(
                level=str(log.get("level", "INFO")).upper(),
                format=log_format,
                console=bool(log.get("console", True)),
                file=log.get("file"),
            ),
        )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(value).__name__}")
    return value


def _read_key(data: dict[str, Any], inline_key: str, base_dir: Path, owner: str) -> str:
    """Inline PEM wins over <inline_key>_path."""
    if data.get(inline_key):
        return str(data[inline_key])
    path_value = data.get(f"{inline_key}_path")
    if not path_value:
        raise ConfigError(f"{owner}: one of '{inline_key}' or '{inline_key}_path' is required")
    path = Path(path_value).expanduser()
    if not path.is_absolute():
        path = base_dir / path
    if not path.exists():
        raise ConfigError(f"{owner}: key file does not exist: {path}")
    return path.read_text()


def _signing_from_dict(data: dict[str, Any], base_dir: Path) -> GoalSigningConfig:
    enabled = bool(data.get("enabled", False))

    signing_key = None
    key_data = data.get("signing_key")
    if key_data:
        if "name" not in key_data:
            raise ConfigError("signing.signing_key: 'name' is required")
        signing_key = GoalSigningKey(
            name=key_data["name"],
            private_key=_read_key(key_data, "private_key", base_dir, "signing.signing_key"),
            passphrase=key_data.get("passphrase"),
        )

    verification_keys = []
    for i, vk in enumerate(data.get("verification_keys") or []):
        owner = f"signing.verification_keys[{i}]"
        if "name" not in vk:
            raise ConfigError(f"{owner}: 'name' is required")
        verification_keys.append(GoalVerificationKey(
            name=vk["name"],
            public_key=_read_key(vk, "public_key", base_dir, owner),
        ))

    if enabled and not verification_keys:
        raise ConfigError("signing is enabled but no verification_keys are configured")

    return GoalSigningConfig(
        enabled=enabled,
        signing_key=signing_key,
        verification_keys=tuple(verification_keys),
    )


def load_config(config_path: Optional[Path] = None) -> DispatchConfig:
    """
    Load dispatcher configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to $GOALDISPATCH_HOME/config.yaml

    Returns:
        DispatchConfig instance

    Raises:
        FileNotFoundError: If the config file is missing
        ConfigError: If the config is invalid
    """
    if config_path is None:
        config_path = get_goaldispatch_home() / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"goaldispatch config.yaml not found at {config_path}")

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}") from e

    if not data:
        raise ConfigError("Configuration file is empty")
    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    return DispatchConfig.from_dict(data, base_dir=config_path.parent)

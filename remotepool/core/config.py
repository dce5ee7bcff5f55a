"""
Configuration management for remotepool.

Handles loading config from ~/.remotepool/config.yaml and providing
default values for all settings. Everything here has a sensible default,
so a missing config file is not an error.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


# Default paths
DEFAULT_BASE_DIR = Path.home() / ".remotepool"
DEFAULT_CONFIG_FILE = DEFAULT_BASE_DIR / "config.yaml"
DEFAULT_LOG_DIR = DEFAULT_BASE_DIR / "logs"


@dataclass
class PoolConfig:
    """Host pool defaults (can be overridden per connect() call)."""

    size: int = 2
    timeout: int = 600


@dataclass
class ConnectionConfig:
    """Connection and retry defaults shared by SSH and WinRM."""

    retries: int = 8
    keepalive_interval: int = 300
    connect_timeout: int = 30
    probe_timeout: float = 1.0


@dataclass
class WinRMConfig:
    """WinRM transport settings."""

    auth: str = "negotiate"
    ssl: bool = False
    cert_validation: bool = False
    elevated_timeout: int = 300


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    file: Optional[Path] = None


@dataclass
class Config:
    """Main configuration container."""

    base_dir: Path = DEFAULT_BASE_DIR
    config_file: Path = DEFAULT_CONFIG_FILE
    log_dir: Path = DEFAULT_LOG_DIR

    pool: PoolConfig = field(default_factory=PoolConfig)
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    winrm: WinRMConfig = field(default_factory=WinRMConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config file. If None, uses default location.
                         Can also be set via REMOTEPOOL_CONFIG env var.

        Returns:
            Config instance with values from file merged with defaults.
        """
        if config_path is None:
            config_path = Path(
                os.environ.get("REMOTEPOOL_CONFIG", str(DEFAULT_CONFIG_FILE))
            )

        config = cls()
        config.config_file = config_path

        # If config file doesn't exist, return defaults
        if not config_path.exists():
            return config

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid config YAML: {e}")

        if not isinstance(data, dict):
            raise ValueError(f"Invalid config YAML: expected a mapping in {config_path}")

        if "pool" in data:
            pool_data = data["pool"] or {}
            config.pool = PoolConfig(
                size=int(pool_data.get("size", 2)),
                timeout=int(pool_data.get("timeout", 600)),
            )

        if "connection" in data:
            conn_data = data["connection"] or {}
            config.connection = ConnectionConfig(
                retries=int(conn_data.get("retries", 8)),
                keepalive_interval=int(conn_data.get("keepalive_interval", 300)),
                connect_timeout=int(conn_data.get("connect_timeout", 30)),
                probe_timeout=float(conn_data.get("probe_timeout", 1.0)),
            )

        if "winrm" in data:
            winrm_data = data["winrm"] or {}
            config.winrm = WinRMConfig(
                auth=winrm_data.get("auth", "negotiate"),
                ssl=bool(winrm_data.get("ssl", False)),
                cert_validation=bool(winrm_data.get("cert_validation", False)),
                elevated_timeout=int(winrm_data.get("elevated_timeout", 300)),
            )

        if "logging" in data:
            log_data = data["logging"] or {}
            log_file = log_data.get("file")
            config.logging = LoggingConfig(
                level=log_data.get("level", "INFO"),
                file=Path(log_file).expanduser() if log_file else None,
            )

        return config

    def ensure_directories(self):
        """Create required directories if they don't exist."""
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def save_default_config(self):
        """Save a default config file if one doesn't exist."""
        if self.config_file.exists():
            return

        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        default_config = f"""\
# remotepool configuration

# =============================================================================
# Host pools
# =============================================================================

pool:
  size: {self.pool.size}               # Connections per host pool
  timeout: {self.pool.timeout}          # Seconds before an idle pool expires

# =============================================================================
# Connections
# =============================================================================

connection:
  retries: {self.connection.retries}             # Retries for auth / closed-stream failures
  keepalive_interval: {self.connection.keepalive_interval}  # SSH keepalive in seconds
  connect_timeout: {self.connection.connect_timeout}     # Session open timeout in seconds
  probe_timeout: {self.connection.probe_timeout}     # Port probe timeout in seconds

winrm:
  auth: {self.winrm.auth}         # negotiate, ntlm, kerberos, basic, credssp
  ssl: {str(self.winrm.ssl).lower()}
  cert_validation: {str(self.winrm.cert_validation).lower()}
  elevated_timeout: {self.winrm.elevated_timeout}

# =============================================================================
# Logging
# =============================================================================

logging:
  level: {self.logging.level}              # DEBUG, INFO, WARNING, ERROR
  file: {self.log_dir / 'remotepool.log'}
"""

        with open(self.config_file, "w") as f:
            f.write(default_config)


# Singleton instance
_config: Optional[Config] = None


def get_config(reload: bool = False) -> Config:
    """
    Get the global configuration instance.

    Args:
        reload: Force reload from file.

    Returns:
        Config instance.
    """
    global _config

    if _config is None or reload:
        _config = Config.load()

    return _config

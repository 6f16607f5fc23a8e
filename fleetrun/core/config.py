"""
Configuration management for fleetrun.

Loads a run definition (devices, optional jump host, copy jobs and
commands) from a YAML file and turns it into the inputs the task
manager works on.

Example file:

    configs:
      privateKey: ~/.ssh/id_rsa
      proxy:
        addr: bastion.example.com
        port: 22
        user: jump
    devices:
      - addr: 10.0.0.5
        port: 22
        user: deploy
        password: secret
    copy:
      - source: [build/app.tar.gz]
        destination: /tmp
    execute:
      - tar -xzf /tmp/app.tar.gz -C /opt
    execution:
      max_workers: 4
      timeout: 30
    logging:
      level: INFO
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from fleetrun.jobs.models import CopyInfo
from fleetrun.ssh.models import ConnInfo, DEFAULT_SSH_PORT


logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "FLEETRUN_CONFIG"


@dataclass
class DeviceConfig:
    """One SSH endpoint as written in the config file."""

    addr: str
    port: str = str(DEFAULT_SSH_PORT)
    user: str = ""
    password: str = ""

    @property
    def address(self) -> str:
        return f"{self.addr}:{self.port}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], what: str = "device") -> "DeviceConfig":
        if not isinstance(data, dict):
            raise ValueError(f"Invalid {what} entry: {data!r}")
        addr = data.get("addr")
        if not addr:
            raise ValueError(f"Each {what} must have an 'addr' field")
        return cls(
            addr=str(addr),
            port=str(data.get("port", DEFAULT_SSH_PORT)),
            user=str(data.get("user") or ""),
            password=str(data.get("password") or ""),
        )


@dataclass
class ExecutionConfig:
    """Execution settings (CLI flags override these)."""

    max_workers: int = 1
    timeout: int = 30


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "INFO"
    file: Optional[Path] = None


@dataclass
class Config:
    """Main configuration container."""

    config_file: Optional[Path] = None

    # Shared by every device and the proxy
    private_key: Optional[Path] = None
    proxy: Optional[DeviceConfig] = None

    devices: List[DeviceConfig] = field(default_factory=list)
    copy: List[CopyInfo] = field(default_factory=list)
    execute: List[str] = field(default_factory=list)

    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config file. If None, the FLEETRUN_CONFIG
                         env var is used.

        Returns:
            Config instance.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the YAML is invalid or a section is malformed.
        """
        if config_path is None:
            env_path = os.environ.get(CONFIG_ENV_VAR)
            if not env_path:
                raise ValueError(f"No config file given (use -f or set {CONFIG_ENV_VAR})")
            config_path = Path(env_path)

        config_path = Path(config_path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid config YAML: {e}")

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping")

        config = cls.from_dict(data)
        config.config_file = config_path
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a Config from already-parsed YAML data."""
        config = cls()

        # Shared connection settings
        configs = data.get("configs") or {}
        key_path = configs.get("privateKey")
        if key_path:
            config.private_key = Path(key_path).expanduser()
        if configs.get("proxy"):
            config.proxy = DeviceConfig.from_dict(configs["proxy"], what="proxy")

        config.devices = [DeviceConfig.from_dict(d) for d in data.get("devices") or []]

        for entry in data.get("copy") or []:
            if not isinstance(entry, dict) or not entry.get("destination"):
                raise ValueError(f"Each copy entry must have a 'destination' field: {entry!r}")
            source = entry.get("source") or []
            if isinstance(source, str):
                source = [source]
            config.copy.append(CopyInfo(
                source=[str(s) for s in source],
                destination=str(entry["destination"]),
            ))

        config.execute = [str(cmd) for cmd in data.get("execute") or []]

        # Execution settings
        if "execution" in data:
            exec_data = data["execution"] or {}
            config.execution = ExecutionConfig(
                max_workers=int(exec_data.get("max_workers", 1)),
                timeout=int(exec_data.get("timeout", 30)),
            )

        # Logging settings
        if "logging" in data:
            log_data = data["logging"] or {}
            log_file = log_data.get("file")
            config.logging = LoggingConfig(
                level=str(log_data.get("level", "INFO")).upper(),
                file=Path(log_file).expanduser() if log_file else None,
            )

        return config

    def read_private_key(self) -> Optional[bytes]:
        """
        Read the shared private key once.

        A missing or unreadable key is logged and treated as absent, so
        password-only devices still work.
        """
        if self.private_key is None:
            return None
        try:
            return self.private_key.read_bytes()
        except OSError as e:
            logger.warning(f"Could not read private key {self.private_key}: {e}")
            return None

    def conn_infos(self) -> List[ConnInfo]:
        """
        Build one ConnInfo per device, all sharing the key and proxy.

        Returns:
            Descriptors in the order the devices are listed.
        """
        private_key = self.read_private_key()

        proxy = None
        if self.proxy is not None:
            proxy = ConnInfo(
                addr=self.proxy.address,
                user=self.proxy.user,
                password=self.proxy.password,
                private_key=private_key,
            )

        return [
            ConnInfo(
                addr=device.address,
                user=device.user,
                password=device.password,
                private_key=private_key,
                proxy=proxy,
            )
            for device in self.devices
        ]

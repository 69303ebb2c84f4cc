"""
Gateway settings: environment variables with an optional .env file on top.
"""

import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional, Union
from urllib.parse import urlsplit

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).parent.parent.parent


class ConfigurationError(Exception):
    """A setting is missing, malformed or out of range."""


class MqttOptions:
    """Broker connection settings parsed from an mqtt:// or mqtts:// URL."""

    DEFAULT_PORT = 1883
    DEFAULT_TLS_PORT = 8883

    def __init__(self, host: str, port: int = DEFAULT_PORT,
                 username: Optional[str] = None, password: Optional[str] = None,
                 cert_file: Optional[Path] = None):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.cert_file = cert_file

    @property
    def tls(self) -> bool:
        return self.cert_file is not None

    @classmethod
    def from_url(cls, url: str, cert_file: Optional[Union[str, Path]] = None) -> 'MqttOptions':
        """
        Parse `mqtt[s]://[user[:password]@]host[:port]`.

        Args:
            url: Broker URL
            cert_file: PEM file with the CA certificate, required for mqtts

        Raises:
            ConfigurationError: For other schemes, a missing host, or mqtts
                without a readable certificate
        """
        parts = urlsplit(url)
        if parts.scheme not in ("mqtt", "mqtts"):
            raise ConfigurationError(f"Invalid mqtt url {url}, expected mqtt[s]://host[:port]")
        tls = parts.scheme == "mqtts"
        try:
            port = parts.port or (cls.DEFAULT_TLS_PORT if tls else cls.DEFAULT_PORT)
        except ValueError:
            raise ConfigurationError(f"Invalid port in mqtt url {url}")
        if not parts.hostname:
            raise ConfigurationError(f"Invalid mqtt url {url}, missing host")

        if tls:
            if cert_file is None:
                raise ConfigurationError(
                    "Need a cert file for mqtts url but environment variable MQTT_CERT_FILE was not set")
            cert_file = Path(cert_file)
            if not cert_file.is_file():
                raise ConfigurationError(f"Could not read cert pem from {cert_file}")
        else:
            cert_file = None

        return cls(
            host=parts.hostname,
            port=port,
            username=parts.username or None,
            password=parts.password,
            cert_file=cert_file,
        )


_TRUTHY = frozenset(('true', '1', 'yes', 'on', 'enabled'))
_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class Config:
    """
    Settings for the gateway, read from the process environment.

    An optional .env file is merged in first; variables already present in
    the environment win. Every property re-reads the environment, so tests
    can monkeypatch variables on a live instance.
    """

    _RULES = (
        ("port", "PORT", lambda v: 1 <= v <= 65535, "between 1 and 65535"),
        ("flush_interval", "FLUSH_INTERVAL", lambda v: v > 0, "positive"),
        ("ble_poll_interval", "BLE_POLL_INTERVAL", lambda v: v > 0, "positive"),
        ("ble_connect_poll_interval", "BLE_CONNECT_POLL_INTERVAL", lambda v: v > 0, "positive"),
        ("demo", "DEMO", lambda v: 0 <= v <= 255, "between 0 and 255"),
        ("mqtt_publish_interval", "MQTT_PUBLISH_INTERVAL", lambda v: v > 0, "positive"),
    )

    def __init__(self, env_file: Optional[Union[str, Path]] = None):
        self.logger = logging.getLogger(__name__)

        env_file = Path(env_file) if env_file is not None else PROJECT_ROOT / ".env"
        if env_file.exists():
            load_dotenv(env_file)
            self.logger.info(f"Loaded configuration from {env_file}")
        else:
            self.logger.debug(f"No {env_file}, reading the process environment only")

    def _lookup(self, key: str, default: Any, convert: Callable[[str], Any], kind: str) -> Any:
        raw = os.getenv(key)
        if raw is None:
            if default is None:
                raise ConfigurationError(f"Missing configuration variable {key}")
            return default
        try:
            return convert(raw)
        except ValueError:
            raise ConfigurationError(f"{key}={raw!r} is not a valid {kind}")

    def get_str(self, key: str, default: Optional[str] = None) -> str:
        return self._lookup(key, default, str, "string")

    def get_optional_str(self, key: str) -> Optional[str]:
        """Unset and empty both read as None."""
        return os.getenv(key) or None

    def get_int(self, key: str, default: Optional[int] = None) -> int:
        return self._lookup(key, default, int, "integer")

    def get_float(self, key: str, default: Optional[float] = None) -> float:
        return self._lookup(key, default, float, "number")

    def get_bool(self, key: str, default: Optional[bool] = None) -> bool:
        return self._lookup(key, default, lambda raw: raw.strip().lower() in _TRUTHY, "flag")

    def get_path(self, key: str, default: Optional[Union[str, Path]] = None) -> Path:
        """Relative paths are anchored at the project root, not the cwd."""
        path = Path(self._lookup(key, default, str, "path")).expanduser()
        return path if path.is_absolute() else PROJECT_ROOT / path

    # HTTP
    @property
    def host(self) -> str:
        return self.get_str("HOST", "127.0.0.1")

    @property
    def port(self) -> int:
        return self.get_int("PORT", 8080)

    # Storage
    @property
    def db_path(self) -> Path:
        return self.get_path("DB_PATH", "./data/weatherstation")

    @property
    def flush_interval(self) -> int:
        return self.get_int("FLUSH_INTERVAL", 60)

    # Bluetooth
    @property
    def bluetooth_enabled(self) -> bool:
        return self.get_bool("BLUETOOTH_ENABLED", True)

    @property
    def ble_poll_interval(self) -> float:
        return self.get_float("BLE_POLL_INTERVAL", 30.0)

    @property
    def ble_connect_poll_interval(self) -> float:
        return self.get_float("BLE_CONNECT_POLL_INTERVAL", 5.0)

    @property
    def demo(self) -> int:
        """Number of simulated sensors."""
        return self.get_int("DEMO", 0)

    # MQTT
    @property
    def mqtt_server_url(self) -> Optional[str]:
        return self.get_optional_str("MQTT_SERVER_URL")

    @property
    def mqtt_cert_file(self) -> Optional[Path]:
        """CA certificate (PEM) for mqtts brokers."""
        return self.get_path("MQTT_CERT_FILE") if self.get_optional_str("MQTT_CERT_FILE") else None

    @property
    def mqtt_options(self) -> Optional[MqttOptions]:
        url = self.mqtt_server_url
        return MqttOptions.from_url(url, self.mqtt_cert_file) if url else None

    @property
    def mqtt_publish_interval(self) -> int:
        return self.get_int("MQTT_PUBLISH_INTERVAL", 60)

    # Logging
    @property
    def log_level(self) -> str:
        return self.get_str("LOG_LEVEL", "INFO").upper()

    @property
    def log_dir(self) -> Path:
        return self.get_path("LOG_DIR", "./logs")

    @property
    def log_max_file_size(self) -> int:
        return self.get_int("LOG_MAX_FILE_SIZE", 10 * 1024 * 1024)  # 10MB

    @property
    def log_backup_count(self) -> int:
        return self.get_int("LOG_BACKUP_COUNT", 5)

    @property
    def log_enable_console(self) -> bool:
        return self.get_bool("LOG_ENABLE_CONSOLE", True)

    def validate_configuration(self) -> bool:
        """
        Check every setting at once.

        Raises:
            ConfigurationError: Listing all problems found, one per line
        """
        problems = []

        for attribute, key, accept, expectation in self._RULES:
            try:
                if not accept(getattr(self, attribute)):
                    problems.append(f"{key} must be {expectation}")
            except ConfigurationError as e:
                problems.append(str(e))

        try:
            self.mqtt_options
        except ConfigurationError as e:
            problems.append(str(e))

        if self.log_level not in _LOG_LEVELS:
            problems.append(f"LOG_LEVEL must be one of {', '.join(_LOG_LEVELS)}")

        if problems:
            raise ConfigurationError(
                "Invalid configuration:\n" + "\n".join(f"- {problem}" for problem in problems)
            )
        return True

    def get_summary(self) -> dict:
        """Non-secret settings grouped by concern, logged once at startup."""
        return {
            'http': {
                'host': self.host,
                'port': self.port,
            },
            'storage': {
                'db_path': str(self.db_path),
                'flush_interval': self.flush_interval,
            },
            'ble': {
                'enabled': self.bluetooth_enabled,
                'poll_interval': self.ble_poll_interval,
                'connect_poll_interval': self.ble_connect_poll_interval,
                'demo': self.demo,
            },
            'mqtt': {
                'enabled': self.mqtt_server_url is not None,
                'publish_interval': self.mqtt_publish_interval,
                'cert_file': str(self.mqtt_cert_file) if self.mqtt_cert_file else None,
            },
            'logging': {
                'level': self.log_level,
                'dir': str(self.log_dir),
                'enable_console': self.log_enable_console,
            },
        }

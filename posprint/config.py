"""Application configuration."""
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_prefix(value: Any) -> Optional[int]:
    """Scan window prefix; "none" or empty disables the window."""
    if value is None or isinstance(value, int):
        return value
    value = str(value).strip().lower()
    if value in ("", "none", "off", "0"):
        return None
    return int(value.lstrip("/"))


class Config:
    """Base configuration."""
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Printer settings
    PRINTER_WIDTH = _env_int("PRINTER_WIDTH", 32)  # Characters per line (80mm paper, font A)
    PRINTER_TCP_PORT = _env_int("PRINTER_TCP_PORT", 9100)
    DISCOVERY_TIMEOUT_MS = _env_int("DISCOVERY_TIMEOUT_MS", 1000)
    IDENTIFY_TIMEOUT_MS = _env_int("IDENTIFY_TIMEOUT_MS", 2000)
    LAN_ACK_GRACE_MS = _env_int("LAN_ACK_GRACE_MS", 1000)
    TRANSPORT_TIMEOUT_MS = _env_int("TRANSPORT_TIMEOUT_MS", 5000)
    SCAN_WINDOW_PREFIX = _parse_prefix(os.environ.get("SCAN_WINDOW_PREFIX", "24"))
    USB_TARGET_IP = os.environ.get("USB_TARGET_IP", "192.168.1.250")
    ASSUME_SILENT_ACCEPTED = _parse_bool(os.environ.get("ASSUME_SILENT_ACCEPTED", "true"))


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{os.path.join(os.path.dirname(basedir), 'instance', 'posprint.db')}"
    )


class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{os.path.join(os.path.dirname(basedir), 'instance', 'posprint.db')}"
    )


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    IDENTIFY_TIMEOUT_MS = 300
    DISCOVERY_TIMEOUT_MS = 300
    LAN_ACK_GRACE_MS = 100
    TRANSPORT_TIMEOUT_MS = 1000


config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}


@dataclass(frozen=True)
class PrinterSettings:
    """Settings consumed by the printer core, independent of Flask."""

    width: int = 32
    tcp_port: int = 9100
    discovery_timeout_ms: int = 1000
    identify_timeout_ms: int = 2000
    lan_ack_grace_ms: int = 1000
    transport_timeout_ms: int = 5000
    scan_window_prefix: Optional[int] = 24
    usb_target_ip: str = "192.168.1.250"
    accept_silent: bool = True

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping] = None) -> "PrinterSettings":
        """Build settings from a Flask config, os.environ or any mapping of the same keys."""
        mapping = os.environ if mapping is None else mapping
        defaults = cls()

        def get(key, default, convert=int):
            value = mapping.get(key)
            return default if value is None else convert(value)

        return cls(
            width=get("PRINTER_WIDTH", defaults.width),
            tcp_port=get("PRINTER_TCP_PORT", defaults.tcp_port),
            discovery_timeout_ms=get("DISCOVERY_TIMEOUT_MS", defaults.discovery_timeout_ms),
            identify_timeout_ms=get("IDENTIFY_TIMEOUT_MS", defaults.identify_timeout_ms),
            lan_ack_grace_ms=get("LAN_ACK_GRACE_MS", defaults.lan_ack_grace_ms),
            transport_timeout_ms=get("TRANSPORT_TIMEOUT_MS", defaults.transport_timeout_ms),
            scan_window_prefix=(_parse_prefix(mapping["SCAN_WINDOW_PREFIX"])
                                if "SCAN_WINDOW_PREFIX" in mapping else defaults.scan_window_prefix),
            usb_target_ip=get("USB_TARGET_IP", defaults.usb_target_ip, str),
            accept_silent=get("ASSUME_SILENT_ACCEPTED", defaults.accept_silent, _parse_bool),
        )

"""BLE アドバタイズを MQTT に中継する blead2mqtt パッケージ."""

# 公開する主なクラス/関数をここで import しておくと補完しやすい
from .ble_scan import Advertisement, ensure_adapter_ready, scan_for_advertisements
from .config import AppConfig, deep_merge, load_config, save_config
from .identifiers import canonicalize_bluetooth_uuid, format_octets_hex_string
from .known_data import parse_known_data
from .logging import setup_logging
from .tasks import time_limit
from .transform import (
    Message,
    create_hierarchical_messages,
    create_limited_frequency_proxy_transform,
)

__version__ = "0.1.0"

__all__ = [
    "Advertisement",
    "AppConfig",
    "Message",
    "canonicalize_bluetooth_uuid",
    "create_hierarchical_messages",
    "create_limited_frequency_proxy_transform",
    "deep_merge",
    "ensure_adapter_ready",
    "format_octets_hex_string",
    "load_config",
    "parse_known_data",
    "save_config",
    "scan_for_advertisements",
    "setup_logging",
    "time_limit",
]

from dataclasses import asdict, dataclass, field, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
import os
import yaml

from .errors import ConfigError

BASE_TOPIC = "blead2mqtt"


def deep_merge(*mappings: Mapping[str, Any]) -> Dict[str, Any]:
    """dict を再帰的にマージする。両側が dict のキーは再帰、それ以外は右側が勝つ。"""
    merged: Dict[str, Any] = {}
    for mapping in mappings:
        for key, value in mapping.items():
            current = merged.get(key)
            if isinstance(current, Mapping) and isinstance(value, Mapping):
                merged[key] = deep_merge(current, value)
            elif isinstance(value, Mapping):
                merged[key] = deep_merge(value)
            else:
                merged[key] = value
    return merged


def _merge_dataclass(instance: Any, updates: Dict[str, Any]) -> None:
    """dict を dataclass インスタンスへ反映（ネスト対応）。"""
    for key, value in updates.items():
        if not hasattr(instance, key):
            continue
        current = getattr(instance, key)
        if is_dataclass(current) and isinstance(value, dict):
            _merge_dataclass(current, value)
        else:
            setattr(instance, key, value)


def _as_bool(value: str) -> bool:
    return str(value).lower() in ("1", "true", "yes", "on")


def _as_optional_float(value: str) -> Optional[float]:
    if str(value).strip().lower() in ("", "none", "null", "forever"):
        return None
    return float(value)


@dataclass
class BleConfig:
    ready_timeout: float = 5.0  # BLE が使用可能になるまで待つ秒数
    adapter: Optional[str] = None  # 例: "hci0"。None なら既定アダプタ
    probe_time: float = 0.5


@dataclass
class MqttConfig:
    host: str = "127.0.0.1"
    port: int = 1883
    tls: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = "blead2mqtt"
    keepalive: int = 60
    connect_timeout: float = 5.0
    default_qos: int = 2
    default_retain: bool = False
    # status_topic / payload が None なら last will・online 通知を送らない
    status_topic: Optional[str] = f"{BASE_TOPIC}/status"
    status_online_payload: Optional[str] = "online"
    status_offline_payload: Optional[str] = "offline"
    status_qos: int = 2
    status_retain: bool = True


@dataclass
class TransformConfig:
    factory: str = "blead2mqtt.transform:create_default_transform"
    base_topic: str = BASE_TOPIC
    interval: float = 60.0  # 同一デバイスの送信間隔（秒）
    leafs_only: bool = True
    max_tracked_addresses: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # 独自 factory 用の任意パラメータ


@dataclass
class LogConfig:
    level: str = "INFO"
    dir: Optional[str] = None
    json: bool = False


@dataclass
class AppConfig:
    ble: BleConfig = field(default_factory=BleConfig)
    scan_time: Optional[float] = 15.0  # None なら無期限にスキャン
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    transform: TransformConfig = field(default_factory=TransformConfig)
    log: LogConfig = field(default_factory=LogConfig)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r") as f:
            loaded = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f'Error reading configuration file "{path}": {exc}') from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f'Configuration file "{path}" must contain a mapping')
    return loaded


def override_path_for(path: Path) -> Path:
    return path.with_name(f"{path.stem}.override{path.suffix or '.yaml'}")


_ENV_MAPPING = {
    "BLEAD2MQTT_MQTT_HOST": (("mqtt", "host"), str),
    "BLEAD2MQTT_MQTT_PORT": (("mqtt", "port"), int),
    "BLEAD2MQTT_MQTT_USER": (("mqtt", "username"), str),
    "BLEAD2MQTT_MQTT_PASS": (("mqtt", "password"), str),
    "BLEAD2MQTT_MQTT_TLS": (("mqtt", "tls"), _as_bool),
    "BLEAD2MQTT_MQTT_CLIENT_ID": (("mqtt", "client_id"), str),
    "BLEAD2MQTT_BASE_TOPIC": (("transform", "base_topic"), str),
    "BLEAD2MQTT_INTERVAL": (("transform", "interval"), float),
    "BLEAD2MQTT_SCAN_TIME": (("scan_time",), _as_optional_float),
    "BLEAD2MQTT_READY_TIMEOUT": (("ble", "ready_timeout"), float),
    "BLEAD2MQTT_BLE_ADAPTER": (("ble", "adapter"), str),
    "BLEAD2MQTT_LOG_LEVEL": (("log", "level"), str),
    "BLEAD2MQTT_LOG_DIR": (("log", "dir"), str),
}


def _apply_env_overrides(cfg: AppConfig, env: Mapping[str, str]) -> None:
    for env_key, (path, convert) in _ENV_MAPPING.items():
        if env_key not in env:
            continue
        target = cfg
        for key in path[:-1]:
            target = getattr(target, key)
        try:
            setattr(target, path[-1], convert(env[env_key]))
        except ValueError as exc:
            raise ConfigError(f"Invalid value for {env_key}: {env[env_key]!r}") from exc


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(cfg: AppConfig) -> None:
    """不正な設定をまとめて ConfigError にする。"""
    problems: List[str] = []
    if not _is_number(cfg.ble.ready_timeout) or cfg.ble.ready_timeout <= 0:
        problems.append("ble.ready_timeout must be a positive number")
    elif not _is_number(cfg.ble.probe_time) or not 0 < cfg.ble.probe_time < cfg.ble.ready_timeout:
        # プローブが ready_timeout 内に終わらないと準備完了にならない
        problems.append("ble.probe_time must be a positive number smaller than ble.ready_timeout")
    if cfg.scan_time is not None and (not _is_number(cfg.scan_time) or cfg.scan_time < 0):
        problems.append("scan_time must be null or a non-negative number")
    if not cfg.mqtt.host:
        problems.append("mqtt.host must not be empty")
    if not isinstance(cfg.mqtt.port, int) or not 0 < cfg.mqtt.port < 65536:
        problems.append("mqtt.port must be in 1..65535")
    if not isinstance(cfg.mqtt.keepalive, int) or cfg.mqtt.keepalive <= 0:
        problems.append("mqtt.keepalive must be a positive integer")
    if not _is_number(cfg.mqtt.connect_timeout) or cfg.mqtt.connect_timeout <= 0:
        problems.append("mqtt.connect_timeout must be a positive number")
    for name in ("default_qos", "status_qos"):
        if getattr(cfg.mqtt, name) not in (0, 1, 2):
            problems.append(f"mqtt.{name} must be 0, 1 or 2")
    if not cfg.transform.base_topic:
        problems.append("transform.base_topic must not be empty")
    if not _is_number(cfg.transform.interval) or cfg.transform.interval < 0:
        problems.append("transform.interval must be a non-negative number")
    max_tracked = cfg.transform.max_tracked_addresses
    if max_tracked is not None and (not isinstance(max_tracked, int) or max_tracked <= 0):
        problems.append("transform.max_tracked_addresses must be null or a positive integer")
    module_name, sep, attr = str(cfg.transform.factory).partition(":")
    if not (module_name and sep and attr):
        problems.append('transform.factory must be in "module:attribute" form')
    if problems:
        raise ConfigError("Invalid configuration: " + "; ".join(problems))


def load_config(path: Optional[str] = None, env: Mapping[str, str] = os.environ) -> AppConfig:
    """
    設定をロードして AppConfig を返す。
    優先順位: ENV > <name>.override.yaml > 設定ファイル（引数 path > BLEAD2MQTT_CONFIG） > デフォルト値。
    """
    cfg = AppConfig()
    cfg_path = path or env.get("BLEAD2MQTT_CONFIG")
    if cfg_path:
        config_file = Path(cfg_path)
        if path and not config_file.exists():
            raise ConfigError(f'Configuration file "{config_file}" not found')
        loaded = deep_merge(_load_yaml(config_file), _load_yaml(override_path_for(config_file)))
        _merge_dataclass(cfg, loaded)

    # ENV上書き（最優先）
    _apply_env_overrides(cfg, env)
    validate_config(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    data = asdict(cfg)
    with path.open("w") as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)


__all__ = [
    "AppConfig",
    "BleConfig",
    "MqttConfig",
    "TransformConfig",
    "LogConfig",
    "deep_merge",
    "load_config",
    "save_config",
    "validate_config",
]

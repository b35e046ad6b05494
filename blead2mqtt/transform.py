"""
アドバタイズ -> MQTT メッセージ変換。

transform は Advertisement を受け取り、None / Message / dict / それらのリストを返す関数。
設定の transform.factory（"module:attr"）で差し替えられる。
"""
import importlib
import logging
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Union

from .ble_scan import Advertisement
from .config import TransformConfig
from .errors import ConfigError
from .known_data import parse_known_data
from .tasks import create_timestamp

logger = logging.getLogger(__name__)


@dataclass
class Message:
    topic: str
    payload: Any = None
    qos: Optional[int] = None  # None なら publisher の既定値
    retain: Optional[bool] = None


MessageLike = Union[Message, Mapping]
TransformResult = Union[None, MessageLike, List[MessageLike]]
Transform = Callable[[Advertisement], TransformResult]
TransformFactory = Callable[[TransformConfig], Transform]


def _to_message(value: MessageLike) -> Message:
    if isinstance(value, Message):
        return value
    return Message(
        topic=value.get("topic"),
        payload=value.get("payload"),
        qos=value.get("qos"),
        retain=value.get("retain"),
    )


def coerce_messages(result: TransformResult) -> List[Message]:
    """
    transform の戻り値をメッセージのリストに揃える（単体はリストで包む）。
    メッセージでもリストでもない値（None、文字列、数値など）は無視する。
    """
    if isinstance(result, (Message, Mapping)):
        return [_to_message(result)]
    if isinstance(result, (list, tuple)):
        return [_to_message(item) for item in result]
    if result is not None:
        logger.debug("Ignoring transform result of type %s", type(result).__name__)
    return []


def _add_hierarchical_messages(
    messages: List[Message],
    root_topic: str,
    value: Any,
    leafs_only: bool,
    retain: Optional[bool],
    qos: Optional[int],
) -> List[Message]:
    is_record = isinstance(value, Mapping)
    if not (is_record and leafs_only):
        messages.append(Message(topic=root_topic, payload=value, qos=qos, retain=retain))
    if is_record:
        for key, child in value.items():
            _add_hierarchical_messages(messages, f"{root_topic}/{key}", child, leafs_only, retain, qos)
    return messages


def create_hierarchical_messages(
    root_topic: str,
    value: Any,
    leafs_only: bool = True,
    retain: Optional[bool] = None,
    qos: Optional[int] = None,
) -> List[Message]:
    """
    ネストした dict を MQTT トピック階層に展開する。

    create_hierarchical_messages("root/topic", {"a": 17, "b": {"c": "foo", "d": "bar"}})
    -> root/topic/a=17, root/topic/b/c="foo", root/topic/b/d="bar"

    leafs_only=False なら root/topic と root/topic/b にも dict 自体を出す（子より先）。
    リスト/タプルは葉として扱う。
    """
    return _add_hierarchical_messages([], root_topic, value, leafs_only, retain, qos)


def create_limited_frequency_proxy_transform(
    interval_seconds: float,
    transform: Transform,
    max_tracked_addresses: Optional[int] = None,
    clock: Callable[[], float] = create_timestamp,
) -> Transform:
    """
    同じアドレスについて interval_seconds に1回だけ transform を呼ぶプロキシを返す。
    間隔内のアドバタイズは捨てる（遅延・集約はしない）。

    clock はミリ秒を返す関数。max_tracked_addresses を指定すると、
    最後の送信が最も古いアドレスから記録を捨てる。
    """
    last_timestamps: "OrderedDict[str, float]" = OrderedDict()
    interval_ms = interval_seconds * 1000

    def proxy(advertisement: Advertisement) -> TransformResult:
        timestamp = clock()
        key = advertisement.address
        last = last_timestamps.get(key)
        if last is not None and timestamp < last + interval_ms:
            logger.debug("Suppressed advertisement from %s", key, extra={"address": key})
            return None
        last_timestamps[key] = timestamp
        last_timestamps.move_to_end(key)
        if max_tracked_addresses is not None:
            while len(last_timestamps) > max_tracked_addresses:
                last_timestamps.popitem(last=False)
        return transform(advertisement)

    return proxy


def create_default_transform(parameters: TransformConfig) -> Transform:
    """
    既定の transform。

    - <base>/advertisements: address を含む全項目 + known_data
    - <base>/peripherals/<address>/...: address 以外の項目を階層展開
    """
    base_topic = parameters.base_topic

    def transform(advertisement: Advertisement) -> List[Message]:
        data = advertisement.to_dict()
        address = data.pop("address")
        data["known_data"] = parse_known_data(advertisement)
        return [
            Message(
                topic=f"{base_topic}/advertisements",
                payload={"address": address, **data},
                retain=False,
            ),
            *create_hierarchical_messages(
                f"{base_topic}/peripherals/{address}",
                data,
                leafs_only=parameters.leafs_only,
                retain=False,
            ),
        ]

    return create_limited_frequency_proxy_transform(
        parameters.interval, transform, max_tracked_addresses=parameters.max_tracked_addresses
    )


def load_transform_factory(path: str) -> TransformFactory:
    """"package.module:attr" 形式の文字列から transform factory を読み込む。"""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f'Invalid transform factory "{path}", expected "module:attribute"')
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigError(f'Error importing transform module "{module_name}": {exc}') from exc
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f'Transform factory "{path}" is not callable')
    return factory


def create_transform(parameters: TransformConfig) -> Transform:
    factory = load_transform_factory(parameters.factory)
    logger.info("Using transform factory %s", parameters.factory)
    return factory(parameters)


__all__ = [
    "Message",
    "Transform",
    "coerce_messages",
    "create_default_transform",
    "create_hierarchical_messages",
    "create_limited_frequency_proxy_transform",
    "create_transform",
    "load_transform_factory",
]

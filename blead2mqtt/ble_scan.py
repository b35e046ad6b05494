"""
BLE アドバタイズのスキャンと正規化。

- ensure_adapter_ready: アダプタが使用可能になるまでタイムアウト付きで待つ
- scan_for_discovery_events: コールバック型の検出通知を非同期イテレータに変換する
- scan_for_advertisements: 検出イベントを Advertisement レコードにして返す
"""
import asyncio
import logging
import math
from contextlib import aclosing
from dataclasses import asdict, dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

from .errors import (
    AdapterPermissionDenied,
    AdapterUnavailable,
    AdapterUnusableState,
    Blead2MqttError,
    ReadinessTimeout,
)
from .identifiers import canonicalize_bluetooth_uuid, format_octets_hex_string
from .radio import AdapterState, DiscoveryEvent, RadioAdapter
from .tasks import create_timestamp, time_limit

logger = logging.getLogger(__name__)

DEFAULT_READY_TIMEOUT = 5.0
DEFAULT_SCAN_TIME = 15.0


@dataclass(frozen=True)
class Advertisement:
    address: str
    address_type: Optional[str]
    connectable: Optional[bool]
    manufacturer_data: Optional[Tuple[int, ...]]
    name: Optional[str]
    rssi: Optional[int]
    service_data: Dict[str, Tuple[int, ...]] = field(default_factory=dict)
    service_uuids: Tuple[str, ...] = ()
    solicitation_service_uuids: Tuple[str, ...] = ()
    timestamp: int = 0
    tx_power_level: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def jsonify_value(value: Any, convert: Optional[Callable[[Any], Any]] = None) -> Any:
    """値が無い（None / NaN）なら None、あれば convert を通して返す。"""
    if is_absent(value):
        return None
    return convert(value) if convert else value


def convert_discovery_to_advertisement(event: DiscoveryEvent) -> Advertisement:
    service_data: Dict[str, Tuple[int, ...]] = {}
    for uuid, data in event.service_data:
        service_data[canonicalize_bluetooth_uuid(uuid)] = tuple(data)
    return Advertisement(
        address=format_octets_hex_string(event.address, ":"),
        address_type=event.address_type,
        connectable=jsonify_value(event.connectable),
        manufacturer_data=jsonify_value(event.manufacturer_data, tuple),
        name=jsonify_value(event.local_name),
        rssi=jsonify_value(event.rssi),
        service_data=service_data,
        service_uuids=tuple(canonicalize_bluetooth_uuid(uuid) for uuid in event.service_uuids),
        solicitation_service_uuids=tuple(
            canonicalize_bluetooth_uuid(uuid) for uuid in event.solicitation_service_uuids
        ),
        timestamp=create_timestamp(),
        tx_power_level=jsonify_value(event.tx_power_level),
    )


def is_adapter_ready(adapter: RadioAdapter) -> bool:
    """
    poweredOn なら True、unknown なら False。
    それ以外の状態は原因ごとの例外を送出する。
    """
    state = adapter.state
    if state == AdapterState.POWERED_ON:
        return True
    if state == AdapterState.UNKNOWN:
        return False
    if state == AdapterState.UNAVAILABLE:
        raise AdapterUnavailable("No suitable Bluetooth adapter found")
    if state == AdapterState.UNAUTHORIZED:
        raise AdapterPermissionDenied(
            "Insufficient permissions to scan for BLE advertisements "
            "(run as root or grant the required capabilities)"
        )
    raise AdapterUnusableState(getattr(state, "value", str(state)))


async def ensure_adapter_ready(adapter: RadioAdapter, timeout: Optional[float] = DEFAULT_READY_TIMEOUT) -> None:
    if is_adapter_ready(adapter):
        return

    ready: asyncio.Future = asyncio.get_running_loop().create_future()

    def on_state_change(_state: AdapterState) -> None:
        if ready.done():
            return
        try:
            if is_adapter_ready(adapter):
                ready.set_result(None)
        except Blead2MqttError as exc:
            ready.set_exception(exc)

    adapter.add_state_listener(on_state_change)
    try:
        adapter.refresh_state()
        await time_limit(ready, timeout, ReadinessTimeout(f"BLE not ready within {timeout} seconds"))
    finally:
        adapter.remove_state_listener(on_state_change)
        await adapter.cancel_refresh()
    logger.info("BLE adapter ready")


class _ScanTimeElapsed(Exception):
    pass


async def scan_for_discovery_events(
    adapter: RadioAdapter,
    scan_time: Optional[float] = DEFAULT_SCAN_TIME,
    ready_timeout: Optional[float] = DEFAULT_READY_TIMEOUT,
) -> AsyncIterator[DiscoveryEvent]:
    """
    検出イベントを1件ずつ返す非同期ジェネレータ。

    scan_time 秒経過で正常終了する（None なら外部からキャンセルされるまで続く）。
    待ち受け中の消費者がいない間に届いたイベントは捨てる。
    終了理由に関わらず、検出リスナーの解除とスキャン停止を1回だけ行う。
    """
    loop = asyncio.get_running_loop()
    waiter: Optional[asyncio.Future] = None

    def on_discover(event: DiscoveryEvent) -> None:
        nonlocal waiter
        if waiter is not None and not waiter.done():
            waiter.set_result(event)
        waiter = None

    await ensure_adapter_ready(adapter, ready_timeout)

    adapter.add_discover_listener(on_discover)
    try:
        await adapter.start_scanning(allow_duplicates=True)
        logger.info("Scanning for BLE advertisements (scan_time=%s)", scan_time, extra={"scan_time": scan_time})
        started_at = loop.time()
        while True:
            waiter = loop.create_future()
            remaining = None if scan_time is None else scan_time - (loop.time() - started_at)
            try:
                event = await time_limit(waiter, remaining, _ScanTimeElapsed())
            except _ScanTimeElapsed:
                logger.info("Scan time of %s seconds elapsed", scan_time)
                return
            yield event
    finally:
        waiter = None
        adapter.remove_discover_listener(on_discover)
        await adapter.stop_scanning()


async def scan_for_advertisements(
    adapter: RadioAdapter,
    scan_time: Optional[float] = DEFAULT_SCAN_TIME,
    ready_timeout: Optional[float] = DEFAULT_READY_TIMEOUT,
) -> AsyncIterator[Advertisement]:
    async with aclosing(scan_for_discovery_events(adapter, scan_time, ready_timeout)) as events:
        async for event in events:
            yield convert_discovery_to_advertisement(event)


__all__ = [
    "Advertisement",
    "convert_discovery_to_advertisement",
    "ensure_adapter_ready",
    "is_adapter_ready",
    "jsonify_value",
    "scan_for_advertisements",
    "scan_for_discovery_events",
]

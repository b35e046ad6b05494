"""
BLE 無線スタックとの境界。

コアは RadioAdapter プロトコル（状態・状態変化通知・スキャン開始/停止・検出通知）
だけに依存し、実機では bleak を使う BleakRadioAdapter を差し込む。
"""
import asyncio
import errno
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Protocol, Tuple

from bleak import BleakScanner

logger = logging.getLogger(__name__)


class AdapterState(str, Enum):
    UNKNOWN = "unknown"
    POWERED_ON = "poweredOn"
    POWERED_OFF = "poweredOff"
    RESETTING = "resetting"
    UNSUPPORTED = "unsupported"
    UNAUTHORIZED = "unauthorized"
    UNAVAILABLE = "unavailable"  # アダプタ自体が存在しない


@dataclass(frozen=True)
class DiscoveryEvent:
    """無線スタックから届く生の検出イベント。"""

    address: str
    address_type: Optional[str] = None
    connectable: Optional[bool] = None
    rssi: Optional[int] = None
    local_name: Optional[str] = None
    manufacturer_data: Optional[bytes] = None
    tx_power_level: Optional[int] = None
    service_data: List[Tuple[str, bytes]] = field(default_factory=list)
    service_uuids: List[str] = field(default_factory=list)
    solicitation_service_uuids: List[str] = field(default_factory=list)


StateListener = Callable[[AdapterState], None]
DiscoverListener = Callable[[DiscoveryEvent], None]


class RadioAdapter(Protocol):
    state: AdapterState

    def add_state_listener(self, listener: StateListener) -> None: ...

    def remove_state_listener(self, listener: StateListener) -> None: ...

    def refresh_state(self) -> None:
        """状態を再評価させる。変化はリスナーへ通知される。"""

    async def cancel_refresh(self) -> None:
        """実行中の再評価を中止し、その後始末が終わるまで待つ。"""

    async def start_scanning(self, allow_duplicates: bool = True) -> None: ...

    async def stop_scanning(self) -> None: ...

    def add_discover_listener(self, listener: DiscoverListener) -> None: ...

    def remove_discover_listener(self, listener: DiscoverListener) -> None: ...


def classify_adapter_error(exc: BaseException) -> AdapterState:
    """bleak / OS の例外をアダプタ状態へ対応付ける。"""
    if isinstance(exc, PermissionError):
        return AdapterState.UNAUTHORIZED
    if isinstance(exc, OSError) and exc.errno in (errno.ENODEV, errno.ENOENT):
        return AdapterState.UNAVAILABLE
    text = str(exc).lower()
    if "no bluetooth adapters" in text or "not found" in text:
        return AdapterState.UNAVAILABLE
    if "notauthorized" in text or "not authorized" in text or "accessdenied" in text or "permission" in text:
        return AdapterState.UNAUTHORIZED
    if "notready" in text or "not ready" in text or "powered off" in text or "not powered" in text:
        return AdapterState.POWERED_OFF
    if "resetting" in text:
        return AdapterState.RESETTING
    return AdapterState.UNSUPPORTED


def _address_type(device: Any) -> Optional[str]:
    # BlueZ のみ details["props"]["AddressType"] を持つ
    details = getattr(device, "details", None)
    if isinstance(details, dict):
        props = details.get("props")
        if isinstance(props, dict):
            return props.get("AddressType")
    return None


def convert_bleak_advertisement(device: Any, advertising_data: Any) -> DiscoveryEvent:
    """bleak の (BLEDevice, AdvertisementData) を DiscoveryEvent に変換する。"""
    manufacturer_data = None
    if advertising_data.manufacturer_data:
        # bleak は company id ごとに分割して渡すので、元の生バイト列（LE の company id 付き）に戻す
        manufacturer_data = b"".join(
            company_id.to_bytes(2, "little") + bytes(data)
            for company_id, data in advertising_data.manufacturer_data.items()
        )
    return DiscoveryEvent(
        address=device.address,
        address_type=_address_type(device),
        connectable=None,
        rssi=advertising_data.rssi,
        local_name=advertising_data.local_name,
        manufacturer_data=manufacturer_data,
        tx_power_level=advertising_data.tx_power,
        service_data=[(uuid, bytes(data)) for uuid, data in advertising_data.service_data.items()],
        service_uuids=list(advertising_data.service_uuids),
        solicitation_service_uuids=[],
    )


class BleakRadioAdapter:
    """bleak の BleakScanner を RadioAdapter として扱うラッパー。"""

    def __init__(self, probe_time: float = 0.5, adapter: Optional[str] = None):
        self.state = AdapterState.UNKNOWN
        self.probe_time = probe_time
        self.adapter = adapter
        self._state_listeners: List[StateListener] = []
        self._discover_listeners: List[DiscoverListener] = []
        self._scanner: Optional[BleakScanner] = None
        self._probe_task: Optional[asyncio.Task] = None

    def add_state_listener(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._state_listeners:
            self._state_listeners.remove(listener)

    def add_discover_listener(self, listener: DiscoverListener) -> None:
        self._discover_listeners.append(listener)

    def remove_discover_listener(self, listener: DiscoverListener) -> None:
        if listener in self._discover_listeners:
            self._discover_listeners.remove(listener)

    def refresh_state(self) -> None:
        if self._probe_task and not self._probe_task.done():
            return
        self._probe_task = asyncio.create_task(self._probe())

    async def cancel_refresh(self) -> None:
        task, self._probe_task = self._probe_task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _set_state(self, state: AdapterState) -> None:
        if state == self.state:
            return
        logger.info("BLE adapter state %s -> %s", self.state.value, state.value)
        self.state = state
        for listener in self._state_listeners[:]:
            listener(state)

    def _create_scanner(self, detection_callback=None, allow_duplicates: bool = False) -> BleakScanner:
        kwargs = {"bluez": {"filters": {"DuplicateData": allow_duplicates}}}
        if self.adapter:
            kwargs["adapter"] = self.adapter
        return BleakScanner(detection_callback, **kwargs)

    async def _probe(self) -> None:
        # 短時間スキャンできればアダプタは使用可能とみなす
        scanner = self._create_scanner()
        try:
            await scanner.start()
            try:
                await asyncio.sleep(self.probe_time)
            finally:
                # キャンセルされてもスキャナーは必ず止める
                await scanner.stop()
        except Exception as exc:  # noqa: BLE001
            logger.warning("BLE adapter probe failed: %s", exc)
            self._set_state(classify_adapter_error(exc))
            return
        self._set_state(AdapterState.POWERED_ON)

    def _on_detection(self, device: Any, advertising_data: Any) -> None:
        event = convert_bleak_advertisement(device, advertising_data)
        for listener in self._discover_listeners[:]:
            listener(event)

    async def start_scanning(self, allow_duplicates: bool = True) -> None:
        self._scanner = self._create_scanner(self._on_detection, allow_duplicates)
        await self._scanner.start()
        logger.info("BLE scanning started (duplicates=%s)", allow_duplicates)

    async def stop_scanning(self) -> None:
        if not self._scanner:
            return
        scanner, self._scanner = self._scanner, None
        await scanner.stop()
        logger.info("BLE scanning stopped")


__all__ = [
    "AdapterState",
    "BleakRadioAdapter",
    "DiscoveryEvent",
    "RadioAdapter",
    "classify_adapter_error",
    "convert_bleak_advertisement",
]

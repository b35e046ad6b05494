import asyncio
from typing import List, Optional

import pytest

from blead2mqtt.radio import AdapterState, DiscoveryEvent


class FakeRadioAdapter:
    """RadioAdapter のテスト用実装。呼び出し回数を数える。"""

    def __init__(
        self,
        state: AdapterState = AdapterState.POWERED_ON,
        state_on_refresh: Optional[AdapterState] = None,
        events: Optional[List[DiscoveryEvent]] = None,
        event_interval: float = 0.01,
    ):
        self.state = state
        self.state_on_refresh = state_on_refresh
        self.events = list(events or [])
        self.event_interval = event_interval
        self.state_listeners = []
        self.discover_listeners = []
        self.refresh_calls = 0
        self.cancel_refresh_calls = 0
        self.start_calls = 0
        self.stop_calls = 0
        self.removed_discover_listeners = 0
        self.removed_state_listeners = 0
        self.allow_duplicates = None
        self.start_error: Optional[BaseException] = None
        self._emitter: Optional[asyncio.Task] = None

    def add_state_listener(self, listener):
        self.state_listeners.append(listener)

    def remove_state_listener(self, listener):
        self.removed_state_listeners += 1
        self.state_listeners.remove(listener)

    def add_discover_listener(self, listener):
        self.discover_listeners.append(listener)

    def remove_discover_listener(self, listener):
        self.removed_discover_listeners += 1
        self.discover_listeners.remove(listener)

    def set_state(self, state: AdapterState) -> None:
        self.state = state
        for listener in self.state_listeners[:]:
            listener(state)

    def refresh_state(self) -> None:
        self.refresh_calls += 1
        if self.state_on_refresh is not None:
            asyncio.get_running_loop().call_soon(self.set_state, self.state_on_refresh)

    async def cancel_refresh(self) -> None:
        self.cancel_refresh_calls += 1

    def discover(self, event: DiscoveryEvent) -> None:
        for listener in self.discover_listeners[:]:
            listener(event)

    async def _emit_events(self) -> None:
        for event in self.events:
            await asyncio.sleep(self.event_interval)
            self.discover(event)

    async def start_scanning(self, allow_duplicates: bool = True) -> None:
        self.start_calls += 1
        self.allow_duplicates = allow_duplicates
        if self.start_error is not None:
            raise self.start_error
        if self.events:
            self._emitter = asyncio.create_task(self._emit_events())

    async def stop_scanning(self) -> None:
        self.stop_calls += 1
        if self._emitter:
            self._emitter.cancel()


class FakePublisher:
    def __init__(self):
        self.messages = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    async def publish(self, message) -> None:
        self.messages.append(message)

    async def __aenter__(self):
        self.connect_calls += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.disconnect_calls += 1


MJ_HT_V1_PAYLOAD = bytes([80, 32, 170, 1, 200, 12, 13, 14, 15, 16, 17, 13, 16, 4, 182, 0, 5, 1])


def make_event(address: str = "aa:bb:cc:dd:ee:ff", **kwargs) -> DiscoveryEvent:
    return DiscoveryEvent(address=address, **kwargs)


@pytest.fixture
def mj_ht_v1_event() -> DiscoveryEvent:
    return make_event(
        address="58:2d:34:10:20:30",
        address_type="public",
        rssi=-71,
        local_name="MJ_HT_V1",
        service_data=[("fe95", MJ_HT_V1_PAYLOAD)],
        service_uuids=["fe95"],
    )


@pytest.fixture
def fake_publisher() -> FakePublisher:
    return FakePublisher()

import asyncio


class Blead2MqttError(RuntimeError):
    """blead2mqtt 共通の例外基底クラス。"""


class ConfigError(Blead2MqttError, ValueError):
    pass


class AdapterUnavailable(Blead2MqttError):
    """Bluetooth アダプタが見つからない。"""


class AdapterPermissionDenied(Blead2MqttError):
    """BLE スキャンの権限がない。"""


class AdapterUnusableState(Blead2MqttError):
    """アダプタが使用できない状態（poweredOff / resetting / unsupported など）。"""

    def __init__(self, state: str, message: str = ""):
        self.state = state
        super().__init__(message or f'Unexpected adapter state "{state}"')


class ReadinessTimeout(Blead2MqttError, asyncio.TimeoutError):
    pass


class InvalidIdentifier(Blead2MqttError, ValueError):
    pass


class PayloadDecodeError(Blead2MqttError, ValueError):
    """既知デバイスのペイロードが解釈できない。"""


class UnrecognizedPayloadSubtype(PayloadDecodeError):
    def __init__(self, subtype: int):
        self.subtype = subtype
        super().__init__(f"Unrecognized payload subtype {subtype}")


class BrokerConnectTimeout(Blead2MqttError, asyncio.TimeoutError):
    pass


class PublishPrecondition(Blead2MqttError):
    pass


__all__ = [
    "Blead2MqttError",
    "ConfigError",
    "AdapterUnavailable",
    "AdapterPermissionDenied",
    "AdapterUnusableState",
    "ReadinessTimeout",
    "InvalidIdentifier",
    "PayloadDecodeError",
    "UnrecognizedPayloadSubtype",
    "BrokerConnectTimeout",
    "PublishPrecondition",
]

"""
MqttPublisher - MQTT ブローカーへの送信

aiomqtt ベース
- 接続タイムアウト
- last will / online 通知（status_topic）
- 文字列以外のペイロードは JSON にして送る
"""
import json
import logging
import ssl
from typing import Any, Optional

import aiomqtt

from .config import MqttConfig
from .errors import BrokerConnectTimeout, PublishPrecondition
from .tasks import time_limit
from .transform import Message

logger = logging.getLogger(__name__)


def serialize_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False)


class MqttPublisher:
    def __init__(self, cfg: MqttConfig):
        self.cfg = cfg
        self.connected: bool = False
        self.messages_sent: int = 0
        self._client: Optional[aiomqtt.Client] = None

    def _has_status(self, payload: Optional[str]) -> bool:
        return self.cfg.status_topic is not None and payload is not None

    def _create_client(self) -> aiomqtt.Client:
        will = None
        if self._has_status(self.cfg.status_offline_payload):
            will = aiomqtt.Will(
                topic=self.cfg.status_topic,
                payload=self.cfg.status_offline_payload,
                qos=self.cfg.status_qos,
                retain=self.cfg.status_retain,
            )
        return aiomqtt.Client(
            hostname=self.cfg.host,
            port=self.cfg.port,
            username=self.cfg.username or None,
            password=self.cfg.password or None,
            identifier=self.cfg.client_id,
            keepalive=self.cfg.keepalive,
            will=will,
            tls_context=ssl.create_default_context() if self.cfg.tls else None,
        )

    async def connect(self) -> None:
        client = self._create_client()
        logger.info("Connecting to MQTT broker %s:%s", self.cfg.host, self.cfg.port)
        await time_limit(
            client.__aenter__(),
            self.cfg.connect_timeout,
            BrokerConnectTimeout(
                f"Unable to connect to MQTT broker within {self.cfg.connect_timeout} seconds "
                "(Wrong IP address or port number?)"
            ),
        )
        self._client = client
        self.connected = True
        logger.info("Connected to MQTT broker %s:%s", self.cfg.host, self.cfg.port)

        if self._has_status(self.cfg.status_online_payload):
            try:
                await client.publish(
                    self.cfg.status_topic,
                    self.cfg.status_online_payload,
                    qos=self.cfg.status_qos,
                    retain=self.cfg.status_retain,
                )
            except BaseException:
                # __aexit__ は呼ばれないのでここで切断しておく
                await self.disconnect()
                raise

    async def disconnect(self) -> None:
        if not self._client:
            return
        client, self._client = self._client, None
        self.connected = False
        try:
            await client.__aexit__(None, None, None)
        except Exception as exc:  # noqa: BLE001
            logger.warning("MQTT disconnect error: %s", exc)
        logger.info(
            "Disconnected from MQTT broker (%d messages sent)",
            self.messages_sent,
            extra={"messages_sent": self.messages_sent},
        )

    async def publish(self, message: Message) -> None:
        if not message.topic:
            raise PublishPrecondition("No topic specified")
        if not self._client:
            raise PublishPrecondition("MQTT client is not connected")
        qos = self.cfg.default_qos if message.qos is None else message.qos
        retain = self.cfg.default_retain if message.retain is None else message.retain
        await self._client.publish(message.topic, serialize_payload(message.payload), qos=qos, retain=retain)
        self.messages_sent += 1
        logger.debug("Published: %s", message.topic, extra={"topic": message.topic})

    async def __aenter__(self) -> "MqttPublisher":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()


__all__ = ["MqttPublisher", "serialize_payload"]

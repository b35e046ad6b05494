import argparse
import asyncio
import logging
import sys
from contextlib import aclosing
from pathlib import Path
from typing import AsyncIterable, Awaitable, Callable, List, Optional

from .ble_scan import Advertisement, scan_for_advertisements
from .config import AppConfig, load_config, save_config
from .logging import setup_logging
from .mqtt_client import MqttPublisher
from .radio import BleakRadioAdapter, RadioAdapter
from .transform import Message, Transform, coerce_messages, create_transform

logger = logging.getLogger(__name__)

Publish = Callable[[Message], Awaitable[None]]


async def run_pipeline(advertisements: AsyncIterable[Advertisement], transform: Transform, publish: Publish) -> int:
    """アドバタイズを1件ずつ変換・送信する。送信したメッセージ数を返す。"""
    published = 0
    async for advertisement in advertisements:
        for message in coerce_messages(transform(advertisement)):
            await publish(message)
            published += 1
    return published


async def run(
    cfg: AppConfig,
    adapter: Optional[RadioAdapter] = None,
    publisher: Optional[MqttPublisher] = None,
) -> int:
    transform = create_transform(cfg.transform)
    if adapter is None:
        adapter = BleakRadioAdapter(probe_time=cfg.ble.probe_time, adapter=cfg.ble.adapter)
    if publisher is None:
        publisher = MqttPublisher(cfg.mqtt)

    async with publisher:
        scan = scan_for_advertisements(adapter, cfg.scan_time, cfg.ble.ready_timeout)
        async with aclosing(scan) as advertisements:
            published = await run_pipeline(advertisements, transform, publisher.publish)
    logger.info("Scan finished, %d messages published", published, extra={"published": published})
    return published


def _scan_time(value: str) -> Optional[float]:
    if value.lower() in ("forever", "none", "null"):
        return None
    seconds = float(value)
    if seconds < 0:
        raise argparse.ArgumentTypeError("scan time must not be negative")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blead2mqtt",
        description="Publish BLE advertisements to an MQTT broker",
    )
    parser.add_argument("-c", "--config", help="YAML configuration file (default: $BLEAD2MQTT_CONFIG)")
    parser.add_argument("--log-level", help="log level (DEBUG, INFO, WARNING, ...)")
    parser.add_argument("--scan-time", type=_scan_time, default=argparse.SUPPRESS,
                        help='seconds to scan, or "forever"')
    parser.add_argument("--dump-default-config", metavar="PATH",
                        help="write the default configuration to PATH and exit")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.dump_default_config:
        save_config(AppConfig(), Path(args.dump_default_config))
        return 0

    try:
        cfg = load_config(args.config)
    except Exception as exc:  # noqa: BLE001
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    if hasattr(args, "scan_time"):
        cfg.scan_time = args.scan_time
    setup_logging(level=args.log_level or cfg.log.level, log_dir=cfg.log.dir, json_output=cfg.log.json)

    try:
        asyncio.run(run(cfg))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except Exception as exc:  # noqa: BLE001
        logger.debug("Fatal error", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


__all__ = ["build_parser", "main", "run", "run_pipeline"]

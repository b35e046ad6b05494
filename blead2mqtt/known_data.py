"""
既知センサーのアドバタイズ解析。

現状は Xiaomi 温湿度計 MJ_HT_V1（サービス 0xFE95 のサービスデータ）のみ対応。
"""
from typing import Any, Dict, Optional, Sequence

from .errors import PayloadDecodeError, UnrecognizedPayloadSubtype
from .identifiers import canonicalize_bluetooth_uuid

MJ_HT_V1_NAME = "MJ_HT_V1"
MJ_HT_V1_SERVICE_UUID = canonicalize_bluetooth_uuid(0xFE95)

# サブタイプ(data[11]) -> 解析に必要なバイト長
_MJ_HT_V1_REQUIRED_LENGTH = {4: 16, 6: 16, 10: 15, 13: 18}


def parse_mj_ht_v1_decimal_value(v0: int, v1: int) -> float:
    """リトルエンディアン 16bit 2の補数を 10 で割った値。"""
    return int.from_bytes(bytes((v0, v1)), "little", signed=True) / 10


def parse_mj_ht_v1_service_fe95_data(data: Sequence[int]) -> Dict[str, Any]:
    if len(data) < 12:
        raise PayloadDecodeError(f"MJ_HT_V1 payload too short ({len(data)} bytes)")
    subtype = data[11]
    required = _MJ_HT_V1_REQUIRED_LENGTH.get(subtype)
    if required is None:
        raise UnrecognizedPayloadSubtype(subtype)
    if len(data) < required:
        raise PayloadDecodeError(
            f"MJ_HT_V1 payload subtype {subtype} requires {required} bytes, got {len(data)}"
        )

    if subtype == 4:
        return {"temperature": parse_mj_ht_v1_decimal_value(data[14], data[15])}
    if subtype == 6:
        return {"humidity": parse_mj_ht_v1_decimal_value(data[14], data[15])}
    if subtype == 10:
        return {"battery": data[14]}
    return {
        "temperature": parse_mj_ht_v1_decimal_value(data[14], data[15]),
        "humidity": parse_mj_ht_v1_decimal_value(data[16], data[17]),
    }


def parse_mj_ht_v1_advertisement(advertisement) -> Optional[Dict[str, Any]]:
    if advertisement.name != MJ_HT_V1_NAME:
        return None
    data = advertisement.service_data.get(MJ_HT_V1_SERVICE_UUID)
    if data is None:
        return None
    return parse_mj_ht_v1_service_fe95_data(data)


def parse_known_data(advertisement) -> Dict[str, Any]:
    """
    アドバタイズから既知の追加データを取り出す。
    該当なしなら空 dict、既知デバイスなのに解釈できない場合は PayloadDecodeError。

    例: name="MJ_HT_V1", FE95 のデータが
    (80, 32, 170, 1, 200, 12, 13, 14, 15, 16, 17, 13, 16, 4, 182, 0, 5, 1) なら
    {"temperature": 18.2, "humidity": 26.1}
    """
    known: Dict[str, Any] = {}
    for parser in (parse_mj_ht_v1_advertisement,):
        known.update(parser(advertisement) or {})
    return known


__all__ = [
    "MJ_HT_V1_NAME",
    "MJ_HT_V1_SERVICE_UUID",
    "parse_known_data",
    "parse_mj_ht_v1_advertisement",
    "parse_mj_ht_v1_decimal_value",
    "parse_mj_ht_v1_service_fe95_data",
]

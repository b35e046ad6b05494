"""
Bluetooth UUID / MAC アドレス / オクテット列の正規化ヘルパー。

16bit・32bit の短縮 UUID と 128bit UUID を同一の文字列表現
（例: "0000FE95-0000-1000-8000-00805F9B34FB"）に揃える。
"""
import re
from typing import List, Sequence, Union

from .errors import InvalidIdentifier

BLUETOOTH_BASE_UUID_SUFFIX = "00001000800000805F9B34FB"

_NON_HEX = re.compile(r"[^0-9A-Fa-f]")

BluetoothUuid = Union[int, str]
Octets = Union[bytes, bytearray, Sequence[int], str]


def strip_hex_string(hex_string: str) -> str:
    return _NON_HEX.sub("", hex_string)


def _set_case(value: str, upper_case: bool = True) -> str:
    return value.upper() if upper_case else value.lower()


def canonicalize_hex_string(hex_string: str, upper_case: bool = True) -> str:
    return _set_case(strip_hex_string(hex_string), upper_case)


def canonicalize_uuid_string(uuid: str, upper_case: bool = True) -> str:
    hex_string = canonicalize_hex_string(uuid, upper_case)
    if len(hex_string) != 32:
        raise InvalidIdentifier(
            f"Invalid UUID {uuid!r}, must be a string with exactly 32 hexadecimal characters"
        )
    return "-".join(
        (hex_string[0:8], hex_string[8:12], hex_string[12:16], hex_string[16:20], hex_string[20:32])
    )


def canonicalize_bluetooth_uuid(bluetooth_uuid: BluetoothUuid, upper_case: bool = True) -> str:
    """
    Bluetooth UUID を 128bit のダッシュ区切り文字列へ変換する。

    受け付ける形式:
    - 0 <= n < 2**32 の整数（例: 0xFE95）
    - 1〜8 桁の16進文字列（例: "fe95"）。32bit 値として解釈する
    - 32 桁の16進文字列（例: "0000FE9500001000800000805F9B34FB"）

    16進以外の文字（ダッシュ等）は長さ判定の前に取り除く。
    """
    if isinstance(bluetooth_uuid, bool):
        raise InvalidIdentifier(f"Invalid Bluetooth UUID {bluetooth_uuid!r}")
    if isinstance(bluetooth_uuid, int):
        if not 0 <= bluetooth_uuid < 2 ** 32:
            raise InvalidIdentifier(f"Bluetooth UUID {bluetooth_uuid} is out of the 32 bit range")
        bluetooth_uuid = format(bluetooth_uuid, "x")
    elif not isinstance(bluetooth_uuid, str):
        raise InvalidIdentifier(f"Invalid Bluetooth UUID {bluetooth_uuid!r}")

    hex_string = strip_hex_string(bluetooth_uuid)
    if len(hex_string) < 8:
        hex_string = hex_string.rjust(8, "0")
    if len(hex_string) == 8:
        hex_string += BLUETOOTH_BASE_UUID_SUFFIX
    return canonicalize_uuid_string(hex_string, upper_case)


def _octets_to_hex_string(octets: Sequence[int]) -> str:
    return "".join(f"{octet:02x}" for octet in octets)


def format_octets_hex_string(octets: Octets, octet_separator: str = "", upper_case: bool = True) -> str:
    """
    オクテット列を16進文字列に整形する。

    >>> format_octets_hex_string("123456789abc", ":", False)
    '12:34:56:78:9a:bc'
    >>> format_octets_hex_string([123, 201, 243, 17, 9])
    '7BC9F31109'
    """
    hex_string = octets if isinstance(octets, str) else _octets_to_hex_string(octets)
    hex_string = canonicalize_hex_string(hex_string, upper_case)
    return octet_separator.join(hex_string[i:i + 2] for i in range(0, len(hex_string), 2))


def convert_octets_hex_string_to_octets_array(octets_hex_string: str) -> List[int]:
    hex_string = strip_hex_string(octets_hex_string)
    return [int(hex_string[i:i + 2], 16) for i in range(0, len(hex_string), 2)]


__all__ = [
    "BLUETOOTH_BASE_UUID_SUFFIX",
    "canonicalize_bluetooth_uuid",
    "canonicalize_hex_string",
    "canonicalize_uuid_string",
    "convert_octets_hex_string_to_octets_array",
    "format_octets_hex_string",
    "strip_hex_string",
]

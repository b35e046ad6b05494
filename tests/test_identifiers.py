import random

import pytest

from blead2mqtt.errors import InvalidIdentifier
from blead2mqtt.identifiers import (
    canonicalize_bluetooth_uuid,
    convert_octets_hex_string_to_octets_array,
    format_octets_hex_string,
)

FE95 = "0000FE95-0000-1000-8000-00805F9B34FB"


@pytest.mark.parametrize("value", [0xFE95, 65173, "fe95", "FE95", "0000fe95", "0000FE9500001000800000805F9B34FB", FE95])
def test_short_and_full_forms_share_canonical_uuid(value):
    assert canonicalize_bluetooth_uuid(value) == FE95


def test_canonical_uuid_is_idempotent_for_integers():
    rng = random.Random(1234)
    samples = [0, 1, 0xFFFF, 0x10000, 2 ** 32 - 1] + [rng.randrange(2 ** 32) for _ in range(200)]
    for n in samples:
        canonical = canonicalize_bluetooth_uuid(n)
        assert canonicalize_bluetooth_uuid(canonical) == canonical
        assert len(canonical) == 36
        assert [i for i, c in enumerate(canonical) if c == "-"] == [8, 13, 18, 23]


def test_full_length_uuid_keeps_its_own_suffix():
    assert canonicalize_bluetooth_uuid("6e400001-b5a3-f393-e0a9-e50e24dcca9e") == "6E400001-B5A3-F393-E0A9-E50E24DCCA9E"


def test_lower_case_output():
    assert canonicalize_bluetooth_uuid(0x180F, upper_case=False) == "0000180f-0000-1000-8000-00805f9b34fb"


@pytest.mark.parametrize("value", ["123456789", "0" * 31, "0" * 33, "0123456789abcdef0", -1, 2 ** 32, True, None, 1.5])
def test_invalid_identifiers_are_rejected(value):
    with pytest.raises(InvalidIdentifier):
        canonicalize_bluetooth_uuid(value)


def test_short_strings_are_zero_padded():
    assert canonicalize_bluetooth_uuid("0") == "00000000-0000-1000-8000-00805F9B34FB"
    assert canonicalize_bluetooth_uuid("") == "00000000-0000-1000-8000-00805F9B34FB"


def test_format_octets_hex_string():
    assert format_octets_hex_string("123456789abc", ":", False) == "12:34:56:78:9a:bc"
    assert format_octets_hex_string([123, 201, 243, 17, 9]) == "7BC9F31109"
    assert format_octets_hex_string(b"\x01\xab") == "01AB"
    assert format_octets_hex_string("aa:bb:cc:dd:ee:ff", ":") == "AA:BB:CC:DD:EE:FF"


def test_convert_octets_hex_string_to_octets_array():
    assert convert_octets_hex_string_to_octets_array("fe9c23") == [254, 156, 35]
    assert convert_octets_hex_string_to_octets_array("FE:9C:23") == [254, 156, 35]

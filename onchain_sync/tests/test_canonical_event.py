import pytest
from onchain_sync.utils.types import CanonicalEvent, to_int, to_hex_str
from onchain_sync.utils.log_utils import chunk_block_range


RAW = {
    "address": "0xAbCdEf0000000000000000000000000000000001",
    "topics": ["0xDDF252AD1BE2C89B69C2B068FC378DAA952BA7F163C4A11628F55A4DF523B3EF"],
    "data": "0x",
    "transactionHash": "0xABC0000000000000000000000000000000000000000000000000000000000001",
    "logIndex": "0x1a",
    "blockNumber": "0x10",
    "blockHash": "0xF00D000000000000000000000000000000000000000000000000000000000000",
}


def test_from_raw_normalises_case_and_hex_ints():
    event = CanonicalEvent.from_raw(RAW, network="base-sepolia")

    assert event.contract_address == "0xabcdef0000000000000000000000000000000001"
    assert event.topics[0] == RAW["topics"][0].lower()
    assert event.transaction_hash == RAW["transactionHash"].lower()
    assert event.log_index == 26
    assert event.block_number == 16
    assert event.removed is False
    assert event.natural_key == ("base-sepolia", RAW["transactionHash"].lower(), 26)


def test_to_raw_stores_canonical_hex_and_round_trips():
    event = CanonicalEvent.from_raw({**RAW, "logIndex": 26, "blockNumber": 16}, network="base-sepolia")
    raw = event.to_raw()

    assert raw["logIndex"] == "0x1a"
    assert raw["blockNumber"] == "0x10"
    assert CanonicalEvent.from_raw(raw) == event


def test_removed_flag_is_kept():
    event = CanonicalEvent.from_raw({**RAW, "removed": True}, network="base-sepolia")
    assert event.removed is True


def test_missing_required_field_raises():
    raw = dict(RAW)
    del raw["transactionHash"]
    with pytest.raises(KeyError):
        CanonicalEvent.from_raw(raw, network="base-sepolia")


@pytest.mark.parametrize("value, expected", [("0x0", 0), ("0xff", 255), ("42", 42), (7, 7), (None, None)])
def test_to_int(value, expected):
    assert to_int(value) == expected


def test_to_hex_str_accepts_bytes():
    assert to_hex_str(b"\x01\xab") == "0x01ab"


def test_chunk_block_range_is_inclusive_and_contiguous():
    assert chunk_block_range(100, 100, 500) == [(100, 100)]
    assert chunk_block_range(0, 1000, 500) == [(0, 499), (500, 999), (1000, 1000)]
    assert chunk_block_range(10, 9, 5) == []

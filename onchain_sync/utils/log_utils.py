# onchain_sync/utils/log_utils.py
from web3.datastructures import AttributeDict
from hexbytes import HexBytes
from typing import List
from eth_utils import encode_hex


def sanitize_log(log) -> dict:
    """Convert a Web3 ``LogReceipt`` to a JSON-safe dict with ``0x`` hex values."""
    out = {}
    for k, v in dict(log).items():
        if isinstance(v, (bytes, bytearray, HexBytes)):
            out[k] = encode_hex(bytes(v))
        elif isinstance(v, AttributeDict):
            out[k] = dict(v)
        elif isinstance(v, (list, tuple)):
            out[k] = [encode_hex(bytes(x)) if isinstance(x, (bytes, bytearray, HexBytes)) else x for x in v]
        else:
            out[k] = v
    return out


def chunk_block_range(from_block: int, to_block: int, chunk_size: int) -> List[tuple]:
    """Inclusive ``[from, to]`` split into consecutive ranges of ≤ ``chunk_size`` blocks."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if from_block > to_block:
        return []
    return [
        (start, min(start + chunk_size - 1, to_block))
        for start in range(from_block, to_block + 1, chunk_size)
    ]


def batched(items: list, size: int) -> List[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]

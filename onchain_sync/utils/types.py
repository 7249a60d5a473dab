from typing import NamedTuple, Optional, Tuple, Union


def to_int(value: Union[int, str, None]) -> Optional[int]:
    """Decode an int that may arrive as ``0x`` hex, decimal text or int."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


def to_hex_str(value) -> str:
    """Lower‑case ``0x`` hex string from bytes / HexBytes / str."""
    if value is None:
        raise ValueError("missing hex value")
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).strip().lower()
    return text if text.startswith("0x") else "0x" + text


class CanonicalEvent(NamedTuple):
    """Provider-agnostic log record. Natural key: (network, transaction_hash, log_index)."""

    network: str
    contract_address: str
    topics: Tuple[str, ...]
    data: str
    transaction_hash: str
    log_index: int
    block_number: int
    block_hash: Optional[str] = None
    removed: bool = False
    block_timestamp: Optional[int] = None
    transaction_index: Optional[int] = None

    @property
    def natural_key(self) -> Tuple[str, str, int]:
        return (self.network, self.transaction_hash, self.log_index)

    @property
    def signature(self) -> Optional[str]:
        return self.topics[0] if self.topics else None

    def to_raw(self) -> dict:
        """Wire-ish dict (hex ints) persisted as ``raw_event``."""
        return {
            "network": self.network,
            "address": self.contract_address,
            "topics": list(self.topics),
            "data": self.data,
            "transactionHash": self.transaction_hash,
            "logIndex": hex(self.log_index),
            "blockNumber": hex(self.block_number),
            "blockHash": self.block_hash,
            "removed": self.removed,
            "blockTimestamp": self.block_timestamp,
            "transactionIndex": hex(self.transaction_index) if self.transaction_index is not None else None,
        }

    @classmethod
    def from_raw(cls, raw: dict, network: Optional[str] = None) -> "CanonicalEvent":
        """Inverse of :meth:`to_raw`; ints may be hex strings or plain ints.

        Raises ``KeyError`` / ``ValueError`` on missing or unparseable fields.
        """
        data = raw.get("data") or "0x"
        block_hash = raw.get("blockHash")
        return cls(
            network=raw.get("network") or network,
            contract_address=to_hex_str(raw["address"]),
            topics=tuple(to_hex_str(t) for t in raw.get("topics") or ()),
            data=to_hex_str(data),
            transaction_hash=to_hex_str(raw["transactionHash"]),
            log_index=to_int(raw["logIndex"]),
            block_number=to_int(raw["blockNumber"]),
            block_hash=to_hex_str(block_hash) if block_hash else None,
            removed=bool(raw.get("removed") or False),
            block_timestamp=to_int(raw.get("blockTimestamp")),
            transaction_index=to_int(raw.get("transactionIndex")),
        )

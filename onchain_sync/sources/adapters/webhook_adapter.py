# onchain_sync/sources/adapters/webhook_adapter.py
"""
Push-side adapter: provider webhook JSON → ``CanonicalEvent`` list.

Three body shapes are recognised, discriminated by the keys present:

* GRAPHQL_NESTED  – ``{"event": {"data": {"block": {...logs}}}}`` (Alchemy custom
  webhooks; also accepted without the ``event`` envelope). Each log carries
  ``account.address`` and ``transaction.hash``; block number/hash/timestamp
  live on the block.
* FLAT_ARRAY      – ``[{address, topics, data, transactionHash, logIndex, …}, …]``
  (QuickNode streams, raw ``eth_getLogs`` dumps).
* LOGS_WRAPPED    – ``{"logs": [...]}`` or a JSON-RPC ``{"result": [...]}`` envelope.

Anything else is UNKNOWN and yields zero events.
"""
from enum import Enum
from typing import List, Optional, Tuple
import logging

from onchain_sync.pipeline.errors import MalformedPayload
from onchain_sync.utils.types import CanonicalEvent, to_hex_str, to_int

log = logging.getLogger(__name__)


class PayloadShape(str, Enum):
    GRAPHQL_NESTED = "graphql_nested"
    FLAT_ARRAY     = "flat_array"
    LOGS_WRAPPED   = "logs_wrapped"
    UNKNOWN        = "unknown"


def _graphql_block(payload: dict) -> Optional[dict]:
    event = payload.get("event")
    if isinstance(event, dict) and isinstance(event.get("data"), dict):
        block = event["data"].get("block")
        if isinstance(block, dict):
            return block
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("block"), dict):
        return data["block"]
    return None


def detect_shape(payload) -> PayloadShape:
    if isinstance(payload, list):
        return PayloadShape.FLAT_ARRAY
    if not isinstance(payload, dict):
        return PayloadShape.UNKNOWN
    if _graphql_block(payload) is not None:
        return PayloadShape.GRAPHQL_NESTED
    if isinstance(payload.get("logs"), list) or isinstance(payload.get("result"), list):
        return PayloadShape.LOGS_WRAPPED
    return PayloadShape.UNKNOWN


class WebhookAdapter:
    """``normalize(payload) -> list[CanonicalEvent]`` for one configured network."""

    def __init__(self, network: str):
        self.network = network

    def normalize(self, payload) -> List[CanonicalEvent]:
        shape, events = self.normalize_with_shape(payload)
        return events

    def normalize_with_shape(self, payload) -> Tuple[PayloadShape, List[CanonicalEvent]]:
        shape = detect_shape(payload)

        if shape is PayloadShape.GRAPHQL_NESTED:
            block = _graphql_block(payload)
            logs = block.get("logs") or []
            return shape, [self._from_graphql(block, entry, i) for i, entry in enumerate(logs)]

        if shape is PayloadShape.FLAT_ARRAY:
            return shape, [self._from_flat(entry, i) for i, entry in enumerate(payload)]

        if shape is PayloadShape.LOGS_WRAPPED:
            logs = payload.get("logs")
            if logs is None:
                logs = payload.get("result")
            return shape, [self._from_flat(entry, i) for i, entry in enumerate(logs)]

        raise MalformedPayload(f"unrecognised payload shape ({type(payload).__name__})")

    # ------------------------------------------------------------------
    # per-log decoders
    # ------------------------------------------------------------------
    def _from_graphql(self, block: dict, entry: dict, position: int) -> CanonicalEvent:
        try:
            tx = entry.get("transaction") or {}
            account = entry.get("account") or {}
            address = account.get("address") or entry.get("address")
            block_hash = block.get("hash")
            return CanonicalEvent(
                network=self.network,
                contract_address=to_hex_str(address),
                topics=tuple(to_hex_str(t) for t in entry.get("topics") or ()),
                data=to_hex_str(entry.get("data") or "0x"),
                transaction_hash=to_hex_str(tx["hash"]),
                log_index=to_int(entry["index"]),
                block_number=to_int(block["number"]),
                block_hash=to_hex_str(block_hash) if block_hash else None,
                removed=bool(entry.get("removed") or False),
                block_timestamp=to_int(block.get("timestamp")),
                transaction_index=to_int(tx.get("index")),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedPayload(f"log #{position}: {exc!r}") from exc

    def _from_flat(self, entry: dict, position: int) -> CanonicalEvent:
        if not isinstance(entry, dict):
            raise MalformedPayload(f"log #{position} is not an object")
        try:
            return CanonicalEvent.from_raw(entry, network=self.network)._replace(network=self.network)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedPayload(f"log #{position}: {exc!r}") from exc

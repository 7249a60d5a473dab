from typing import Iterable, List
from onchain_sync.pipeline.errors import MalformedPayload
from onchain_sync.utils.log_utils import sanitize_log
from onchain_sync.utils.types import CanonicalEvent


class RpcAdapter:
    """Pull-side adapter: ``eth_getLogs`` receipts (HexBytes / AttributeDict) → canonical events."""

    def __init__(self, network: str):
        self.network = network

    def normalize(self, logs: Iterable) -> List[CanonicalEvent]:
        events = []
        for position, receipt in enumerate(logs):
            try:
                raw = sanitize_log(receipt)
                events.append(CanonicalEvent.from_raw(raw)._replace(network=self.network))
            except (KeyError, TypeError, ValueError) as exc:
                raise MalformedPayload(f"rpc log #{position}: {exc!r}") from exc
        return events

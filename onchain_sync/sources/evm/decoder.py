import eth_abi
from eth_abi.exceptions import DecodingError
from eth_utils import decode_hex
from onchain_sync.pipeline.errors import EventDecodeError
from onchain_sync.utils.types import CanonicalEvent
from onchain_sync.sources.evm.abi import topic_of


def decode_event(event_abi: dict, event: CanonicalEvent) -> dict:
    """
    Decode ``event`` against ``event_abi`` → ``{arg_name: value}``.

    Indexed args come from ``topics[1:]`` (static types only), the rest from
    ``data``. Addresses are returned lower‑case.
    """
    if event.signature != topic_of(event_abi):
        raise EventDecodeError(f"topic {event.signature} is not {event_abi['name']}")

    indexed     = [i for i in event_abi["inputs"] if i["indexed"]]
    non_indexed = [i for i in event_abi["inputs"] if not i["indexed"]]

    if len(event.topics) - 1 != len(indexed):
        raise EventDecodeError(
            f"{event_abi['name']}: expected {len(indexed)} indexed topics, got {len(event.topics) - 1}"
        )

    try:
        args = {}
        for spec, topic in zip(indexed, event.topics[1:]):
            (args[spec["name"]],) = eth_abi.decode([spec["type"]], decode_hex(topic))

        values = eth_abi.decode([i["type"] for i in non_indexed], decode_hex(event.data or "0x"))
        for spec, value in zip(non_indexed, values):
            args[spec["name"]] = value
    except (DecodingError, ValueError, TypeError) as exc:
        raise EventDecodeError(f"{event_abi['name']}: cannot decode log: {exc}") from exc

    for spec in event_abi["inputs"]:
        if spec["type"] == "address":
            args[spec["name"]] = args[spec["name"]].lower()
    return args

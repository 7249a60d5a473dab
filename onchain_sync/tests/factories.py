"""ABI-encoded CanonicalEvent builders for the tests."""
from eth_abi import encode
from eth_utils import encode_hex

from onchain_sync.sources.evm import abi
from onchain_sync.sources.evm.abi import topic_of
from onchain_sync.utils.types import CanonicalEvent

NETWORK = "base-sepolia"

POOL    = "0x" + "11" * 20
USER    = "0x" + "22" * 20
TOKEN   = "0x" + "33" * 20
OWNER   = "0x" + "44" * 20
FACTORY = "0x" + "55" * 20
PAIR    = "0x" + "66" * 20
TOKEN0  = "0x" + "77" * 20
TOKEN1  = "0x" + "88" * 20
ROUTER  = "0x" + "99" * 20


def tx(n: int) -> str:
    return "0x" + f"{n:064x}"


def make_event(event_abi: dict, args: dict, address: str, tx_hash: str = None, log_index: int = 0,
               block_number: int = 100, removed: bool = False, block_timestamp: int = 1_700_000_000,
               network: str = NETWORK) -> CanonicalEvent:
    indexed = [i for i in event_abi["inputs"] if i["indexed"]]
    plain   = [i for i in event_abi["inputs"] if not i["indexed"]]
    topics = (topic_of(event_abi),) + tuple(
        encode_hex(encode([i["type"]], [args[i["name"]]])) for i in indexed
    )
    data = encode_hex(encode([i["type"] for i in plain], [args[i["name"]] for i in plain]))
    return CanonicalEvent(
        network=network,
        contract_address=address.lower(),
        topics=topics,
        data=data,
        transaction_hash=tx_hash or tx(block_number * 1000 + log_index),
        log_index=log_index,
        block_number=block_number,
        block_hash="0x" + f"{block_number:064x}",
        removed=removed,
        block_timestamp=block_timestamp,
    )


def removed(event: CanonicalEvent) -> CanonicalEvent:
    return event._replace(removed=True)


# ── pool lifecycle ───────────────────────────────────────────────────
def pool_created(pool=POOL, block_number=100, log_index=0, target=10_000, cap=0, **kw):
    return make_event(abi.POOL_CREATED_ABI, {
        "pool": pool, "name": "Solar Farm #1", "uniqueId": "solar-1", "endTime": 1_800_000_000,
        "depositToken": TOKEN, "owner": OWNER, "creator": OWNER,
        "targetAmount": target, "capAmount": cap,
    }, address=FACTORY, block_number=block_number, log_index=log_index, **kw)


def tier_committed(amount, pool=POOL, user=USER, tier_id=1, block_number=101, log_index=0, **kw):
    return make_event(abi.TIER_COMMITTED_ABI, {"user": user, "tierId": tier_id, "amount": amount},
                      address=pool, block_number=block_number, log_index=log_index, **kw)


def status_updated(code, pool=POOL, block_number=102, log_index=0, **kw):
    return make_event(abi.POOL_STATUS_UPDATED_ABI, {"newStatus": code},
                      address=pool, block_number=block_number, log_index=log_index, **kw)


def revenue_received(amount, pool=POOL, block_number=103, log_index=0, **kw):
    return make_event(abi.REVENUE_RECEIVED_ABI, {"amount": amount},
                      address=pool, block_number=block_number, log_index=log_index, **kw)



def revenue_distributed(amount, pool=POOL, block_number=104, log_index=0, **kw):
    return make_event(abi.REVENUE_DISTRIBUTED_ABI, {"amount": amount},
                      address=pool, block_number=block_number, log_index=log_index, **kw)


# ── AMM pair ─────────────────────────────────────────────────────────
def pair_created(pair=PAIR, block_number=200, log_index=0, **kw):
    return make_event(abi.PAIR_CREATED_ABI, {"token0": TOKEN0, "token1": TOKEN1, "pair": pair, "pairIndex": 1},
                      address=FACTORY, block_number=block_number, log_index=log_index, **kw)


def mint(amount0, amount1, pair=PAIR, block_number=201, log_index=0, **kw):
    return make_event(abi.MINT_ABI, {"sender": ROUTER, "amount0": amount0, "amount1": amount1},
                      address=pair, block_number=block_number, log_index=log_index, **kw)


def burn(amount0, amount1, pair=PAIR, block_number=203, log_index=0, **kw):
    return make_event(abi.BURN_ABI, {"sender": ROUTER, "amount0": amount0, "amount1": amount1, "to": USER},
                      address=pair, block_number=block_number, log_index=log_index, **kw)


def swap(amount0_in=0, amount1_in=0, amount0_out=0, amount1_out=0, pair=PAIR, block_number=202, log_index=0, **kw):
    return make_event(abi.SWAP_ABI, {
        "sender": ROUTER, "amount0In": amount0_in, "amount1In": amount1_in,
        "amount0Out": amount0_out, "amount1Out": amount1_out, "to": USER,
    }, address=pair, block_number=block_number, log_index=log_index, **kw)


def sync(reserve0, reserve1, pair=PAIR, block_number=202, log_index=0, **kw):
    return make_event(abi.SYNC_ABI, {"reserve0": reserve0, "reserve1": reserve1},
                      address=pair, block_number=block_number, log_index=log_index, **kw)


def lp_transfer(sender, recipient, value, pair=PAIR, block_number=201, log_index=0, **kw):
    return make_event(abi.TRANSFER_ABI, {"from": sender, "to": recipient, "value": value},
                      address=pair, block_number=block_number, log_index=log_index, **kw)


# ── RPC ──────────────────────────────────────────────────────────────
class FakeProvider:
    """In-memory eth_getLogs: serves RPC-shaped logs by block range."""

    def __init__(self, events, latest=1_000, failing=()):
        self.logs = [e.to_raw() for e in events]
        self.latest = latest
        self.failing = set(failing)
        self.calls = []

    def get_logs(self, from_block, to_block, topics=None, addresses=None):
        self.calls.append((from_block, to_block, topics, addresses))
        if (from_block, to_block) in self.failing:
            raise TimeoutError("upstream timeout")
        return [
            log for log in self.logs
            if from_block <= int(log["blockNumber"], 16) <= to_block
        ]

    def get_latest_block(self):
        return self.latest

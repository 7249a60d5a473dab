# onchain_sync/sources/evm/abi.py
# --------------------------------------------------------------
# Event ABIs for the funding-pool contracts and Uniswap V2 pairs.
# --------------------------------------------------------------
from eth_utils import event_abi_to_log_topic, encode_hex


def _event(name: str, *inputs) -> dict:
    return {
        "anonymous": False,
        "inputs": [
            {"indexed": indexed, "internalType": typ, "name": arg, "type": typ}
            for arg, typ, indexed in inputs
        ],
        "name": name,
        "type": "event",
    }


def topic_of(event_abi: dict) -> str:
    return encode_hex(event_abi_to_log_topic(event_abi))


# ── Funding pool lifecycle ─────────────────────────────────────────
POOL_CREATED_ABI = _event(
    "PoolCreated",
    ("pool",          "address", True),
    ("name",          "string",  False),
    ("uniqueId",      "string",  False),
    ("endTime",       "uint256", False),
    ("depositToken",  "address", False),
    ("owner",         "address", False),
    ("creator",       "address", False),
    ("targetAmount",  "uint256", False),
    ("capAmount",     "uint256", False),
)

TIER_COMMITTED_ABI = _event(
    "TierCommitted",
    ("user",   "address", True),
    ("tierId", "uint256", True),
    ("amount", "uint256", False),
)

POOL_STATUS_UPDATED_ABI = _event(
    "PoolStatusUpdated",
    ("newStatus", "uint8", False),
)

# per-pool contracts: the emitting address is the pool, so no poolId argument.
# Singleton deployments declare (bytes32 indexed poolId, uint256 amount) instead.
REVENUE_RECEIVED_ABI = _event(
    "RevenueReceived",
    ("amount", "uint256", False),
)

REVENUE_DISTRIBUTED_ABI = _event(
    "RevenueDistributed",
    ("amount", "uint256", False),
)

# ── Uniswap V2 factory / pair ───────────────────────────────────────
PAIR_CREATED_ABI = _event(
    "PairCreated",
    ("token0",    "address", True),
    ("token1",    "address", True),
    ("pair",      "address", False),
    ("pairIndex", "uint256", False),
)

MINT_ABI = _event(
    "Mint",
    ("sender",  "address", True),
    ("amount0", "uint256", False),
    ("amount1", "uint256", False),
)

BURN_ABI = _event(
    "Burn",
    ("sender",  "address", True),
    ("amount0", "uint256", False),
    ("amount1", "uint256", False),
    ("to",      "address", True),
)

SWAP_ABI = _event(
    "Swap",
    ("sender",     "address", True),
    ("amount0In",  "uint256", False),
    ("amount1In",  "uint256", False),
    ("amount0Out", "uint256", False),
    ("amount1Out", "uint256", False),
    ("to",         "address", True),
)

SYNC_ABI = _event(
    "Sync",
    ("reserve0", "uint112", False),
    ("reserve1", "uint112", False),
)

# LP token transfers of the pair itself (mint/burn of liquidity)
TRANSFER_ABI = _event(
    "Transfer",
    ("from",  "address", True),
    ("to",    "address", True),
    ("value", "uint256", False),
)

POOL_CREATED_TOPIC        = topic_of(POOL_CREATED_ABI)
TIER_COMMITTED_TOPIC      = topic_of(TIER_COMMITTED_ABI)
POOL_STATUS_UPDATED_TOPIC = topic_of(POOL_STATUS_UPDATED_ABI)
REVENUE_RECEIVED_TOPIC    = topic_of(REVENUE_RECEIVED_ABI)
REVENUE_DISTRIBUTED_TOPIC = topic_of(REVENUE_DISTRIBUTED_ABI)
PAIR_CREATED_TOPIC        = topic_of(PAIR_CREATED_ABI)
MINT_TOPIC                = topic_of(MINT_ABI)
BURN_TOPIC                = topic_of(BURN_ABI)
SWAP_TOPIC                = topic_of(SWAP_ABI)
SYNC_TOPIC                = topic_of(SYNC_ABI)
TRANSFER_TOPIC            = topic_of(TRANSFER_ABI)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

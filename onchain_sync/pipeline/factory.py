"""Wires the pipeline from ``config.settings``; the only place settings are read for it."""
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from onchain_sync.config import settings
from onchain_sync.pipeline.backfill.orchestrator import BackfillOrchestrator
from onchain_sync.pipeline.backfill.run_ledger import RunLedger
from onchain_sync.pipeline.processor import EventProcessor
from onchain_sync.pipeline.router import EventRouter, build_default_registry
from onchain_sync.sources.adapters.rpc_adapter import RpcAdapter
from onchain_sync.sources.evm import abi

log = logging.getLogger(__name__)

PAIR_EMITTED_TOPICS = (
    abi.MINT_TOPIC, abi.BURN_TOPIC, abi.SWAP_TOPIC, abi.SYNC_TOPIC, abi.TRANSFER_TOPIC,
)


def build_processor(session_factory: Callable[[], Session], router: Optional[EventRouter] = None) -> EventProcessor:
    return EventProcessor(
        session_factory,
        router or EventRouter(build_default_registry()),
        max_pending_attempts=settings.MAX_PENDING_ATTEMPTS,
    )


def build_orchestrator(
    session_factory: Callable[[], Session],
    provider=None,
    chunk_size: Optional[int] = None,
    addresses: Optional[list] = None,
) -> BackfillOrchestrator:
    if provider is None:
        from onchain_sync.sources.evm.client import get_web3_client
        from onchain_sync.sources.evm.events import Web3LogProvider

        provider = Web3LogProvider(get_web3_client(settings.RPC_URL, timeout=settings.RPC_TIMEOUT_SECONDS))

    processor = build_processor(session_factory)
    addresses = addresses or settings.TRACKED_ADDRESSES or None
    topics = processor.router.topics()
    if not addresses:
        # every V2 pair and ERC-20 on the chain emits these; unfiltered they swamp getLogs
        log.warning("⚠️ No TRACKED_ADDRESSES configured, backfilling without pair events.")
        topics = [t for t in topics if t not in PAIR_EMITTED_TOPICS]

    return BackfillOrchestrator(
        provider,
        RpcAdapter(settings.NETWORK),
        processor,
        RunLedger(session_factory),
        chunk_size=chunk_size or settings.BACKFILL_CHUNK_SIZE,
        chunk_delay_ms=settings.BACKFILL_CHUNK_DELAY_MS,
        topics=topics,
        addresses=addresses,
        avg_block_time_seconds=settings.AVG_BLOCK_TIME_SECONDS,
        pending_limit=settings.PENDING_BATCH_LIMIT,
    )

import time
import logging
from typing import Callable, List, Optional, Tuple

from onchain_sync.pipeline.backfill.run_ledger import RunLedger, RunStats
from onchain_sync.pipeline.errors import ChunkFetchError
from onchain_sync.pipeline.processor import EventProcessor, BACKFILL, REPROCESS
from onchain_sync.sources.adapters.rpc_adapter import RpcAdapter
from onchain_sync.utils.log_utils import chunk_block_range
from onchain_sync.utils.types import CanonicalEvent

log = logging.getLogger(__name__)


class BackfillOrchestrator:
    """
    Pull-side driver: chunked ``eth_getLogs`` → same processor as the webhooks.

    Parameters
    ----------
    provider : object
        Anything with ``get_logs(from_block, to_block, topics=, addresses=)`` and
        ``get_latest_block()`` (see ``Web3LogProvider``).
    chunk_size : int, default 500
        Max blocks per ``eth_getLogs`` call (provider limit).
    chunk_delay_ms : int, default 100
        Pause between chunks.
    topics : list[str] | None
        topic0 values to ask for (OR-ed); ``None`` means every log.
    addresses : list[str] | None
        Contract addresses to restrict to.
    """

    def __init__(
        self,
        provider,
        adapter: RpcAdapter,
        processor: EventProcessor,
        ledger: RunLedger,
        chunk_size: int = 500,
        chunk_delay_ms: int = 100,
        topics: Optional[List[str]] = None,
        addresses: Optional[List[str]] = None,
        avg_block_time_seconds: int = 2,
        pending_limit: int = 50,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.provider = provider
        self.adapter = adapter
        self.processor = processor
        self.ledger = ledger
        self.chunk_size = chunk_size
        self.chunk_delay_ms = chunk_delay_ms
        self.topics = topics
        self.addresses = addresses
        self.avg_block_time_seconds = avg_block_time_seconds
        self.pending_limit = pending_limit
        self._sleep = sleep

    # ---------------------------------------------------------------------
    # fetching
    # ---------------------------------------------------------------------
    def fetch_chunk(self, from_block: int, to_block: int) -> List[CanonicalEvent]:
        topic_filter = [self.topics] if self.topics else None
        try:
            logs = self.provider.get_logs(from_block, to_block, topics=topic_filter, addresses=self.addresses)
            return self.adapter.normalize(logs)
        except Exception as exc:   # provider errors are not typed; MalformedPayload lands here too
            raise ChunkFetchError(from_block, to_block, exc) from exc

    def fetch_range(self, from_block: int, to_block: int,
                    chunk_size: Optional[int] = None) -> Tuple[List[CanonicalEvent], int, int]:
        """Every event in ``[from_block, to_block]``; returns ``(events, chunks_total, chunks_failed)``."""
        chunks = chunk_block_range(from_block, to_block, chunk_size or self.chunk_size)
        events: List[CanonicalEvent] = []
        failed = 0

        for i, (start, end) in enumerate(chunks):
            try:
                batch = self.fetch_chunk(start, end)
                events.extend(batch)
                log.info(f"📥 blocks {start}-{end}: {len(batch)} logs")
            except ChunkFetchError as exc:
                failed += 1
                log.error(f"❌ chunk {start}-{end} skipped: {exc.cause}")

            if i < len(chunks) - 1 and self.chunk_delay_ms > 0:
                self._sleep(self.chunk_delay_ms / 1000)

        return events, len(chunks), failed

    # ---------------------------------------------------------------------
    # runs
    # ---------------------------------------------------------------------
    def resolve_recent_range(self, hours: float) -> Tuple[int, int]:
        if hours <= 0:
            raise ValueError("hours must be positive")
        latest = self.provider.get_latest_block()
        span = int(hours * 3600 // self.avg_block_time_seconds)
        return max(0, latest - span), latest

    def run_recent(self, hours: float, job_name: str = "backfill-recent", source: str = BACKFILL,
                   chunk_size: Optional[int] = None) -> dict:
        from_block, to_block = self.resolve_recent_range(hours)
        return self.run(from_block, to_block, job_name=job_name, source=source, chunk_size=chunk_size)

    def run(self, from_block: int, to_block: int, job_name: str = "backfill", source: str = BACKFILL,
            chunk_size: Optional[int] = None) -> dict:
        if from_block < 0 or to_block < from_block:
            raise ValueError(f"invalid block range {from_block}-{to_block}")
        if chunk_size is not None and chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        chunk_size = chunk_size or self.chunk_size

        start_ts = time.time()
        stats = RunStats(from_block=from_block, to_block=to_block, chunk_size=chunk_size)
        run_id = self.ledger.start(job_name, source, stats)
        log.info(f"🚀 backfill #{run_id} blocks {from_block}-{to_block} (chunk {chunk_size})")

        try:
            events, stats.chunks_total, stats.chunks_failed = self.fetch_range(from_block, to_block, chunk_size)
            stats.events_found = len(events)

            batch = self.processor.process_batch(events, source)
            stats.events_new       = len(batch.outcomes)
            stats.events_processed = batch.processed
            stats.events_skipped   = batch.skipped
            stats.events_failed    = batch.failed

            pending = self.processor.reprocess_pending(limit=self.pending_limit, source=REPROCESS)
            stats.pending_reprocessed = pending.processed
        except Exception as exc:
            stats.duration_seconds = time.time() - start_ts
            log.error(f"❌ backfill #{run_id} failed", exc_info=True)
            self.ledger.finish(run_id, stats, error=str(exc))
            raise

        stats.duration_seconds = time.time() - start_ts
        self.ledger.finish(run_id, stats)
        log.info(f"🏁 backfill #{run_id} done in {stats.duration_seconds:.2f}s: "
                 f"{stats.events_found} found, {stats.events_new} new, {stats.events_processed} processed")

        out = stats.to_dict()
        out["run_id"] = run_id
        return out

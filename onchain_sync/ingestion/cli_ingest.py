import typer
from typing import Optional
from onchain_sync.config import settings
from onchain_sync.pipeline.factory import build_orchestrator, build_processor
from onchain_sync.pipeline.processor import MANUAL, REPROCESS
from onchain_sync.storage.db import SessionFactory, create_tables
import logging

log = logging.getLogger(__name__)

app = typer.Typer(help="On-chain event sync: backfill and operator tools")


def _key(tx_hash: str, log_index: int, network: Optional[str]) -> tuple:
    return (network or settings.NETWORK, tx_hash.lower(), log_index)


@app.command("init-db")
def init_db():
    """Create missing tables."""
    create_tables()
    typer.echo("tables ready")


@app.command("backfill")
def backfill(
    hours: Optional[float] = typer.Option(None, help="Lookback window in hours"),
    from_block: Optional[int] = typer.Option(None, help="First block (inclusive)"),
    to_block: Optional[int] = typer.Option(None, help="Last block (inclusive)"),
    chunk_size: Optional[int] = typer.Option(None, help="Blocks per getLogs call"),
    address: Optional[str] = typer.Option(None, help="Restrict to one contract 0x..."),
):
    """
    Run a backfill inline (long running job, run via CLI or subprocess).
    """
    orchestrator = build_orchestrator(
        SessionFactory,
        chunk_size=chunk_size,
        addresses=[address.lower()] if address else None,
    )
    try:
        if from_block is not None and to_block is not None:
            summary = orchestrator.run(from_block, to_block, job_name="backfill-cli")
        elif from_block is None and to_block is None:
            summary = orchestrator.run_recent(hours or settings.BACKFILL_LOOKBACK_HOURS, job_name="backfill-cli")
        else:
            raise typer.BadParameter("--from-block and --to-block go together")
    except ValueError as exc:
        raise typer.BadParameter(str(exc))

    log.info(f"[cli] Backfill completed: {summary}")
    typer.echo(summary)


@app.command("reprocess-pending")
def reprocess_pending(limit: int = typer.Option(settings.PENDING_BATCH_LIMIT, help="Max records")):
    """Retry records stuck in ``pending``."""
    result = build_processor(SessionFactory).reprocess_pending(limit=limit, source=REPROCESS)
    typer.echo(result.summary())


@app.command("reprocess")
def reprocess(
    tx_hash: str = typer.Argument(..., help="0x transaction hash"),
    log_index: int = typer.Argument(..., help="log index within the transaction"),
    network: Optional[str] = typer.Option(None, help="defaults to NETWORK"),
):
    """Retry one ``failed`` (or ``pending``) record."""
    outcome = build_processor(SessionFactory).reprocess(_key(tx_hash, log_index, network), source=MANUAL)
    typer.echo(outcome.to_dict())


@app.command("purge")
def purge(
    tx_hash: str = typer.Argument(...),
    log_index: int = typer.Argument(...),
    network: Optional[str] = typer.Option(None),
    yes: bool = typer.Option(False, "--yes", help="skip confirmation"),
):
    """Delete one processing record so the event can be ingested from scratch."""
    key = _key(tx_hash, log_index, network)
    if not yes:
        typer.confirm(f"Delete processing record {key}?", abort=True)
    deleted = build_processor(SessionFactory).purge(key)
    typer.echo("deleted" if deleted else "not found")


def main():
    app()


if __name__ == "__main__":
    main()

from fastapi import FastAPI
from onchain_sync.api import api, webhooks
from onchain_sync.config.settings import NETWORK, WEBHOOK_SIGNATURE_MODE
from onchain_sync.storage.db import engine, create_tables
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging
from onchain_sync.utils.shortname import ShortNameFilter

app = FastAPI(title="onchain-sync")

logging.basicConfig(
    level=logging.INFO,
    format="[%(levelname)s] %(shortname)s: %(message)s",
)
for handler in logging.getLogger().handlers:
    handler.addFilter(ShortNameFilter())
log = logging.getLogger(__name__)

app.include_router(webhooks.router, prefix="/webhooks")
app.include_router(api.router, prefix="/api")


@app.on_event("startup")
def prepare_store():
    # webhooks keep arriving while the DB is down; they get 500s and the provider retries
    try:
        with engine.begin() as conn:
            conn.execute(text("SELECT 1"))
        create_tables(engine)
        log.info(f"✅ Store ready ({NETWORK}, signatures {WEBHOOK_SIGNATURE_MODE}).")
    except SQLAlchemyError as e:
        log.error(f"❌ Store not reachable at startup: {e}")

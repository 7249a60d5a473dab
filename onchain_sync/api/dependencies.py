# api/dependencies.py
from functools import lru_cache
from typing import Dict, Tuple

from onchain_sync.config import settings
from onchain_sync.pipeline.factory import build_orchestrator, build_processor
from onchain_sync.pipeline.security.rate_limit import SlidingWindowRateLimiter
from onchain_sync.pipeline.security.signature import SignatureVerifier
from onchain_sync.sources.adapters.webhook_adapter import WebhookAdapter
from onchain_sync.storage.db import SessionFactory

ALCHEMY_SIGNATURE_HEADER   = "x-alchemy-signature"
QUICKNODE_SIGNATURE_HEADER = "x-qn-signature"


class WebhookEndpoint:
    def __init__(self, provider: str, stream: str, signature_header: str,
                 verifier: SignatureVerifier, adapter: WebhookAdapter):
        self.provider = provider
        self.stream = stream
        self.signature_header = signature_header
        self.verifier = verifier
        self.adapter = adapter

    @property
    def name(self) -> str:
        return f"{self.provider}/{self.stream}"


def get_session_factory():
    return SessionFactory


@lru_cache()
def get_processor():
    return build_processor(SessionFactory)


@lru_cache()
def get_orchestrator():
    return build_orchestrator(SessionFactory)


@lru_cache()
def get_rate_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )


@lru_cache()
def get_webhook_endpoints() -> Dict[Tuple[str, str], WebhookEndpoint]:
    adapter = WebhookAdapter(settings.NETWORK)
    mode = settings.WEBHOOK_SIGNATURE_MODE
    table = [
        ("alchemy",   "pool-tracking", ALCHEMY_SIGNATURE_HEADER,   settings.ALCHEMY_POOL_TRACKING_SIGNING_KEY),
        ("alchemy",   "amm-tracking",  ALCHEMY_SIGNATURE_HEADER,   settings.ALCHEMY_AMM_TRACKING_SIGNING_KEY),
        ("quicknode", "pool-tracking", QUICKNODE_SIGNATURE_HEADER, settings.QUICKNODE_POOL_TRACKING_SECRET),
    ]
    return {
        (provider, stream): WebhookEndpoint(
            provider, stream, header,
            SignatureVerifier(secret, mode=mode, name=f"{provider}/{stream}"),
            adapter,
        )
        for provider, stream, header, secret in table
    }


def get_backfill_api_key():
    return settings.BACKFILL_API_KEY

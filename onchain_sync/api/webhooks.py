import json
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from onchain_sync.api.dependencies import get_processor, get_rate_limiter, get_webhook_endpoints
from onchain_sync.pipeline.errors import MalformedPayload, SignatureMismatch, StoreUnavailable
from onchain_sync.pipeline.processor import WEBHOOK
from onchain_sync.pipeline.security.rate_limit import client_identity

log = logging.getLogger(__name__)

router = APIRouter()

EMPTY_SUMMARY = {"processed": 0, "skipped": 0, "failed": 0, "total": 0}


def _endpoint_or_404(endpoints, provider: str, stream: str):
    endpoint = endpoints.get((provider, stream))
    if endpoint is None:
        raise HTTPException(status_code=404, detail=f"unknown webhook {provider}/{stream}")
    return endpoint


@router.get("/{provider}/{stream}")
def webhook_health(provider: str, stream: str, endpoints=Depends(get_webhook_endpoints)):
    endpoint = _endpoint_or_404(endpoints, provider, stream)
    return {"status": "ok", "endpoint": endpoint.name, "timestamp": datetime.utcnow().isoformat()}


@router.post("/{provider}/{stream}")
async def receive_webhook(
    provider: str,
    stream: str,
    request: Request,
    endpoints=Depends(get_webhook_endpoints),
    limiter=Depends(get_rate_limiter),
    processor=Depends(get_processor),
):
    endpoint = _endpoint_or_404(endpoints, provider, stream)

    identity = client_identity(request.headers, request.client.host if request.client else None)
    if not limiter.allow(identity):
        log.warning(f"🚦 [{endpoint.name}] rate limit hit for {identity}")
        raise HTTPException(status_code=429, detail="Too many requests")

    raw_body = await request.body()
    try:
        endpoint.verifier.verify(raw_body, request.headers.get(endpoint.signature_header))
    except SignatureMismatch:
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    try:
        shape, events = endpoint.adapter.normalize_with_shape(payload)
    except MalformedPayload as exc:
        # acknowledged so the provider does not retry forever on shape drift
        log.warning(f"⚠️ [{endpoint.name}] unusable payload, acknowledged as empty: {exc}")
        return {**EMPTY_SUMMARY, "message": "No events to process"}

    if not events:
        return {**EMPTY_SUMMARY, "message": "No events to process"}

    log.info(f"📨 [{endpoint.name}] {len(events)} events ({shape.value})")
    try:
        result = await run_in_threadpool(processor.process_batch, events, WEBHOOK)
    except StoreUnavailable as exc:
        log.error(f"❌ [{endpoint.name}] store unavailable: {exc}")
        raise HTTPException(status_code=500, detail="Event processing failed")

    return result.summary()

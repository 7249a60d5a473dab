import hashlib
import hmac
import logging
from enum import Enum
from typing import Optional

from onchain_sync.pipeline.errors import SignatureMismatch

log = logging.getLogger(__name__)

STRICT   = "strict"
ADVISORY = "advisory"


class SignatureCheck(str, Enum):
    VERIFIED = "verified"
    SKIPPED  = "skipped"     # no secret configured or no header sent
    MISMATCH = "mismatch"


def compute_signature(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


class SignatureVerifier:
    """HMAC-SHA256 over the exact request bytes, hex compared in constant time."""

    def __init__(self, secret: Optional[str], mode: str = STRICT, name: str = "webhook"):
        if mode not in (STRICT, ADVISORY):
            raise ValueError(f"unknown signature mode {mode!r}")
        self.secret = secret
        self.mode = mode
        self.name = name

    def check(self, raw_body: bytes, header_value: Optional[str]) -> SignatureCheck:
        if not self.secret:
            log.warning(f"⚠️ [{self.name}] no signing secret configured; signature not verified")
            return SignatureCheck.SKIPPED
        if not header_value:
            log.warning(f"⚠️ [{self.name}] request carries no signature header; signature not verified")
            return SignatureCheck.SKIPPED

        received = header_value.strip().lower()
        if received.startswith("0x"):
            received = received[2:]
        expected = compute_signature(self.secret, raw_body)

        if hmac.compare_digest(expected, received):
            return SignatureCheck.VERIFIED
        return SignatureCheck.MISMATCH

    def verify(self, raw_body: bytes, header_value: Optional[str]) -> SignatureCheck:
        """Like :meth:`check`, but raises ``SignatureMismatch`` in strict mode."""
        result = self.check(raw_body, header_value)
        if result is SignatureCheck.MISMATCH:
            if self.mode == STRICT:
                log.warning(f"🚫 [{self.name}] signature mismatch; request rejected")
                raise SignatureMismatch(f"{self.name}: signature mismatch")
            log.error(f"❌ [{self.name}] signature mismatch; accepted (advisory mode)")
        return result

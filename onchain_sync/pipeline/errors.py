class PipelineError(Exception):
    """Base for everything the ingestion pipeline raises on purpose."""


class MalformedPayload(PipelineError):
    """Provider body could not be turned into canonical events."""


class SignatureMismatch(PipelineError):
    """HMAC of the body does not match the provider header."""


class UnknownEventSignature(PipelineError):
    def __init__(self, topic0):
        super().__init__(f"no handler registered for topic {topic0}")
        self.topic0 = topic0


class ApplyError(PipelineError):
    """Domain rejected the event; the record is marked failed and not retried."""


class InvalidStateTransition(ApplyError):
    def __init__(self, pool_address: str, current: str, target: str):
        super().__init__(f"pool {pool_address}: illegal transition {current} -> {target}")
        self.pool_address = pool_address
        self.current = current
        self.target = target


class EventDecodeError(ApplyError):
    """Topics/data do not decode against the registered ABI."""


class DependencyNotReady(PipelineError):
    """Target pool / pair not known yet; the record stays pending for a later sweep."""


class ChunkFetchError(PipelineError):
    def __init__(self, from_block: int, to_block: int, cause: Exception):
        super().__init__(f"getLogs {from_block}-{to_block} failed: {cause}")
        self.from_block = from_block
        self.to_block = to_block
        self.cause = cause


class StoreUnavailable(PipelineError):
    """Database unreachable or a transaction could not be committed."""

import logging
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from sqlalchemy.orm import Session

from onchain_sync.pipeline.errors import UnknownEventSignature
from onchain_sync.utils.types import CanonicalEvent

log = logging.getLogger(__name__)

POOL_DOMAIN = "pool"
AMM_DOMAIN  = "amm"


class EventHandler(NamedTuple):
    """
    One registered event signature.

    apply(db, event) -> dict       writes domain state, returns what it did
    revert(db, event, result)      undoes exactly that, given the stored result
    accepts(db, event) -> bool     optional pre-claim relevance check
    """

    topic: str
    name: str
    domain: str
    apply: Callable[[Session, CanonicalEvent], dict]
    revert: Callable[[Session, CanonicalEvent, dict], None]
    accepts: Optional[Callable[[Session, CanonicalEvent], bool]] = None


class EventRouter:
    """``topics[0]`` → handler lookup over an injected registry."""

    def __init__(self, registry: Dict[str, EventHandler]):
        self.registry = {topic.lower(): handler for topic, handler in registry.items()}

    @classmethod
    def from_handlers(cls, handlers: Iterable[EventHandler]) -> "EventRouter":
        registry = {}
        for h in handlers:
            if h.topic in registry:
                raise ValueError(f"duplicate handler for {h.topic} ({registry[h.topic].name}, {h.name})")
            registry[h.topic] = h
        return cls(registry)

    def handler_for_topic(self, topic: Optional[str]) -> Optional[EventHandler]:
        if not topic:
            return None
        return self.registry.get(topic.lower())

    def require(self, topic: Optional[str]) -> EventHandler:
        handler = self.handler_for_topic(topic)
        if handler is None:
            raise UnknownEventSignature(topic)
        return handler

    def classify(self, event: CanonicalEvent) -> Optional[EventHandler]:
        handler = self.handler_for_topic(event.signature)
        if handler is None:
            log.info(f"❔ unknown event signature {event.signature} from {event.contract_address}; skipped")
        return handler

    def topics(self, domain: Optional[str] = None) -> List[str]:
        return [t for t, h in self.registry.items() if domain is None or h.domain == domain]


def build_default_registry() -> Dict[str, EventHandler]:
    """Every pool-lifecycle and AMM-pair handler, keyed by topic0."""
    from onchain_sync.pipeline.appliers.pool_lifecycle import PoolLifecycleApplier
    from onchain_sync.pipeline.appliers.amm_pair import AmmPairApplier

    handlers = PoolLifecycleApplier().handlers() + AmmPairApplier().handlers()
    return EventRouter.from_handlers(handlers).registry

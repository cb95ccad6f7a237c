from dataclasses import dataclass

from stores.base import (
    AttemptStore,
    AuditSink,
    CounterStore,
    CredentialStore,
    PenaltyStore,
    TokenIssuer,
)


@dataclass
class StoreBundle:
    credentials: CredentialStore
    attempts: AttemptStore
    counters: CounterStore
    penalties: PenaltyStore
    audit: AuditSink
    tokens: TokenIssuer


def sql_stores() -> StoreBundle:
    from stores.sql import (
        SqlAttemptStore,
        SqlAuditSink,
        SqlCounterStore,
        SqlCredentialStore,
        SqlPenaltyStore,
        SqlTokenIssuer,
    )
    return StoreBundle(
        credentials=SqlCredentialStore(),
        attempts=SqlAttemptStore(),
        counters=SqlCounterStore(),
        penalties=SqlPenaltyStore(),
        audit=SqlAuditSink(),
        tokens=SqlTokenIssuer(),
    )


def memory_stores(timeout: float = 5.0) -> StoreBundle:
    from stores.memory import (
        MemoryAttemptStore,
        MemoryAuditSink,
        MemoryCounterStore,
        MemoryCredentialStore,
        MemoryPenaltyStore,
        MemoryTokenIssuer,
    )
    return StoreBundle(
        credentials=MemoryCredentialStore(timeout),
        attempts=MemoryAttemptStore(timeout),
        counters=MemoryCounterStore(timeout),
        penalties=MemoryPenaltyStore(timeout),
        audit=MemoryAuditSink(timeout),
        tokens=MemoryTokenIssuer(timeout),
    )

"""
Service wiring.

Components are built once per Lambda container by get_services() and
passed to each other explicitly. Tests call build_services() with a
MemoryStore and a mocked dispatcher.
"""
from functools import lru_cache
from typing import Callable, Optional

from .assignment import AssignmentService
from .claim_queue import ClaimQueue
from .config import config
from .damage_reports import DamageReportService
from .logging import logger
from .notifications import NotificationDispatcher
from .store import BaseStore, MemoryStore
from .utils import utc_now
from .wallet import WalletLedger


class Services:
    """Container for the wired service graph."""

    def __init__(self, store: BaseStore, dispatcher: NotificationDispatcher, clock: Callable = utc_now):
        self.store = store
        self.dispatcher = dispatcher
        self.wallet = WalletLedger(store, clock=clock)
        self.assignments = AssignmentService(store, self.wallet, clock=clock)
        self.claim_queue = ClaimQueue(store, self.assignments, dispatcher, clock=clock)
        self.damage_reports = DamageReportService(
            store, self.wallet, self.assignments, dispatcher, clock=clock
        )


def build_store(backend: Optional[str] = None) -> BaseStore:
    backend = backend or config.STORE_BACKEND
    if backend == 'memory':
        return MemoryStore(config.key_schema, max_attempts=config.CAS_MAX_ATTEMPTS)
    if backend == 'dynamodb':
        from .dynamo import DynamoStore
        return DynamoStore(config.key_schema, max_attempts=config.CAS_MAX_ATTEMPTS)
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


def build_services(store: Optional[BaseStore] = None, dispatcher: Optional[NotificationDispatcher] = None,
                   clock: Callable = utc_now) -> Services:
    return Services(store or build_store(), dispatcher or NotificationDispatcher(), clock=clock)


@lru_cache(maxsize=1)
def get_services() -> Services:
    """Process-wide services, created on first use (Lambda cold start)."""
    logger.info(f"Initializing services with {config.STORE_BACKEND} store")
    return build_services()

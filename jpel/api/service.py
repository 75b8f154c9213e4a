# Engine Service for JPEL Runner
# Shared engine wiring used by the API routers

import logging
from typing import Optional

from jpel.api.events import get_event_bus, reset_event_bus
from jpel.api.execution import ProcessEngine
from jpel.api.storage import AuditRepository, Repositories, get_repositories, reset_repositories

logger = logging.getLogger(__name__)

_engine: Optional[ProcessEngine] = None


def get_engine() -> ProcessEngine:
    """
    Get or create the shared engine.

    The engine is built on the shared repositories and event bus, with the
    audit log subscribed to every execution event.
    """
    global _engine
    if _engine is None:
        repositories = get_repositories()
        bus = get_event_bus()
        repositories.audit.attach(bus)
        _engine = ProcessEngine(repositories.definitions, repositories.instances, event_bus=bus)
        logger.info("Process engine initialized")
    return _engine


def get_shared_repositories() -> Repositories:
    get_engine()
    return get_repositories()


def get_audit() -> AuditRepository:
    return get_shared_repositories().audit


def reset_engine() -> None:
    """Drop the shared engine, repositories and bus (useful for testing)."""
    global _engine
    _engine = None
    reset_repositories()
    reset_event_bus()

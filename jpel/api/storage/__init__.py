# Storage Package for JPEL Runner
# Definition/instance repositories and the audit log

from dataclasses import dataclass
from typing import Optional

from jpel import config

from .base import BaseStorageService, JPEL, PROC, INST, LOG
from .audit_repository import AuditRepository
from .definition_repository import (
    InMemoryDefinitionRepository,
    ProcessDefinitionRepository,
    RDFDefinitionRepository,
)
from .instance_repository import (
    InMemoryInstanceRepository,
    ProcessInstanceRepository,
    RDFInstanceRepository,
)


@dataclass
class Repositories:
    """The storage collaborators an engine is built from."""

    storage: BaseStorageService
    definitions: ProcessDefinitionRepository
    instances: ProcessInstanceRepository
    audit: AuditRepository


def create_repositories(
    backend: Optional[str] = None, storage_path: Optional[str] = None
) -> Repositories:
    """
    Build a fresh set of repositories.

    Args:
        backend: "memory" or "rdf"; defaults to JPEL_STORAGE_BACKEND
        storage_path: Turtle directory for the rdf backend; defaults to
            JPEL_STORAGE_PATH

    Returns:
        Repositories sharing one BaseStorageService
    """
    backend = backend or config.storage_backend()
    if backend == "rdf":
        storage = BaseStorageService(storage_path or config.storage_path())
        return Repositories(
            storage=storage,
            definitions=RDFDefinitionRepository(storage),
            instances=RDFInstanceRepository(storage),
            audit=AuditRepository(storage),
        )

    storage = BaseStorageService(storage_path=None)
    return Repositories(
        storage=storage,
        definitions=InMemoryDefinitionRepository(),
        instances=InMemoryInstanceRepository(),
        audit=AuditRepository(storage, persist=False),
    )


# Shared repositories used by the API
_shared_repositories: Optional[Repositories] = None


def get_repositories() -> Repositories:
    """
    Get or create the shared repositories.

    Uses JPEL_STORAGE_BACKEND to choose between in-memory and RDF storage
    and JPEL_STORAGE_PATH for where RDF files are persisted.
    """
    global _shared_repositories
    if _shared_repositories is None:
        _shared_repositories = create_repositories()
    return _shared_repositories


def reset_repositories() -> None:
    """Drop the shared repositories (useful for testing)."""
    global _shared_repositories
    _shared_repositories = None


__all__ = [
    "Repositories",
    "create_repositories",
    "get_repositories",
    "reset_repositories",
    # Base storage
    "BaseStorageService",
    # Repositories
    "AuditRepository",
    "ProcessDefinitionRepository",
    "InMemoryDefinitionRepository",
    "RDFDefinitionRepository",
    "ProcessInstanceRepository",
    "InMemoryInstanceRepository",
    "RDFInstanceRepository",
    # Namespaces
    "JPEL",
    "PROC",
    "INST",
    "LOG",
]

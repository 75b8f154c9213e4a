# Definition Repository for JPEL Runner
# Storage of immutable process definitions (in memory or as RDF)

import abc
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from rdflib import RDF, Literal

from jpel.core.definitions import ProcessDefinition, parse_definition

from .base import BaseStorageService, JPEL, PROC

logger = logging.getLogger(__name__)


class ProcessDefinitionRepository(abc.ABC):
    """Contract for definition storage consumed by the engine."""

    @abc.abstractmethod
    def save(self, definition: ProcessDefinition) -> None:
        """Store a definition, replacing any previous one with the same id."""

    @abc.abstractmethod
    def get_by_id(self, definition_id: str) -> Optional[ProcessDefinition]:
        """Return the definition, or None when it is unknown."""

    @abc.abstractmethod
    def list(self) -> List[ProcessDefinition]:
        """Return all definitions ordered by id."""

    @abc.abstractmethod
    def delete(self, definition_id: str) -> bool:
        """Remove a definition; returns False if it did not exist."""

    def exists(self, definition_id: str) -> bool:
        return self.get_by_id(definition_id) is not None

    def count(self) -> int:
        return len(self.list())


class InMemoryDefinitionRepository(ProcessDefinitionRepository):
    """Definitions held in a dict; models are frozen so they are shared."""

    def __init__(self):
        self._definitions: Dict[str, ProcessDefinition] = {}
        self._lock = threading.Lock()

    def save(self, definition: ProcessDefinition) -> None:
        with self._lock:
            self._definitions[definition.id] = definition
        logger.debug(f"Saved definition {definition.id} in memory")

    def get_by_id(self, definition_id: str) -> Optional[ProcessDefinition]:
        with self._lock:
            return self._definitions.get(definition_id)

    def list(self) -> List[ProcessDefinition]:
        with self._lock:
            return [self._definitions[key] for key in sorted(self._definitions)]

    def delete(self, definition_id: str) -> bool:
        with self._lock:
            return self._definitions.pop(definition_id, None) is not None


class RDFDefinitionRepository(ProcessDefinitionRepository):
    """
    Definitions stored in the definitions graph.

    Each definition is a ``jpel:ProcessDefinition`` resource carrying its
    name, version and activity count as queryable triples, plus the full
    JSON document as a literal from which the model is rebuilt.
    """

    def __init__(self, base_storage: BaseStorageService):
        """
        Initialize the definition repository.

        Args:
            base_storage: The base storage service providing graph access
        """
        self._storage = base_storage
        self._cache: Dict[str, ProcessDefinition] = {}

    @property
    def _graph(self):
        return self._storage.definitions_graph

    def save(self, definition: ProcessDefinition) -> None:
        uri = PROC[definition.id]
        with self._storage.lock:
            self._graph.remove((uri, None, None))
            self._graph.add((uri, RDF.type, JPEL.ProcessDefinition))
            self._graph.add((uri, JPEL.definitionId, Literal(definition.id)))
            self._graph.add((uri, JPEL.name, Literal(definition.name)))
            self._graph.add((uri, JPEL.version, Literal(definition.version)))
            self._graph.add((uri, JPEL.start, Literal(definition.start)))
            self._graph.add((uri, JPEL.activityCount, Literal(len(definition.activities))))
            self._graph.add(
                (uri, JPEL.document, Literal(json.dumps(definition.to_document(), sort_keys=True)))
            )
            self._graph.add(
                (uri, JPEL.savedAt, Literal(datetime.now(timezone.utc).isoformat()))
            )
            self._storage.save("definitions")
            self._cache[definition.id] = definition

        logger.info(f"Saved definition {definition.id} v{definition.version}")

    def get_by_id(self, definition_id: str) -> Optional[ProcessDefinition]:
        with self._storage.lock:
            cached = self._cache.get(definition_id)
            if cached is not None:
                return cached

            document = self._graph.value(PROC[definition_id], JPEL.document)
            if document is None:
                return None
            definition = parse_definition(json.loads(str(document)))
            self._cache[definition_id] = definition
            return definition

    def list(self) -> List[ProcessDefinition]:
        with self._storage.lock:
            ids = sorted(
                str(self._graph.value(uri, JPEL.definitionId))
                for uri in self._graph.subjects(RDF.type, JPEL.ProcessDefinition)
            )
        return [definition for definition in map(self.get_by_id, ids) if definition]

    def delete(self, definition_id: str) -> bool:
        uri = PROC[definition_id]
        with self._storage.lock:
            if (uri, RDF.type, JPEL.ProcessDefinition) not in self._graph:
                return False
            self._graph.remove((uri, None, None))
            self._cache.pop(definition_id, None)
            self._storage.save("definitions")
        logger.info(f"Deleted definition {definition_id}")
        return True

# Instance Repository for JPEL Runner
# Atomic load/save of process instance snapshots (in memory or as RDF)

import abc
import json
import logging
import threading
from typing import Dict, List, Optional

from rdflib import RDF, Literal

from jpel.core.instances import ProcessInstance

from .base import BaseStorageService, INST, JPEL

logger = logging.getLogger(__name__)


class ProcessInstanceRepository(abc.ABC):
    """
    Contract for instance storage consumed by the engine.

    ``save`` and ``get_by_id`` are atomic per instance id, and both work on
    copies: mutating a returned instance never changes stored state until
    it is saved again.
    """

    @abc.abstractmethod
    def save(self, instance: ProcessInstance) -> None:
        """Store the instance snapshot, replacing the previous one."""

    @abc.abstractmethod
    def get_by_id(self, instance_id: str) -> Optional[ProcessInstance]:
        """Return a copy of the stored instance, or None."""

    @abc.abstractmethod
    def list_by_definition(self, definition_id: str) -> List[ProcessInstance]:
        """Instances of one definition, oldest first."""

    @abc.abstractmethod
    def list_all(self) -> List[ProcessInstance]:
        """All instances, oldest first."""

    @abc.abstractmethod
    def delete(self, instance_id: str) -> bool:
        """Remove an instance; returns False if it did not exist."""

    def count(self) -> int:
        return len(self.list_all())


def _oldest_first(instances: List[ProcessInstance]) -> List[ProcessInstance]:
    return sorted(instances, key=lambda instance: (instance.started_at, instance.instance_id))


class InMemoryInstanceRepository(ProcessInstanceRepository):
    """Instances kept as serialized records so callers only ever see copies."""

    def __init__(self):
        self._records: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def save(self, instance: ProcessInstance) -> None:
        record = instance.to_record()
        with self._lock:
            self._records[instance.instance_id] = record

    def get_by_id(self, instance_id: str) -> Optional[ProcessInstance]:
        with self._lock:
            record = self._records.get(instance_id)
        return ProcessInstance.from_record(record) if record is not None else None

    def list_by_definition(self, definition_id: str) -> List[ProcessInstance]:
        with self._lock:
            records = [r for r in self._records.values() if r["processId"] == definition_id]
        return _oldest_first([ProcessInstance.from_record(r) for r in records])

    def list_all(self) -> List[ProcessInstance]:
        with self._lock:
            records = list(self._records.values())
        return _oldest_first([ProcessInstance.from_record(r) for r in records])

    def delete(self, instance_id: str) -> bool:
        with self._lock:
            return self._records.pop(instance_id, None) is not None


class RDFInstanceRepository(ProcessInstanceRepository):
    """
    Instances stored in the instances graph.

    Status, process id and timestamps are kept as triples so they can be
    queried with SPARQL; the complete state (run states and cursors
    included) is a JSON literal under ``jpel:state``. Every save rewrites
    the Turtle file atomically.
    """

    def __init__(self, base_storage: BaseStorageService):
        """
        Initialize the instance repository.

        Args:
            base_storage: The base storage service providing graph access
        """
        self._storage = base_storage

    @property
    def _graph(self):
        return self._storage.instances_graph

    def save(self, instance: ProcessInstance) -> None:
        uri = INST[instance.instance_id]
        state = json.dumps(instance.to_record(), sort_keys=True)
        with self._storage.lock:
            self._graph.remove((uri, None, None))
            self._graph.add((uri, RDF.type, JPEL.ProcessInstance))
            self._graph.add((uri, JPEL.instanceId, Literal(instance.instance_id)))
            self._graph.add((uri, JPEL.processId, Literal(instance.process_id)))
            self._graph.add((uri, JPEL.status, Literal(instance.status.value)))
            self._graph.add((uri, JPEL.startedAt, Literal(instance.started_at.isoformat())))
            if instance.completed_at is not None:
                self._graph.add(
                    (uri, JPEL.completedAt, Literal(instance.completed_at.isoformat()))
                )
            self._graph.add((uri, JPEL.state, Literal(state)))
            self._storage.save("instances")
        logger.debug(f"Saved instance {instance.instance_id} ({instance.status.value})")

    def get_by_id(self, instance_id: str) -> Optional[ProcessInstance]:
        with self._storage.lock:
            state = self._graph.value(INST[instance_id], JPEL.state)
        if state is None:
            return None
        return ProcessInstance.from_record(json.loads(str(state)))

    def _load_all(self, subjects) -> List[ProcessInstance]:
        instances = []
        with self._storage.lock:
            states = [self._graph.value(uri, JPEL.state) for uri in subjects]
        for state in states:
            if state is not None:
                instances.append(ProcessInstance.from_record(json.loads(str(state))))
        return _oldest_first(instances)

    def list_by_definition(self, definition_id: str) -> List[ProcessInstance]:
        with self._storage.lock:
            subjects = list(self._graph.subjects(JPEL.processId, Literal(definition_id)))
        return self._load_all(subjects)

    def list_all(self) -> List[ProcessInstance]:
        with self._storage.lock:
            subjects = list(self._graph.subjects(RDF.type, JPEL.ProcessInstance))
        return self._load_all(subjects)

    def count_by_status(self) -> Dict[str, int]:
        """Instance counts per status, straight from the status triples."""
        counts: Dict[str, int] = {}
        with self._storage.lock:
            for status in self._graph.objects(None, JPEL.status):
                counts[str(status)] = counts.get(str(status), 0) + 1
        return counts

    def delete(self, instance_id: str) -> bool:
        uri = INST[instance_id]
        with self._storage.lock:
            if (uri, RDF.type, JPEL.ProcessInstance) not in self._graph:
                return False
            self._graph.remove((uri, None, None))
            self._storage.save("instances")
        return True

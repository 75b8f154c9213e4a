# Audit Repository for JPEL Runner
# Records execution events in the audit graph

import uuid
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from itertools import count
from typing import Any, Dict, List, Optional

from rdflib import RDF, Literal

from jpel.api.events import ExecutionEvent, ExecutionEventBus

from .base import BaseStorageService, INST, LOG

logger = logging.getLogger(__name__)


class AuditRepository:
    """
    Repository for audit log entries.

    Subscribed to the execution event bus, it records one ``log:Event``
    per published event: instance creation, activity start/completion/
    failure, human task creation and submission, variable writes and
    instance status changes.
    """

    def __init__(self, base_storage: BaseStorageService, persist: bool = True):
        """
        Initialize the audit repository.

        Args:
            base_storage: The base storage service providing graph access
            persist: Whether to write audit.ttl after each entry
        """
        self._storage = base_storage
        self._persist = persist
        self._sequence = count(len(set(self._graph.subjects(RDF.type, LOG.Event))))

    @property
    def _graph(self):
        return self._storage.audit_graph

    def attach(self, bus: ExecutionEventBus) -> None:
        """Record every event published on the bus."""
        bus.subscribe_all(self.record_event)

    def record_event(self, event: ExecutionEvent) -> None:
        details = {
            key: value
            for key, value in asdict(event).items()
            if key != "instance_id" and value not in (None, "", [], {})
        }
        self.log_event(
            event.instance_id,
            event.event_type,
            details=", ".join(f"{key}={value}" for key, value in details.items()),
            activity_id=details.get("activity_id"),
        )

    def log_event(
        self,
        instance_id: str,
        event_type: str,
        details: str = "",
        activity_id: Optional[str] = None,
    ) -> str:
        """
        Log an event for an instance.

        Args:
            instance_id: ID of the process instance
            event_type: Type of event (e.g., "ActivityCompleted")
            details: Additional details about the event
            activity_id: Optional activity where the event occurred

        Returns:
            ID of the created audit entry
        """
        event_id = str(uuid.uuid4())
        event_uri = LOG[f"event_{event_id}"]

        with self._storage.lock:
            self._graph.add((event_uri, RDF.type, LOG.Event))
            self._graph.add((event_uri, LOG.instance, INST[instance_id]))
            self._graph.add((event_uri, LOG.eventType, Literal(event_type)))
            self._graph.add((event_uri, LOG.sequence, Literal(next(self._sequence))))
            self._graph.add(
                (event_uri, LOG.timestamp, Literal(datetime.now(timezone.utc).isoformat()))
            )
            if details:
                self._graph.add((event_uri, LOG.details, Literal(details)))
            if activity_id:
                self._graph.add((event_uri, LOG.activity, Literal(activity_id)))
            if self._persist:
                self._storage.save("audit")

        logger.debug(f"Logged {event_type} event for instance {instance_id}")
        return event_id

    def get_instance_audit_log(
        self,
        instance_id: str,
        event_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Get the audit log for an instance.

        Args:
            instance_id: ID of the process instance
            event_type: Optional filter by event type
            limit: Optional maximum number of events to return

        Returns:
            List of audit events in recording order
        """
        events = []
        with self._storage.lock:
            for event_uri in self._graph.subjects(LOG.instance, INST[instance_id]):
                evt_type = self._graph.value(event_uri, LOG.eventType)
                if event_type and str(evt_type) != event_type:
                    continue

                sequence = self._graph.value(event_uri, LOG.sequence)
                timestamp = self._graph.value(event_uri, LOG.timestamp)
                details = self._graph.value(event_uri, LOG.details)
                activity = self._graph.value(event_uri, LOG.activity)

                events.append(
                    {
                        "id": str(event_uri).split("event_")[-1],
                        "type": str(evt_type) if evt_type else "",
                        "sequence": int(sequence.toPython()) if sequence is not None else 0,
                        "timestamp": str(timestamp) if timestamp else "",
                        "details": str(details) if details else "",
                        "activity_id": str(activity) if activity else None,
                    }
                )

        events.sort(key=lambda event: (event["sequence"], event["timestamp"]))
        return events[:limit] if limit else events

    def delete_instance_events(self, instance_id: str) -> int:
        """
        Delete all audit events for an instance.

        Returns:
            Number of events deleted
        """
        with self._storage.lock:
            event_uris = list(self._graph.subjects(LOG.instance, INST[instance_id]))
            for event_uri in event_uris:
                self._graph.remove((event_uri, None, None))
            if event_uris and self._persist:
                self._storage.save("audit")
        return len(event_uris)

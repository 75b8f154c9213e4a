# Base Storage Service for JPEL Runner
# Handles RDF graph management and atomic Turtle persistence

import os
import logging
import tempfile
import threading
from typing import Dict, Optional

from rdflib import Graph, Namespace

logger = logging.getLogger(__name__)

# RDF Namespaces - shared across all storage modules
JPEL = Namespace("http://example.org/jpel/")
PROC = Namespace("http://example.org/process/")
INST = Namespace("http://example.org/instance/")
LOG = Namespace("http://example.org/audit/")

GRAPH_FILES = {
    "definitions": "definitions.ttl",
    "instances": "instances.ttl",
    "audit": "audit.ttl",
}


class BaseStorageService:
    """
    Base class for RDF graph management and persistence.

    Manages three RDF graphs:
    - definitions: process definition documents
    - instances: process instance snapshots
    - audit: execution event log

    With a ``storage_path`` each graph is persisted to its own Turtle file;
    without one the graphs live in memory only.
    """

    def __init__(self, storage_path: Optional[str] = "data/jpel_rdf"):
        """
        Initialize the base storage service.

        Args:
            storage_path: Directory for the Turtle files, or None for memory only
        """
        self.storage_path = storage_path
        self.lock = threading.RLock()
        self._graphs: Dict[str, Graph] = {}

        if storage_path:
            os.makedirs(storage_path, exist_ok=True)

        for name, filename in GRAPH_FILES.items():
            self._graphs[name] = self._load_graph(filename)

        logger.info(f"Initialized base storage at {storage_path or '<memory>'}")

    def _load_graph(self, filename: str) -> Graph:
        """
        Load a graph from file if it exists.

        Args:
            filename: Name of the turtle file to load

        Returns:
            Graph containing the loaded data, or an empty Graph
        """
        graph = Graph()
        graph.bind("jpel", JPEL)
        if not self.storage_path:
            return graph

        filepath = os.path.join(self.storage_path, filename)
        if os.path.exists(filepath):
            try:
                graph.parse(filepath, format="turtle")
                logger.info(f"Loaded graph from {filepath} ({len(graph)} triples)")
            except Exception as e:
                logger.warning(f"Failed to load {filepath}: {e}")

        return graph

    def _save_graph(self, graph: Graph, filename: str) -> None:
        """
        Save a graph to file atomically.

        The graph is serialized to a temporary file in the same directory
        and moved over the previous file, so readers never observe a
        partially written store.

        Args:
            graph: RDF Graph to save
            filename: Name of the turtle file to save to
        """
        if not self.storage_path:
            return

        filepath = os.path.join(self.storage_path, filename)
        fd, tmp_path = tempfile.mkstemp(dir=self.storage_path, suffix=".ttl.tmp")
        os.close(fd)
        try:
            graph.serialize(tmp_path, format="turtle")
            os.replace(tmp_path, filepath)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        logger.debug(f"Saved graph to {filepath} ({len(graph)} triples)")

    def save(self, name: str) -> None:
        """Persist one named graph (definitions, instances or audit)."""
        with self.lock:
            self._save_graph(self._graphs[name], GRAPH_FILES[name])

    # Graph properties for controlled access

    @property
    def definitions_graph(self) -> Graph:
        return self._graphs["definitions"]

    @property
    def instances_graph(self) -> Graph:
        return self._graphs["instances"]

    @property
    def audit_graph(self) -> Graph:
        return self._graphs["audit"]

    def clear_all(self) -> None:
        """
        Clear all graphs and delete persisted files.

        USE WITH CAUTION - this deletes all data!
        """
        with self.lock:
            for name, filename in GRAPH_FILES.items():
                self._graphs[name] = Graph()
                if self.storage_path:
                    filepath = os.path.join(self.storage_path, filename)
                    if os.path.exists(filepath):
                        os.remove(filepath)
                        logger.info(f"Deleted {filepath}")

        logger.warning("Cleared all storage data")

    def get_stats(self) -> dict:
        """
        Get statistics about the stored data.

        Returns:
            Dictionary with triple counts for each graph
        """
        stats = {f"{name}_triples": len(graph) for name, graph in self._graphs.items()}
        stats["total_triples"] = sum(len(graph) for graph in self._graphs.values())
        stats["storage_path"] = self.storage_path
        return stats

# Tests for Base Storage Service
# Verifies RDF graph management and persistence

import os
import tempfile

from rdflib import Graph, Literal, RDF

from jpel.api.storage.base import BaseStorageService, INST, JPEL, PROC


class TestBaseStorageService:
    """Tests for the BaseStorageService class."""

    def test_initialization_creates_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            storage_path = os.path.join(tmpdir, "new_storage")
            assert not os.path.exists(storage_path)

            BaseStorageService(storage_path)

            assert os.path.exists(storage_path)

    def test_initialization_creates_empty_graphs(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            storage = BaseStorageService(tmpdir)

            for graph in (storage.definitions_graph, storage.instances_graph, storage.audit_graph):
                assert isinstance(graph, Graph)
                assert len(graph) == 0

    def test_save_and_reload_graph(self):
        """Saved triples are visible to a new service on the same path."""
        with tempfile.TemporaryDirectory() as tmpdir:
            storage1 = BaseStorageService(tmpdir)
            process_uri = PROC["test-process"]
            storage1.definitions_graph.add((process_uri, RDF.type, JPEL.ProcessDefinition))
            storage1.definitions_graph.add((process_uri, JPEL.name, Literal("Test Process")))
            storage1.save("definitions")

            storage2 = BaseStorageService(tmpdir)

            assert len(storage2.definitions_graph) == 2
            assert (process_uri, RDF.type, JPEL.ProcessDefinition) in storage2.definitions_graph
            assert os.path.exists(os.path.join(tmpdir, "definitions.ttl"))

    def test_save_leaves_no_temporary_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            storage = BaseStorageService(tmpdir)
            storage.instances_graph.add((INST["i1"], RDF.type, JPEL.ProcessInstance))
            storage.save("instances")

            assert sorted(os.listdir(tmpdir)) == ["instances.ttl"]

    def test_memory_only_storage_writes_nothing(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        storage = BaseStorageService(storage_path=None)
        storage.audit_graph.add((INST["i1"], RDF.type, JPEL.ProcessInstance))
        storage.save("audit")

        assert list(tmp_path.iterdir()) == []
        assert len(storage.audit_graph) == 1

    def test_corrupt_file_loads_empty_graph(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with open(os.path.join(tmpdir, "audit.ttl"), "w") as f:
                f.write("this is not turtle {")

            storage = BaseStorageService(tmpdir)
            assert len(storage.audit_graph) == 0

    def test_clear_all(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            storage = BaseStorageService(tmpdir)
            storage.definitions_graph.add((PROC["p"], RDF.type, JPEL.ProcessDefinition))
            storage.save("definitions")

            storage.clear_all()

            assert len(storage.definitions_graph) == 0
            assert not os.path.exists(os.path.join(tmpdir, "definitions.ttl"))

    def test_get_stats(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            storage = BaseStorageService(tmpdir)
            storage.definitions_graph.add((PROC["p"], RDF.type, JPEL.ProcessDefinition))
            storage.instances_graph.add((INST["i"], RDF.type, JPEL.ProcessInstance))

            stats = storage.get_stats()

            assert stats["definitions_triples"] == 1
            assert stats["instances_triples"] == 1
            assert stats["audit_triples"] == 0
            assert stats["total_triples"] == 2
            assert stats["storage_path"] == tmpdir

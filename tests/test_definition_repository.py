# Tests for Definition Repository
# Verifies process definition storage in memory and as RDF

import pytest
from rdflib import RDF, Literal

from jpel.api.storage import (
    BaseStorageService,
    InMemoryDefinitionRepository,
    RDFDefinitionRepository,
)
from jpel.api.storage.base import JPEL, PROC
from jpel.core.definitions import parse_definition


def make_definition(definition_id="proc", version="1.0.0"):
    return parse_definition(
        {
            "id": definition_id,
            "version": version,
            "name": "Order Review",
            "start": "root",
            "variables": {"amount": 0},
            "activities": {
                "root": {"type": "Sequence", "activities": ["review", "calc"]},
                "review": {
                    "type": "HumanTask",
                    "inputs": [{"name": "approved", "type": "boolean", "required": True}],
                },
                "calc": {"type": "Compute", "code": ["total = amount * 2"]},
            },
        }
    )


@pytest.fixture(params=["memory", "rdf"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryDefinitionRepository()
    return RDFDefinitionRepository(BaseStorageService(str(tmp_path)))


class TestDefinitionRepository:
    """Behaviour shared by both definition repositories."""

    def test_save_and_get(self, repo):
        definition = make_definition()
        repo.save(definition)

        loaded = repo.get_by_id("proc")
        assert loaded.to_document() == definition.to_document()
        assert repo.exists("proc")

    def test_get_unknown_returns_none(self, repo):
        assert repo.get_by_id("missing") is None
        assert not repo.exists("missing")

    def test_save_replaces_previous_version(self, repo):
        repo.save(make_definition(version="1"))
        repo.save(make_definition(version="2"))

        assert repo.get_by_id("proc").version == "2"
        assert repo.count() == 1

    def test_list_is_ordered_by_id(self, repo):
        repo.save(make_definition("zeta"))
        repo.save(make_definition("alpha"))

        assert [definition.id for definition in repo.list()] == ["alpha", "zeta"]

    def test_delete(self, repo):
        repo.save(make_definition())

        assert repo.delete("proc") is True
        assert repo.get_by_id("proc") is None
        assert repo.delete("proc") is False


class TestRDFDefinitionRepository:
    def test_definition_triples(self, tmp_path):
        storage = BaseStorageService(str(tmp_path))
        RDFDefinitionRepository(storage).save(make_definition())

        graph = storage.definitions_graph
        uri = PROC["proc"]
        assert (uri, RDF.type, JPEL.ProcessDefinition) in graph
        assert graph.value(uri, JPEL.name) == Literal("Order Review")
        assert int(graph.value(uri, JPEL.activityCount).toPython()) == 3

    def test_survives_reload(self, tmp_path):
        RDFDefinitionRepository(BaseStorageService(str(tmp_path))).save(make_definition())

        reloaded = RDFDefinitionRepository(BaseStorageService(str(tmp_path)))
        definition = reloaded.get_by_id("proc")

        assert definition.to_document() == make_definition().to_document()
        assert definition.activities["review"].inputs[0].required is True

"""
Unit tests for tree document loading, upgrade and serialization.
"""

import json
import pytest
from decimal import Decimal

from service_tarification.app.decision_tree.catalog import condition_type, condition_types
from service_tarification.app.decision_tree.documents import (
    dump_document, dumps_document, load_document, schema_version_of,
)
from service_tarification.app.decision_tree.errors import MalformedTreeError, TreeDepthExceededError
from service_tarification.app.decision_tree.models import (
    AgeCondition, CommuneCondition, CommuneScope, ComparisonOperator, DefaultCondition, NodeType,
    QfCondition, ReductionKind, StatutSocialCondition, TreeDocument,
)
from shared.test_helpers import TreeFactory


@pytest.fixture
def document_data():
    """A current-schema document mapping."""
    return {
        "schema_version": 1,
        "nodes": [
            {
                "id": "n1",
                "type": "COMMUNE",
                "order": 1,
                "branches": [
                    {
                        "id": "b1",
                        "code": "AGGLO",
                        "label": "Agglomeration",
                        "condition": {"kind": "commune", "scope": "community", "ids": ["cc-1"]},
                        "reduction": {"kind": "percentage", "amount": "10"},
                        "children": [
                            {
                                "id": "n2",
                                "type": "AGE",
                                "branches": [
                                    {"id": "b2", "code": "SENIOR",
                                     "condition": {"kind": "age", "op": "gte", "value": 65},
                                     "reduction": {"kind": "fixed", "amount": "5"}},
                                    {"id": "b3", "code": "OTHER", "condition": {"kind": "default"}},
                                ],
                            }
                        ],
                    },
                    {"id": "b4", "code": "OUT", "condition": {"kind": "commune", "scope": "catchall"}},
                ],
            }
        ],
    }


@pytest.fixture
def legacy_data():
    """A document in the original back office layout."""
    return {
        "version": 1,
        "noeuds": [
            {
                "id": 1,
                "type": "AGE",
                "ordre": 2,
                "branches": [
                    {"id": 11, "code": "ENFANT", "libelle": "Enfant",
                     "condition": {"operateur": "<", "valeur": 18},
                     "reduction": {"type_calcul": "fixe", "valeur": 10, "operation_id": 3}},
                    {"id": 12, "code": "AUTRE", "libelle": "Autre", "condition": {"type": "autre"}},
                ],
            },
            {
                "id": 2,
                "type": "QF",
                "ordre": 1,
                "branches": [
                    {"id": 21, "code": "QF1", "libelle": "QF 0-400",
                     "condition": {"borne_min": 0, "borne_max": 400},
                     "reduction": {"type_calcul": "pourcentage", "valeur": 20},
                     "enfants": [
                         {"id": 3, "type": "STATUT_SOCIAL", "branches": [
                             {"id": 31, "code": "RSA", "condition": {"statuts": ["RSA"]},
                              "reduction": {"type_calcul": "fixe", "valeur": 5}},
                             {"id": 32, "code": "AUTRE", "condition": {"type": "default"}},
                         ]},
                     ]},
                    {"id": 22, "code": "COMMUNES", "condition": {"type": "autre"}},
                ],
            },
            {
                "id": 4,
                "type": "COMMUNE",
                "ordre": 3,
                "branches": [
                    {"id": 41, "code": "AGGLO", "condition": {"type": "communaute", "id": 7}},
                    {"id": 42, "code": "VILLES", "condition": {"type": "communes", "ids": [1, 2]}},
                    {"id": 43, "code": "AUTRE", "condition": {"type": "autre"}},
                ],
            },
        ],
    }


class TestLoadDocument:
    """Loading and validation."""

    def test_load_mapping(self, document_data):
        document = load_document(document_data)

        assert isinstance(document, TreeDocument)
        branch = document.nodes[0].branches[0]
        assert branch.condition == CommuneCondition(scope=CommuneScope.COMMUNITY, ids=("cc-1",))
        assert branch.reduction.amount == Decimal("10")
        assert branch.children[0].branches[0].condition.op == ComparisonOperator.GTE

    def test_load_json_text(self, document_data):
        assert load_document(json.dumps(document_data)) == load_document(document_data)

    def test_invalid_json(self):
        with pytest.raises(MalformedTreeError):
            load_document("{not json")

    def test_non_object(self):
        with pytest.raises(MalformedTreeError):
            load_document("[1, 2]")

    def test_validation_errors_become_malformed_tree_errors(self, document_data):
        document_data["nodes"][0]["branches"][0]["condition"] = {"kind": "age", "op": "lt", "value": 18}
        with pytest.raises(MalformedTreeError) as exc_info:
            load_document(document_data)
        assert exc_info.value.code == "MALFORMED_TREE"
        assert exc_info.value.details["errors"]

    def test_missing_operand(self, document_data):
        document_data["nodes"][0]["branches"][0]["children"][0]["branches"][0]["condition"] = {
            "kind": "age", "op": "between", "min": 10,
        }
        with pytest.raises(MalformedTreeError):
            load_document(document_data)

    def test_unknown_fields_are_rejected(self, document_data):
        document_data["nodes"][0]["colour"] = "blue"
        with pytest.raises(MalformedTreeError):
            load_document(document_data)

    def test_duplicate_node_ids(self, document_data):
        document_data["nodes"][0]["branches"][0]["children"][0]["id"] = "n1"
        with pytest.raises(MalformedTreeError, match="Duplicate node id"):
            load_document(document_data)

    def test_duplicate_branch_ids(self, document_data):
        document_data["nodes"][0]["branches"][1]["id"] = "b1"
        with pytest.raises(MalformedTreeError, match="Duplicate branch id"):
            load_document(document_data)

    def test_depth_limit(self, document_data):
        with pytest.raises(TreeDepthExceededError):
            load_document(document_data, max_depth=1)
        assert load_document(document_data, max_depth=2).nodes

    def test_newer_schema_is_rejected(self, document_data):
        document_data["schema_version"] = 2
        with pytest.raises(MalformedTreeError, match="Unsupported tree schema version"):
            load_document(document_data)

    def test_empty_document(self):
        assert load_document({}) == TreeDocument()


class TestDumpDocument:
    """Serialization."""

    def test_round_trip(self, document_data):
        document = load_document(document_data)
        assert load_document(dump_document(document)) == document
        assert load_document(dumps_document(document)) == document

    def test_factory_trees_round_trip(self):
        for tree in (TreeFactory.community_senior_tree(), TreeFactory.qf_tree()):
            assert load_document(dumps_document(tree.document)) == tree.document

    def test_dump_is_json_safe(self, document_data):
        data = dump_document(load_document(document_data))
        assert json.loads(json.dumps(data)) == data
        assert data["nodes"][0]["branches"][0]["reduction"]["amount"] == "10"


class TestLegacyUpgrade:
    """Documents in the legacy layout are upgraded on load."""

    def test_schema_version_detection(self, legacy_data, document_data):
        assert schema_version_of(legacy_data) == 0
        assert schema_version_of(document_data) == 1
        assert schema_version_of({"nodes": []}) == 1

    def test_upgrade(self, legacy_data):
        document = load_document(legacy_data)
        age_node, qf_node, commune_node = document.nodes

        assert document.schema_version == 1
        assert [node.id for node in document.ordered_nodes()] == ["2", "1", "4"]

        minor = age_node.branches[0]
        assert minor.label == "Enfant"
        assert minor.condition == AgeCondition(op=ComparisonOperator.LT, value=18)
        assert minor.reduction.kind == ReductionKind.FIXED
        assert minor.reduction.operation_ref == "3"
        assert isinstance(age_node.branches[1].condition, DefaultCondition)

        low = qf_node.branches[0]
        assert low.condition == QfCondition(op=ComparisonOperator.BETWEEN, min=0, max=400)
        assert low.reduction.kind == ReductionKind.PERCENTAGE
        assert low.children[0].branches[0].condition == StatutSocialCondition(statuses=("RSA",))

        assert commune_node.branches[0].condition == CommuneCondition(scope=CommuneScope.COMMUNITY, ids=("7",))
        assert commune_node.branches[1].condition.ids == ("1", "2")

    def test_upgraded_document_dumps_current_schema(self, legacy_data):
        data = dump_document(load_document(legacy_data))
        assert data["schema_version"] == 1
        assert "noeuds" not in data

    def test_unknown_legacy_operator(self, legacy_data):
        legacy_data["noeuds"][0]["branches"][0]["condition"] = {"operateur": "~", "valeur": 18}
        with pytest.raises(MalformedTreeError):
            load_document(legacy_data)


class TestConditionCatalog:
    """Node types offered to authors."""

    def test_all_types_in_display_order(self):
        types = condition_types()
        assert [info.code for info in types] == [
            NodeType.COMMUNE, NodeType.QF, NodeType.AGE,
            NodeType.FIDELITE, NodeType.MULTI_INSCRIPTIONS, NodeType.STATUT_SOCIAL,
        ]
        assert [info.display_order for info in types] == [10, 20, 30, 40, 50, 60]

    def test_lookup(self):
        info = condition_type(NodeType.QF)
        assert info.label == "Quotient Familial"
        assert "is_null" in info.operators

"""
Integration tests for the tariff authoring and pricing flow.
"""

import pytest
from datetime import date
from decimal import Decimal

from prometheus_client import CollectorRegistry

from service_tarification.app.decision_tree.documents import dumps_document, load_document
from service_tarification.app.decision_tree.editing import (
    add_branch, add_child_node, add_node, move_node, remove_branch, set_reduction,
)
from service_tarification.app.decision_tree.engine import evaluate_tree
from service_tarification.app.decision_tree.errors import NoMatchingBranchError, TreeLockedError
from service_tarification.app.decision_tree.models import NodeType, StatutSocialCondition
from service_tarification.app.service import TarificationService
from service_tarification.app.subjects import SubjectProfile, build_context
from shared.config import ServiceConfig
from shared.metrics import MetricsCollector
from shared.test_helpers import age, community, create_tariff, fixed, percentage, qf

REFERENCE_DATE = date(2024, 9, 1)


class TestTarificationFlow:
    """Author a tree, price subscriptions, then revise the pricing."""

    @pytest.fixture
    def service(self):
        metrics = MetricsCollector("tarification", registry=CollectorRegistry())
        return TarificationService(config=ServiceConfig(), metrics=metrics)

    @pytest.fixture
    def tariff(self):
        return create_tariff("120", tariff_id="adult-2024")

    @pytest.fixture
    def authored_tree(self, service, tariff):
        """Community residents get 10%, and 5 more when over 65; low QF gets 15 off."""
        manager = service.manager
        tree = manager.get_or_create_tree(tariff)

        def author(document):
            document = add_node(document, NodeType.QF, node_id="n-qf")
            document = add_node(document, NodeType.COMMUNE, node_id="n-commune")
            document = move_node(document, "n-commune", "up")
            document = add_branch(document, "n-qf", "QF_LOW", qf("lte", 400), reduction=fixed(15),
                                  branch_id="b-qf-low")
            document = add_branch(document, "n-commune", "AGGLO", community("cc-1"), reduction=percentage(10),
                                  branch_id="b-agglo")
            document = add_child_node(document, "n-commune", "b-agglo", NodeType.AGE, child_id="n-age")
            return add_branch(document, "n-age", "SENIOR", age("gte", 65), reduction=fixed(5), branch_id="b-senior")

        return manager.update_tree(tree.id, author)

    def test_authoring_produces_expected_chain(self, authored_tree):
        nodes = authored_tree.document.ordered_nodes()
        assert [node.id for node in nodes] == ["n-commune", "n-qf"]
        agglo = nodes[0].find_branch("b-agglo")
        assert [branch.code for branch in agglo.children[0].branches] == ["SENIOR", "DEFAULT"]

    def test_advertised_range(self, service, tariff, authored_tree):
        price_bounds = service.bounds_for(tariff)
        assert price_bounds.max == Decimal("120")
        # 12 (10%) + 5 (senior) + 15 (low QF)
        assert price_bounds.min == Decimal("88")
        assert service.advertised_price(tariff) == Decimal("88")

    def test_pricing_and_revision(self, service, tariff, authored_tree):
        senior = SubjectProfile(
            birth_date=date(1950, 1, 1),
            quotient_familial=Decimal("380"),
            residence_id="12",
            community_ids={"cc-1"},
        )

        quote = service.quote(tariff, senior, REFERENCE_DATE)
        assert quote.result.path == ["AGGLO", "SENIOR", "QF_LOW"]
        assert quote.final_price == Decimal("88")

        locked = service.manager.get_tree(quote.tree_id)
        assert locked.locked is True
        with pytest.raises(TreeLockedError):
            service.manager.update_tree(locked.id, lambda d: set_reduction(d, "n-qf", "b-qf-low", fixed(30)))

        draft = service.manager.duplicate_tree(locked.id)
        service.manager.update_tree(draft.id, lambda d: set_reduction(d, "n-qf", "b-qf-low", fixed(30)))

        revised = service.quote(tariff, senior, REFERENCE_DATE)
        assert revised.final_price == Decimal("73")

        # Past prices stay reproducible from the locked tree
        context = build_context(senior, REFERENCE_DATE)
        assert evaluate_tree(service.manager.get_tree(quote.tree_id), tariff.base_price, context) == quote.result

    def test_documents_survive_storage(self, service, authored_tree):
        stored = dumps_document(authored_tree.document)
        restored = load_document(stored)
        assert restored == authored_tree.document

    def test_uncovered_subject_is_reported(self, service, tariff):
        tree = service.manager.get_or_create_tree(tariff)

        def statut_only(document):
            document = add_node(document, NodeType.STATUT_SOCIAL, node_id="n-statut")
            return add_branch(document, "n-statut", "RSA", StatutSocialCondition(statuses=("RSA",)),
                              reduction=fixed(40), branch_id="b-rsa")

        tree = service.manager.update_tree(tree.id, statut_only)
        default_id = tree.document.nodes[0].branches[-1].id
        service.manager.update_tree(tree.id, lambda d: remove_branch(d, "n-statut", default_id))

        with pytest.raises(NoMatchingBranchError):
            service.simulate(tariff, SubjectProfile(social_status="SALARIE"), REFERENCE_DATE)
        assert service.simulate(tariff, SubjectProfile(social_status="RSA"), REFERENCE_DATE).final_price == \
            Decimal("80")

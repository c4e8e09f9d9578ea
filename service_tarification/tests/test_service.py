"""
Unit tests for the tarification service facade.
"""

import pytest
from datetime import date
from decimal import Decimal

from prometheus_client import CollectorRegistry

from service_tarification.app.decision_tree.editing import add_branch, add_node
from service_tarification.app.decision_tree.errors import MalformedTreeError, TreeLockedError
from service_tarification.app.decision_tree.models import DisplayMode, NodeType
from service_tarification.app.service import TarificationService
from service_tarification.app.subjects import SubjectProfile
from shared.config import ServiceConfig
from shared.errors import ErrorResponse
from shared.logging import add_correlation_context, clear_context, set_request_id, set_structure_context
from shared.metrics import MetricsCollector
from shared.test_helpers import age, create_tariff, fixed

REFERENCE_DATE = date(2024, 9, 1)


def minor_discount(document):
    document = add_node(document, NodeType.AGE, node_id="n-age")
    return add_branch(document, "n-age", "MINOR", age("lt", 18), reduction=fixed(20), branch_id="b-minor")


class TestTarificationService:
    """Advertise, simulate and quote."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("tarification", registry=CollectorRegistry())

    @pytest.fixture
    def service(self, metrics):
        return TarificationService(config=ServiceConfig(), metrics=metrics)

    @pytest.fixture
    def tariff(self):
        return create_tariff("100")

    @pytest.fixture
    def tree(self, service, tariff):
        tree = service.manager.create_tree(tariff.id)
        return service.manager.update_tree(tree.id, minor_discount)

    @pytest.fixture
    def child(self):
        return SubjectProfile(birth_date=date(2010, 3, 1))

    @pytest.fixture
    def adult(self):
        return SubjectProfile(birth_date=date(1980, 3, 1))

    def test_tariff_without_tree(self, service, tariff, adult):
        assert service.bounds_for(tariff).min == Decimal("100")
        assert service.advertised_price(tariff) == Decimal("100")
        assert service.simulate(tariff, adult, REFERENCE_DATE).final_price == Decimal("100")
        assert tariff.id not in service.manager.active

    def test_bounds_and_advertised_price(self, service, tariff, tree):
        assert service.bounds_for(tariff).min == Decimal("80")
        assert service.advertised_price(tariff) == Decimal("80")

        service.manager.set_display_mode(tree.id, DisplayMode.MAXIMUM)
        assert service.advertised_price(tariff) == Decimal("100")

    def test_simulate_does_not_lock(self, service, tariff, tree, child):
        result = service.simulate(tariff, child, REFERENCE_DATE)
        assert result.final_price == Decimal("80")
        assert service.manager.status(tree.id).locked is False

    def test_quote_locks_tree(self, service, tariff, tree, child, metrics):
        quote = service.quote(tariff, child, REFERENCE_DATE)

        assert quote.final_price == Decimal("80")
        assert quote.tree_id == tree.id
        assert quote.tree_version == tree.version
        assert service.manager.status(tree.id).locked is True
        assert metrics.get_sample_value(
            "business_events_total", {"event_type": "tariff_quoted", "service": "tarification"}
        ) == 1.0

        with pytest.raises(TreeLockedError):
            service.manager.update_tree(tree.id, lambda d: add_node(d, NodeType.QF))

    def test_quote_creates_missing_tree(self, service, tariff, adult):
        quote = service.quote(tariff, adult, REFERENCE_DATE)
        assert quote.final_price == Decimal("100")
        assert service.manager.get_active_tree(tariff.id).locked is True

    def test_quote_after_duplicate_uses_new_tree(self, service, tariff, tree, child):
        first = service.quote(tariff, child, REFERENCE_DATE)
        copy = service.manager.duplicate_tree(tree.id)
        service.manager.update_tree(
            copy.id,
            lambda d: add_branch(d, "n-age", "SENIOR", age("gte", 65), reduction=fixed(30))
        )

        second = service.quote(tariff, child, REFERENCE_DATE)
        assert second.tree_id != first.tree_id
        assert second.tree_version > first.tree_version
        assert second.final_price == first.final_price

    def test_quote_to_dict(self, service, tariff, tree, child):
        data = service.quote(tariff, child, REFERENCE_DATE).to_dict()
        assert data["tariff_id"] == tariff.id
        assert data["final_price"] == "80.00"


class TestErrorResponses:
    """Domain errors convert to the shared error response."""

    def teardown_method(self):
        clear_context()

    def test_error_response_carries_request_id(self):
        request_id = set_request_id("req-123")
        response = MalformedTreeError("bad tree", {"node_id": "n1"}).to_response()

        assert isinstance(response, ErrorResponse)
        assert response.trace_id == request_id
        assert response.code == "MALFORMED_TREE"
        assert response.details == {"node_id": "n1"}

    def test_locked_error_response(self):
        response = TreeLockedError("tree-1").to_response()
        assert response.code == "TREE_LOCKED"
        assert response.trace_id is None


class TestLoggingContext:
    """Correlation ids bound to log events."""

    def teardown_method(self):
        clear_context()

    def test_correlation_context(self):
        set_request_id("req-1")
        set_structure_context("structure-7")
        event = add_correlation_context(None, "info", {"event": "Tariff quoted"})
        assert event["request_id"] == "req-1"
        assert event["structure_id"] == "structure-7"

    def test_service_binds_tariff_structure(self):
        service = TarificationService(
            config=ServiceConfig(), metrics=MetricsCollector("tarification", registry=CollectorRegistry())
        )
        tariff = create_tariff("10").model_copy(update={"structure_id": "structure-3"})
        service.simulate(tariff, SubjectProfile(), REFERENCE_DATE)

        event = add_correlation_context(None, "info", {})
        assert event == {"structure_id": "structure-3"}

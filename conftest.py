"""Shared pytest fixtures for the POS ledger pipeline tests."""

import uuid
from datetime import datetime, timezone

import pytest

from core.audit.events import AuditLogger, InMemoryAuditBackend
from core.config import default_config
from core.models.canonical import Order
from core.models.ledger import SalePayload, UniversalTransaction, TransactionType
from core.observability.metrics import get_metrics
from classification_engine.engine import ClassificationEngine
from classification_engine.rules import determine_subtype
from storage.eav_store import EAVStore
from storage.migration_safe import MigrationSafeAdapter


ORG = "org-test"
LUNCH = datetime(2024, 1, 9, 12, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Every test starts with empty metrics."""
    get_metrics().reset()
    yield
    get_metrics().reset()


@pytest.fixture
def config(tmp_path):
    return default_config().with_database(tmp_path / "ledger.db")


@pytest.fixture
def store(config):
    return EAVStore(config.persistence.database_path)


@pytest.fixture
def audit_backend():
    return InMemoryAuditBackend()


@pytest.fixture
def audit(audit_backend):
    audit = AuditLogger()
    audit.add_backend(audit_backend)
    return audit


@pytest.fixture
def adapter(store, audit):
    return MigrationSafeAdapter(store, allow_simulated_writes=True, audit=audit)


def build_order(**overrides) -> Order:
    """A completed cash order: 3 food items totalling 120, no tax, at lunch."""
    when = overrides.pop("when", LUNCH)
    method = overrides.pop("method", "cash")
    data = {
        "id": f"pos-{uuid.uuid4().hex[:8]}",
        "orderNumber": "ORD-1",
        "organizationId": ORG,
        "items": [
            {"name": "Burger", "category": "food", "quantity": 2, "unitPrice": "35.00"},
            {"name": "Fries", "category": "food", "quantity": 1, "unitPrice": "20.00"},
            {"name": "Salad", "category": "food", "quantity": 1, "unitPrice": "30.00"},
        ],
        "subtotal": "120.00",
        "taxes": "0",
        "totalAmount": "120.00",
        "payment": {"method": method, "amount": "120.00", "timestamp": when.isoformat()},
        "createdAt": when.isoformat(),
        "completedAt": when.isoformat(),
    }
    data.update(overrides)
    return Order.model_validate(data)


def build_transaction(order: Order) -> UniversalTransaction:
    """Draft SALES_ORDER transaction for an order, without persistence."""
    payment = order.payment
    return UniversalTransaction(
        id=str(uuid.uuid4()),
        organization_id=order.organization_id,
        transaction_type=TransactionType.SALES_ORDER,
        transaction_subtype=determine_subtype(order),
        transaction_number=order.order_number,
        transaction_date=order.completion_time.date(),
        total_amount=order.total_amount,
        transaction_data=SalePayload(
            raw=order.model_dump(mode="json"),
            payment={
                "method": payment.method,
                "amount": payment.amount,
                "timestamp": payment.timestamp,
            },
            pos_order_id=order.id,
            customer_name=order.customer_name,
            table_number=order.table_number,
            items=order.items,
            subtotal=order.subtotal,
            taxes=order.taxes,
            discounts=order.discounts,
            service_charges=order.service_charges,
            tax_jurisdiction_rate=order.tax_jurisdiction_rate,
            completed_at=order.completed_at,
        ),
    )


@pytest.fixture
def make_order():
    return build_order


@pytest.fixture
def make_transaction():
    def factory(**overrides) -> UniversalTransaction:
        return build_transaction(build_order(**overrides))
    return factory


@pytest.fixture
def classify_order(config):
    engine = ClassificationEngine(config)

    def classify(order: Order):
        return engine.classify(build_transaction(order))
    return classify

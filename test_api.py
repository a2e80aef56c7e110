"""
API Tests

Drives the FastAPI app through TestClient against a temporary database:
health probes, event intake, journal and transaction reads, stats and metrics.
"""

import pytest
from fastapi.testclient import TestClient

from api.server import create_app


ORG = "org-test"


@pytest.fixture
def client(config):
    with TestClient(create_app(config)) as client:
        yield client


def order_body(make_order, **overrides):
    return make_order(**overrides).model_dump(mode="json", by_alias=True)


class TestHealth:
    """Probes."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"] == {"api": "up", "storage": "up"}

    def test_ready_and_live(self, client):
        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/live").json() == {"status": "alive"}


class TestEvents:
    """POST /events/*."""

    def test_order_completed(self, client, make_order):
        response = client.post("/events/orders/completed", json=order_body(make_order))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["posting_status"] == "posted"
        assert data["journal_number"] == "JE-20240109-0001"

    def test_duplicate_order_is_422(self, client, make_order):
        client.post("/events/orders/completed", json=order_body(make_order))
        response = client.post("/events/orders/completed", json=order_body(make_order))

        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_invalid_body_is_rejected(self, client):
        response = client.post("/events/orders/completed", json={"orderNumber": "ORD-1"})
        assert response.status_code == 422
        assert "detail" in response.json()

    @pytest.mark.parametrize("subtotal", ["abc", "NaN", "Infinity", "1.2.3"])
    def test_malformed_amount_is_422(self, client, make_order, subtotal):
        body = order_body(make_order)
        body["subtotal"] = subtotal

        response = client.post("/events/orders/completed", json=body)

        assert response.status_code == 422
        assert "invalid decimal" in str(response.json()["detail"])

    def test_payment_refund_and_void(self, client, make_order):
        client.post("/events/orders/completed", json=order_body(make_order))

        payment = client.post("/events/payments/received", json={
            "method": "cash",
            "amount": "120.00",
            "timestamp": "2024-01-09T12:40:00+00:00",
            "orderId": "ORD-1",
            "organizationId": ORG,
        })
        assert payment.status_code == 200

        refund = client.post("/events/refunds/processed", json={
            "orderId": "ORD-1",
            "refundAmount": "2000",
            "reason": "Wrong table",
            "organizationId": ORG,
        })
        assert refund.status_code == 200
        assert refund.json()["requires_approval"] is True

        void = client.post("/events/orders/voided", json={
            "orderId": "ORD-1",
            "reason": "Duplicate ticket",
            "organizationId": ORG,
        })
        assert void.status_code == 200
        assert void.json()["posting_status"] == "voided"

    def test_stats(self, client, make_order):
        client.post("/events/orders/completed", json=order_body(make_order))

        everything = client.get("/events/stats").json()
        assert everything["organizations"][ORG]["total_events"] == 1

        one = client.get("/events/stats", params={"organization_id": ORG}).json()
        assert one["succeeded"] == 1

        assert client.get("/events/stats", params={"organization_id": "org-none"}).status_code == 404


class TestReads:
    """Journal and transaction lookups."""

    def test_journals(self, client, make_order):
        created = client.post("/events/orders/completed", json=order_body(make_order)).json()

        listed = client.get("/journals", params={"organization_id": ORG})
        assert listed.status_code == 200
        [summary] = listed.json()
        assert summary["journal_number"] == created["journal_number"]
        assert summary["line_count"] == 2

        journal = client.get(f"/journals/{created['journal_entry_id']}").json()
        assert journal["status"] == "posted"
        assert [line["account_code"] for line in journal["lines"]] == ["1110000", "4110000"]

    def test_missing_journal(self, client):
        response = client.get("/journals/does-not-exist")
        assert response.status_code == 404
        assert response.json()["detail"] == "Journal entry not found"

    def test_journal_list_requires_organization(self, client):
        assert client.get("/journals").status_code == 422

    def test_transaction(self, client, make_order):
        client.post("/events/orders/completed", json=order_body(make_order))

        response = client.get(f"/transactions/{ORG}/ORD-1")

        assert response.status_code == 200
        data = response.json()
        assert data["transaction"]["transaction_number"] == "ORD-1"
        assert data["transaction"]["transaction_data"]["kind"] == "sale"
        assert data["classification"]["review_required"] is False

    def test_missing_transaction(self, client):
        assert client.get(f"/transactions/{ORG}/ORD-404").status_code == 404


def test_metrics(client, make_order):
    client.post("/events/orders/completed", json=order_body(make_order))

    summary = client.get("/metrics").json()

    assert summary["events"]["succeeded"] == 1
    assert summary["persistence"]["by_tier"]["direct"]["succeeded"] >= 1

from datetime import datetime, timezone

import pytest

from flask_app.models import Customer, CustomerType, Transaction, db


@pytest.mark.parametrize(
    "path",
    [
        "/api/transactions",
        "/api/transactions/txn-a",
        "/api/customers",
        "/api/customers/abc",
        "/api/customers/abc/transactions",
        "/api/dashboard/metrics",
    ],
)
def test_data_endpoints_require_login(client, path):
    response = client.get(path)
    assert response.status_code == 401


class TestTransactions:
    def test_list_is_newest_first_with_pagination(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff

        response = client.get("/api/transactions?limit=2")

        assert response.status_code == 200
        data = response.get_json()
        assert [t["id"] for t in data["transactions"]] == ["txn-c", "txn-b"]
        assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}
        assert data["transactions"][0]["customer"]["email"] == "grace@example.org"

    def test_second_page(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff

        data = client.get("/api/transactions?limit=2&page=2").get_json()

        assert [t["id"] for t in data["transactions"]] == ["txn-a"]

    def test_limit_is_capped(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff
        data = client.get("/api/transactions?limit=5000").get_json()
        assert data["pagination"]["limit"] == 200

    def test_status_filter_is_case_insensitive(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff

        data = client.get("/api/transactions?status=pending").get_json()

        assert [t["id"] for t in data["transactions"]] == ["txn-c"]

    def test_search_matches_description(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff

        data = client.get("/api/transactions?search=spring").get_json()

        assert [t["id"] for t in data["transactions"]] == ["txn-a"]

    def test_date_range_is_inclusive(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff

        data = client.get("/api/transactions?startDate=2024-03-01&endDate=2024-03-05").get_json()

        assert sorted(t["id"] for t in data["transactions"]) == ["txn-a", "txn-b"]

    def test_invalid_date_is_rejected(self, logged_in_staff):
        client, _ = logged_in_staff
        response = client.get("/api/transactions?startDate=yesterday")
        assert response.status_code == 400

    def test_detail_includes_raw_body(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff
        sample_transactions[0].response_body = {"id": "txn-a", "processor": "data"}
        db.session.commit()

        data = client.get("/api/transactions/txn-a").get_json()

        assert data["responseBody"] == {"id": "txn-a", "processor": "data"}
        assert data["customer"]["firstName"] == "Grace"

    def test_detail_not_found(self, logged_in_staff):
        client, _ = logged_in_staff
        response = client.get("/api/transactions/missing")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Transaction not found"}


class TestRefunds:
    def test_full_refund_updates_totals(self, logged_in_staff, sample_customer, sample_transactions):
        client, _ = logged_in_staff

        response = client.post("/api/transactions/txn-a/refund", json={"reason": " Donor request "})

        assert response.status_code == 200
        data = response.get_json()
        assert data["message"] == "Refund processed successfully"
        assert data["refundedAmount"] == 5000
        assert data["transaction"]["status"] == "REFUNDED"
        assert data["transaction"]["refundReason"] == "Donor request"
        customer = db.session.get(Customer, sample_customer.id)
        assert customer.total_donated == 2500

    def test_partial_refund_records_amount(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff

        response = client.post("/api/transactions/txn-a/refund", json={"amount": 1000})

        assert response.status_code == 200
        transaction = db.session.get(Transaction, "txn-a")
        assert transaction.refund_amount == 1000
        assert transaction.refunded_at is not None

    def test_second_refund_conflicts(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff
        client.post("/api/transactions/txn-a/refund")

        response = client.post("/api/transactions/txn-a/refund")

        assert response.status_code == 409

    @pytest.mark.parametrize("amount", [0, -5, "100", 1.5, True, 5001])
    def test_invalid_amount_is_rejected(self, logged_in_staff, sample_transactions, amount):
        client, _ = logged_in_staff

        response = client.post("/api/transactions/txn-a/refund", json={"amount": amount})

        assert response.status_code == 400
        assert db.session.get(Transaction, "txn-a").status == "SETTLED"

    def test_refund_missing_transaction(self, logged_in_staff):
        client, _ = logged_in_staff
        assert client.post("/api/transactions/nope/refund").status_code == 404


class TestCustomers:
    def test_list_and_search(self, logged_in_staff, sample_customer):
        client, _ = logged_in_staff
        db.session.add(Customer(external_customer_id="c-2", first_name="Alan", last_name="Turing"))
        db.session.commit()

        everyone = client.get("/api/customers").get_json()
        by_full_name = client.get("/api/customers?search=grace giver").get_json()

        assert [c["lastName"] for c in everyone["customers"]] == ["Giver", "Turing"]
        assert everyone["pagination"]["limit"] == 20
        assert [c["id"] for c in by_full_name["customers"]] == [sample_customer.id]

    def test_type_filter(self, logged_in_staff, sample_customer, sample_transactions):
        client, _ = logged_in_staff

        recurring = client.get("/api/customers?type=recurring").get_json()
        one_time = client.get("/api/customers?type=one-time").get_json()

        assert len(recurring["customers"]) == 1
        assert one_time["customers"] == []

    def test_unknown_type_is_rejected(self, logged_in_staff):
        client, _ = logged_in_staff
        assert client.get("/api/customers?type=vip").status_code == 400

    def test_detail_and_transactions(self, logged_in_staff, sample_customer, sample_transactions):
        client, _ = logged_in_staff

        detail = client.get(f"/api/customers/{sample_customer.id}").get_json()
        history = client.get(f"/api/customers/{sample_customer.id}/transactions").get_json()

        assert detail["totalDonated"] == 7500
        assert detail["customerType"] == CustomerType.RECURRING.value
        assert history["customer"]["id"] == sample_customer.id
        assert [t["id"] for t in history["transactions"]] == ["txn-c", "txn-b", "txn-a"]
        assert history["pagination"]["total"] == 3

    def test_missing_customer(self, logged_in_staff):
        client, _ = logged_in_staff
        assert client.get("/api/customers/nope").status_code == 404
        assert client.get("/api/customers/nope/transactions").status_code == 404


class TestDashboardMetrics:
    def test_empty_database(self, logged_in_staff):
        client, _ = logged_in_staff

        data = client.get("/api/dashboard/metrics").get_json()

        assert data == {"totalDonations": 0, "activeSubscribers": 0, "thisMonth": 0, "avgDonation": 0}

    def test_settled_totals_in_currency_units(self, logged_in_staff, sample_transactions):
        client, _ = logged_in_staff
        db.session.add(
            Transaction(id="txn-now", amount=1234, status="SETTLED", processor_created_at=datetime.now(timezone.utc))
        )
        db.session.commit()

        data = client.get("/api/dashboard/metrics").get_json()

        assert data["totalDonations"] == 87.34
        assert data["thisMonth"] == 12.34
        assert data["avgDonation"] == 29.11
        assert data["activeSubscribers"] == 1

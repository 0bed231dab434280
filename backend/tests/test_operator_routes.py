"""
Operator API tests.

Verifies:
- Every operator endpoint returns 401 without the shared bearer token
- Contract payment endpoints map validation/not-found/conflict to 400/404/409
- Transaction and reconciliation endpoints return JSON reports
- Health endpoint reports database and gateway configuration
"""

import pytest
from conftest import auth_headers, make_pending
from marketpay.models.payments import METHOD_PAYME


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All operator endpoints return 401 without a valid token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/contracts/7/payments"),
            ("POST", "/api/contracts/7/payments/manual"),
            ("POST", "/api/contracts/7/payments/periods"),
            ("PATCH", "/api/contracts/7/payments/periods/1"),
            ("GET", "/api/transactions"),
            ("GET", "/api/transactions/pm-1"),
            ("GET", "/api/reconciliation/ledger"),
            ("GET", "/api/reconciliation/contracts"),
            ("GET", "/api/reconciliation/rollup"),
            ("GET", "/api/reconciliation/totals"),
            ("GET", "/api/reconciliation/coverage"),
        ],
    )
    def test_requires_token(self, client, db_session, method, path):
        response = client.open(path, method=method, json={})
        assert response.status_code == 401

        response = client.open(path, method=method, json={}, headers=auth_headers("wrong-token"))
        assert response.status_code == 401


# =============================================================================
# CONTRACT PAYMENTS
# =============================================================================


class TestContractPayments:
    def test_list_periods(self, client, db_session, contract):
        response = client.get('/api/contracts/7/payments', headers=auth_headers())
        assert response.status_code == 200
        body = response.get_json()
        assert body["contract_id"] == 7
        assert body["items"] == []
        assert body["snapshot"]["next_period_start"] == "2024-01-01"

    def test_list_unknown_contract(self, client, db_session):
        response = client.get('/api/contracts/404/payments', headers=auth_headers())
        assert response.status_code == 404

    def test_manual_payment(self, client, db_session, contract):
        response = client.post('/api/contracts/7/payments/manual', headers=auth_headers(), json={
            "transfer_number": "PP-000123",
            "transfer_date": "2024-06-01",
            "amount": "1500000",
        })
        assert response.status_code == 201
        body = response.get_json()
        assert [i["period_start"] for i in body["items"]] == ["2024-04-01", "2024-05-01", "2024-06-01"]
        assert body["transaction"]["external_reference"] == "PP-000123"

        again = client.post('/api/contracts/7/payments/manual', headers=auth_headers(), json={
            "transfer_number": "PP-000123",
            "transfer_date": "2024-07-01",
        })
        assert again.status_code == 409

    @pytest.mark.parametrize("payload", [
        {"transfer_number": "PP-1", "amount": "700000"},
        {"transfer_number": "PP-1", "amount": "lots"},
        {"transfer_number": "PP-1", "months": "two"},
        {"amount": "500000"},
    ])
    def test_manual_payment_validation(self, client, db_session, contract, payload):
        response = client.post('/api/contracts/7/payments/manual', headers=auth_headers(), json=payload)
        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_manual_payment_non_object_body(self, client, db_session, contract):
        response = client.post('/api/contracts/7/payments/manual', headers=auth_headers(), json=[1, 2])
        assert response.status_code == 400

    def test_create_and_update_period(self, client, db_session, contract):
        response = client.post('/api/contracts/7/payments/periods', headers=auth_headers(), json={
            "start_month": "2024-01",
            "months": 2,
            "status": "SKIPPED",
            "notes": "Renovation",
        })
        assert response.status_code == 201
        items = response.get_json()["items"]
        assert [i["status"] for i in items] == ["SKIPPED", "SKIPPED"]

        response = client.patch(
            f'/api/contracts/7/payments/periods/{items[0]["id"]}',
            headers=auth_headers(),
            json={"status": "PAID", "amount": "500000"},
        )
        assert response.status_code == 200
        assert response.get_json()["status"] == "PAID"

    def test_create_period_bad_month(self, client, db_session, contract):
        response = client.post('/api/contracts/7/payments/periods', headers=auth_headers(), json={
            "start_month": "January",
        })
        assert response.status_code == 400

    def test_update_unknown_period(self, client, db_session, contract):
        response = client.patch('/api/contracts/7/payments/periods/999', headers=auth_headers(),
                                json={"status": "PAID"})
        assert response.status_code == 404


# =============================================================================
# TRANSACTIONS / REPORTS
# =============================================================================


class TestTransactions:
    def test_list_and_get(self, client, db_session, attendance):
        make_pending("pm-1", "15000", METHOD_PAYME, attendance=attendance)

        response = client.get('/api/transactions?method=PAYME', headers=auth_headers())
        assert response.status_code == 200
        body = response.get_json()
        assert body["total"] == 1
        assert body["items"][0]["external_reference"] == "pm-1"

        response = client.get('/api/transactions/pm-1', headers=auth_headers())
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "PENDING"
        assert body["click_records"] == []
        assert body["periods"] == []

    def test_get_unknown(self, client, db_session):
        response = client.get('/api/transactions/nope', headers=auth_headers())
        assert response.status_code == 404

    def test_bad_filters(self, client, db_session):
        assert client.get('/api/transactions?method=VISA', headers=auth_headers()).status_code == 400
        assert client.get('/api/transactions?from=garbage', headers=auth_headers()).status_code == 400


class TestReconciliationRoutes:
    def test_reports_respond(self, client, db_session, contract):
        for path in (
            '/api/reconciliation/ledger',
            '/api/reconciliation/contracts?year=2024&month=6',
            '/api/reconciliation/rollup?months=3',
            '/api/reconciliation/totals?type=store',
            '/api/reconciliation/coverage?year=2024&month=6',
        ):
            response = client.get(path, headers=auth_headers())
            assert response.status_code == 200, path

    def test_bad_parameters(self, client, db_session):
        assert client.get('/api/reconciliation/ledger?type=kiosk', headers=auth_headers()).status_code == 400
        assert client.get('/api/reconciliation/totals?method=VISA', headers=auth_headers()).status_code == 400
        assert client.get('/api/reconciliation/coverage', headers=auth_headers()).status_code == 400
        assert client.get(
            '/api/reconciliation/ledger?from=2024-02-02&to=2024-02-01', headers=auth_headers()
        ).status_code == 400


class TestHealth:
    def test_health(self, client, db_session):
        response = client.get('/api/health')
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["gateways"]["details"] == {"click": True, "payme": True}

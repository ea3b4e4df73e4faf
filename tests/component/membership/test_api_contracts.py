"""
Component Tests for Contract API

Enrollment, signature, approval and contract-level cancellation.
"""

from datetime import date

from tests.fixtures import BASIC, COMMITMENT, make_contract_request

API = "/api/v1/memberships"


class TestCreateContract:
    """Tests for POST /contracts"""

    def test_create_returns_201(self, client, mock_invoice_client):
        response = client.post(f"{API}/contracts", json=make_contract_request("mbr_1"))

        assert response.status_code == 201
        data = response.json()
        assert data["contract"]["status"] == "pending_signature"
        assert data["contract"]["contract_number"] == "GYM-2026-000001"
        assert data["subscription"]["status"] == "active"
        assert data["subscription"]["current_period_end"] == "2026-01-31"
        assert data["subscription"]["agreed_price"] == {"amount": "300.00", "currency": "SAR"}
        assert len(mock_invoice_client.charges_for("membership_period")) == 1

    def test_missing_plan_id_is_422(self, client):
        response = client.post(f"{API}/contracts", json={"member_id": "mbr_1"})

        assert response.status_code == 422

    def test_unknown_plan_is_404(self, client):
        response = client.post(f"{API}/contracts", json=make_contract_request("mbr_1", "plan_gold"))

        assert response.status_code == 404

    def test_cooling_off_above_hard_cap_is_422(self, client):
        response = client.post(f"{API}/contracts", json=make_contract_request("mbr_1", cooling_off_days=30))

        assert response.status_code == 422

    def test_second_live_subscription_is_409(self, client, enrolled):
        enrolled("mbr_1")

        response = client.post(f"{API}/contracts", json=make_contract_request("mbr_1", COMMITMENT.plan_id))

        assert response.status_code == 409


class TestSignAndApprove:
    """Tests for signature and approval endpoints"""

    def test_sign_activates(self, client, enrolled, mock_event_bus):
        body = enrolled("mbr_1")

        assert body["contract"]["status"] == "active"
        assert body["contract"]["signed_at"] is not None
        mock_event_bus.assert_event_published("contract.activated")

    def test_get_contract(self, client, enrolled):
        body = enrolled("mbr_1")

        response = client.get(f"{API}/contracts/{body['contract']['contract_id']}")

        assert response.status_code == 200
        assert response.json()["plan_id"] == BASIC.plan_id

    def test_get_unknown_contract_is_404(self, client):
        response = client.get(f"{API}/contracts/ctr_missing")

        assert response.status_code == 404

    def test_empty_signature_is_422(self, client, enrolled):
        body = enrolled("mbr_1", sign=False)

        response = client.post(
            f"{API}/contracts/{body['contract']['contract_id']}/sign", json={"signature": ""}
        )

        assert response.status_code == 422

    def test_approve_active_contract_is_409(self, client, enrolled):
        body = enrolled("mbr_1")

        response = client.post(
            f"{API}/contracts/{body['contract']['contract_id']}/approve", json={"staff_id": "staff_7"}
        )

        assert response.status_code == 409
        data = response.json()
        assert data["current_status"] == "active"
        assert data["target_status"] == "active"

    def test_approve_pending_contract(self, client, enrolled):
        body = enrolled("mbr_1", sign=False)

        response = client.post(
            f"{API}/contracts/{body['contract']['contract_id']}/approve", json={"staff_id": "staff_7"}
        )

        assert response.status_code == 200
        assert response.json()["approved_by"] == "staff_7"


class TestContractCancellation:
    """Tests for contract-addressed cancellation endpoints"""

    def test_cooling_off_cancel(self, client, enrolled, mock_invoice_client):
        body = enrolled("mbr_1")

        response = client.post(f"{API}/contracts/{body['contract']['contract_id']}/cancel-cooling-off")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert len(mock_invoice_client.credits_for("cooling_off_refund")) == 1

    def test_cooling_off_cancel_after_window_is_409(self, client, enrolled, clock):
        body = enrolled("mbr_1")
        clock.set(date(2026, 1, 9))

        response = client.post(f"{API}/contracts/{body['contract']['contract_id']}/cancel-cooling-off")

        assert response.status_code == 409

    def test_standard_cancel_and_withdraw(self, client, enrolled, clock):
        body = enrolled("mbr_1")
        contract_id = body["contract"]["contract_id"]
        clock.set(date(2026, 1, 20))

        cancelled = client.post(f"{API}/contracts/{contract_id}/cancel", params={"reason": "moving"})
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "in_notice_period"

        withdrawn = client.post(f"{API}/contracts/{contract_id}/withdraw-cancellation")
        assert withdrawn.status_code == 200
        assert withdrawn.json()["status"] == "active"

    def test_withdraw_active_contract_is_409(self, client, enrolled):
        body = enrolled("mbr_1")

        response = client.post(f"{API}/contracts/{body['contract']['contract_id']}/withdraw-cancellation")

        assert response.status_code == 409
        assert response.json()["current_status"] == "active"

    def test_cancellation_preview(self, client, enrolled, clock):
        body = enrolled("mbr_1", plan_id=COMMITMENT.plan_id)
        clock.set(date(2026, 3, 1))

        response = client.get(f"{API}/contracts/{body['contract']['contract_id']}/cancellation-preview")

        assert response.status_code == 200
        data = response.json()
        assert data["is_within_commitment"] is True
        assert data["effective_date"] == "2027-01-01"
        assert data["early_termination_fee"] == {"amount": "200.00", "currency": "SAR"}

"""
Component Tests for Plan Change API
"""

from datetime import date

from tests.fixtures import BASIC, PREMIUM

API = "/api/v1/memberships"
MEMBER = {"X-Member-Id": "mbr_1"}


class TestPreview:
    """Tests for GET /member/subscription/change/preview"""

    def test_preview_upgrade(self, client, enrolled, clock):
        enrolled("mbr_1")
        clock.set(date(2026, 1, 11))

        response = client.get(
            f"{API}/member/subscription/change/preview", headers=MEMBER, params={"newPlanId": PREMIUM.plan_id}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["change_type"] == "upgrade"
        assert data["days_remaining"] == 20
        assert data["net_amount"] == {"amount": "96.77", "currency": "SAR"}

    def test_preview_requires_plan(self, client, enrolled):
        enrolled("mbr_1")

        response = client.get(f"{API}/member/subscription/change/preview", headers=MEMBER)

        assert response.status_code == 422


class TestUpgradeAndDowngrade:
    """Tests for the upgrade and downgrade endpoints"""

    def test_upgrade(self, client, enrolled, clock, mock_invoice_client):
        enrolled("mbr_1")
        clock.set(date(2026, 1, 11))

        response = client.post(
            f"{API}/member/subscription/upgrade", headers=MEMBER, json={"new_plan_id": PREMIUM.plan_id}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["was_immediate"] is True
        assert data["net_amount"] == "96.77"
        assert len(mock_invoice_client.charges_for("plan_change_proration")) == 1

        history = client.get(f"{API}/member/subscription/plan-change-history", headers=MEMBER)
        assert history.status_code == 200
        assert [h["new_plan_id"] for h in history.json()] == [PREMIUM.plan_id]

    def test_downgrade_through_upgrade_is_422(self, client, enrolled):
        enrolled("mbr_1", plan_id=PREMIUM.plan_id)

        response = client.post(
            f"{API}/member/subscription/upgrade", headers=MEMBER, json={"new_plan_id": BASIC.plan_id}
        )

        assert response.status_code == 422

    def test_downgrade_scheduled_then_cancelled(self, client, enrolled, clock):
        enrolled("mbr_1", plan_id=PREMIUM.plan_id)
        clock.set(date(2026, 1, 11))

        response = client.post(
            f"{API}/member/subscription/downgrade", headers=MEMBER, json={"new_plan_id": BASIC.plan_id}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["was_immediate"] is False
        assert data["effective_date"] == "2026-02-01"

        cancelled = client.post(
            f"{API}/member/subscription/scheduled-change/{data['scheduled_change_id']}/cancel",
            headers=MEMBER,
            params={"reason": "staying on premium"},
        )
        assert cancelled.status_code == 200
        assert cancelled.json()["status"] == "cancelled"

    def test_other_member_cannot_cancel_change(self, client, enrolled):
        enrolled("mbr_1", plan_id=PREMIUM.plan_id)
        data = client.post(
            f"{API}/member/subscription/downgrade", headers=MEMBER, json={"new_plan_id": BASIC.plan_id}
        ).json()

        response = client.post(
            f"{API}/member/subscription/scheduled-change/{data['scheduled_change_id']}/cancel",
            headers={"X-Member-Id": "mbr_2"},
        )

        assert response.status_code == 404

    def test_due_change_applied_on_read(self, client, enrolled, clock):
        enrolled("mbr_1", plan_id=PREMIUM.plan_id)
        client.post(f"{API}/member/subscription/downgrade", headers=MEMBER, json={"new_plan_id": BASIC.plan_id})
        clock.set(date(2026, 2, 1))

        response = client.get(f"{API}/member/subscription", headers=MEMBER)

        assert response.json()["plan_id"] == BASIC.plan_id

    def test_frozen_subscription_is_409(self, client, enrolled):
        enrolled("mbr_1")
        client.post(f"{API}/member/subscription/freeze", headers=MEMBER, json={})

        response = client.post(
            f"{API}/member/subscription/upgrade", headers=MEMBER, json={"new_plan_id": PREMIUM.plan_id}
        )

        assert response.status_code == 409
        assert response.json()["current_status"] == "frozen"

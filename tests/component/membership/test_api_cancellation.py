"""
Component Tests for Cancellation & Retention API
"""

from datetime import date

from tests.fixtures import make_exit_survey_request

API = "/api/v1/memberships"
MEMBER = {"X-Member-Id": "mbr_1"}


def request_cancellation(client, reason_category="financial"):
    response = client.post(
        f"{API}/member/subscription/cancel", headers=MEMBER, json={"reason_category": reason_category}
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestCancellationFlow:
    """Tests for the member cancellation endpoints"""

    def test_preview(self, client, enrolled, clock):
        enrolled("mbr_1")
        clock.set(date(2026, 1, 20))

        response = client.get(
            f"{API}/member/subscription/cancel/preview", headers=MEMBER, params={"reasonCategory": "financial"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_within_cooling_off"] is False
        assert data["effective_date"] == "2026-02-19"
        assert [o["offer_type"] for o in data["retention_offers"]] == ["plan_switch", "free_months"]

    def test_cooling_off_request_is_effective(self, client, enrolled):
        enrolled("mbr_1")

        data = request_cancellation(client)

        assert data["request"]["status"] == "effective"
        assert data["request"]["refund_amount"] == {"amount": "300.00", "currency": "SAR"}
        assert data["subscription_status"] == "cancelled"

    def test_standard_request_and_withdraw(self, client, enrolled, clock):
        enrolled("mbr_1")
        clock.set(date(2026, 1, 20))

        data = request_cancellation(client)
        assert data["request"]["status"] == "in_notice"
        assert data["contract_status"] == "in_notice_period"

        withdrawn = client.post(f"{API}/member/subscription/cancel/withdraw", headers=MEMBER)
        assert withdrawn.status_code == 200
        assert withdrawn.json()["request"]["status"] == "withdrawn"
        assert withdrawn.json()["contract_status"] == "active"

    def test_duplicate_request_is_409(self, client, enrolled, clock):
        enrolled("mbr_1")
        clock.set(date(2026, 1, 20))
        request_cancellation(client)

        response = client.post(f"{API}/member/subscription/cancel", headers=MEMBER, json={})

        assert response.status_code == 409

    def test_unknown_reason_is_422(self, client, enrolled):
        enrolled("mbr_1")

        response = client.post(
            f"{API}/member/subscription/cancel", headers=MEMBER, json={"reason_category": "bored"}
        )

        assert response.status_code == 422


class TestRetentionOffers:
    """Tests for accepting and declining offers"""

    def test_accept_free_months(self, client, enrolled, clock):
        enrolled("mbr_1")
        clock.set(date(2026, 1, 20))
        offers = request_cancellation(client)["retention_offers"]
        free = next(o for o in offers if o["offer_type"] == "free_months")

        response = client.post(f"{API}/member/subscription/cancel/accept-offer/{free['offer_id']}", headers=MEMBER)

        assert response.status_code == 200
        assert response.json()["request"]["status"] == "offer_accepted"
        subscription = client.get(f"{API}/member/subscription", headers=MEMBER).json()
        assert subscription["current_period_end"] == "2026-03-31"

    def test_decline_offer(self, client, enrolled, clock):
        enrolled("mbr_1")
        clock.set(date(2026, 1, 20))
        offer = request_cancellation(client)["retention_offers"][0]

        response = client.post(f"{API}/member/subscription/cancel/decline-offer/{offer['offer_id']}", headers=MEMBER)

        assert response.status_code == 200
        assert response.json()["status"] == "declined"

    def test_accept_unknown_offer_is_404(self, client, enrolled):
        enrolled("mbr_1")

        response = client.post(f"{API}/member/subscription/cancel/accept-offer/off_missing", headers=MEMBER)

        assert response.status_code == 404


class TestExitSurvey:
    """Tests for POST /member/subscription/exit-survey"""

    def test_submit_returns_201(self, client, enrolled):
        enrolled("mbr_1")

        response = client.post(
            f"{API}/member/subscription/exit-survey", headers=MEMBER, json=make_exit_survey_request()
        )

        assert response.status_code == 201
        assert response.json()["reason_category"] == "financial"

    def test_second_survey_is_409(self, client, enrolled):
        enrolled("mbr_1")
        client.post(f"{API}/member/subscription/exit-survey", headers=MEMBER, json=make_exit_survey_request())

        response = client.post(
            f"{API}/member/subscription/exit-survey", headers=MEMBER, json=make_exit_survey_request()
        )

        assert response.status_code == 409

    def test_nps_out_of_range_is_422(self, client, enrolled):
        enrolled("mbr_1")

        response = client.post(
            f"{API}/member/subscription/exit-survey", headers=MEMBER, json=make_exit_survey_request(nps_score=11)
        )

        assert response.status_code == 422

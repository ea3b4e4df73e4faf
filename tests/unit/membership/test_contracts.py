"""
Unit Tests for the Contract State Machine

Enrollment, signature, approval and the cancellation terms derived from a
contract (cooling-off, commitment, early-termination fee).
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from microservices.membership_service.contract_service import (
    activate_contract,
    cancellation_dates,
    commitment_months_remaining,
    complete_contract,
    early_termination_fee,
    is_within_cooling_off,
    withdraw_notice,
)
from microservices.membership_service.models import (
    Contract,
    ContractStatus,
    ContractTerm,
    ContractType,
    CreateContractRequest,
    EarlyTerminationFeeType,
    SubscriptionStatus,
)
from microservices.membership_service.money import Money
from microservices.membership_service.protocols import (
    BusinessRuleViolationError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)

from tests.fixtures import BASIC, COMMITMENT, PREMIUM, TRIAL

NOW = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_contract(**overrides) -> Contract:
    fields = dict(
        contract_id="ctr_1",
        contract_number="GYM-2026-000001",
        member_id="mbr_1",
        plan_id=COMMITMENT.plan_id,
        contract_type=ContractType.FIXED_TERM,
        contract_term=ContractTerm.TWELVE_MONTHS,
        start_date=date(2026, 1, 1),
        commitment_end_date=date(2027, 1, 1),
        notice_period_days=30,
        early_termination_fee_type=EarlyTerminationFeeType.PERCENTAGE_OF_REMAINING,
        early_termination_fee_value=Decimal("10"),
        cooling_off_end_date=date(2026, 1, 8),
        subscription_id="sub_1",
    )
    fields.update(overrides)
    return Contract(**fields)


class TestContractModel:
    """Tests for Contract invariants"""

    def test_fixed_term_requires_commitment_end(self):
        with pytest.raises(ValueError):
            make_contract(commitment_end_date=None)

    def test_month_to_month_has_no_commitment_end(self):
        with pytest.raises(ValueError):
            make_contract(contract_type=ContractType.MONTH_TO_MONTH)

    def test_cooling_off_hard_cap(self):
        with pytest.raises(ValueError):
            make_contract(cooling_off_end_date=date(2026, 1, 16))

    def test_status_follows_state_variant(self):
        contract = make_contract()
        assert contract.status == ContractStatus.PENDING_SIGNATURE
        assert activate_contract(contract, NOW).status == ContractStatus.ACTIVE

    def test_status_is_serialized(self):
        assert make_contract().model_dump(mode="json")["status"] == "pending_signature"


class TestTransitions:
    """Tests for pure contract transitions"""

    def test_withdraw_requires_notice_period(self):
        active = activate_contract(make_contract(), NOW)
        with pytest.raises(InvalidStateTransitionError):
            withdraw_notice(active)

    def test_complete_requires_active(self):
        with pytest.raises(InvalidStateTransitionError) as exc:
            complete_contract(make_contract(), NOW)
        assert exc.value.current_status == "pending_signature"

    def test_activate_twice_rejected(self):
        active = activate_contract(make_contract(), NOW)
        with pytest.raises(InvalidStateTransitionError):
            activate_contract(active, NOW)


class TestCancellationTerms:
    """Tests for cooling-off, commitment and fee computation"""

    def test_cooling_off_boundary(self):
        contract = make_contract()
        assert is_within_cooling_off(contract, date(2026, 1, 8))
        assert not is_within_cooling_off(contract, date(2026, 1, 9))

    def test_percentage_fee_table(self):
        contract = activate_contract(make_contract(), NOW)
        today = date(2026, 8, 1)

        assert commitment_months_remaining(contract, today) == 5
        fee = early_termination_fee(contract, Money.of(200, "SAR"), today)
        assert fee == Money.of("100.00", "SAR")

    def test_fixed_fee(self):
        contract = make_contract(
            early_termination_fee_type=EarlyTerminationFeeType.FIXED,
            early_termination_fee_value=Decimal("350"),
        )
        assert early_termination_fee(contract, Money.of(200, "SAR"), date(2026, 3, 1)) == Money.of(350, "SAR")

    def test_no_fee_within_cooling_off(self):
        fee = early_termination_fee(make_contract(), Money.of(200, "SAR"), date(2026, 1, 5))
        assert fee.is_zero

    def test_no_fee_after_commitment(self):
        fee = early_termination_fee(make_contract(), Money.of(200, "SAR"), date(2027, 1, 1))
        assert fee.is_zero

    def test_effective_date_extends_to_commitment_end(self):
        notice_end, effective = cancellation_dates(make_contract(), date(2026, 3, 1))
        assert notice_end == date(2026, 3, 31)
        assert effective == date(2027, 1, 1)

    def test_effective_date_is_notice_end_outside_commitment(self):
        contract = make_contract(
            contract_type=ContractType.MONTH_TO_MONTH, commitment_end_date=None
        )
        notice_end, effective = cancellation_dates(contract, date(2026, 3, 1))
        assert notice_end == effective == date(2026, 3, 31)


class TestCreateContract:
    """Tests for enrollment"""

    @pytest.mark.asyncio
    async def test_creates_pending_contract_and_active_subscription(self, membership_service, event_bus):
        result = await membership_service.create_contract(
            CreateContractRequest(member_id="mbr_1", plan_id=BASIC.plan_id)
        )

        contract, subscription = result.contract, result.subscription
        assert contract.status == ContractStatus.PENDING_SIGNATURE
        assert contract.contract_number == "GYM-2026-000001"
        assert contract.cooling_off_end_date == date(2026, 1, 8)
        assert contract.commitment_end_date is None
        assert contract.subscription_id == subscription.subscription_id
        assert subscription.contract_id == contract.contract_id
        assert subscription.status == SubscriptionStatus.ACTIVE
        assert subscription.current_period_end == date(2026, 1, 31)
        assert subscription.classes_remaining == 8
        assert subscription.freeze_days_remaining == 30
        event_bus.assert_event_published("contract.created", {"member_id": "mbr_1"})

    @pytest.mark.asyncio
    async def test_contract_numbers_are_sequential(self, enroll):
        first = await enroll("mbr_1")
        second = await enroll("mbr_2")

        assert first.contract.contract_number == "GYM-2026-000001"
        assert second.contract.contract_number == "GYM-2026-000002"

    @pytest.mark.asyncio
    async def test_fixed_term_plan_sets_commitment(self, enroll):
        result = await enroll("mbr_1", plan_id=COMMITMENT.plan_id)

        assert result.contract.contract_type == ContractType.FIXED_TERM
        assert result.contract.commitment_end_date == date(2027, 1, 1)

    @pytest.mark.asyncio
    async def test_trial_plan_starts_in_trial(self, enroll, invoice_client):
        result = await enroll("mbr_1", plan_id=TRIAL.plan_id)

        assert result.subscription.status == SubscriptionStatus.TRIAL
        assert result.subscription.current_period_end == date(2026, 1, 7)
        assert invoice_client.charges_for("membership_period") == []

    @pytest.mark.asyncio
    async def test_trial_period_spans_trial_days(self, enroll, mock_repository):
        mock_repository.seed_plan(TRIAL.model_copy(update={"plan_id": "plan_trial_2d", "trial_days": 2}))

        result = await enroll("mbr_1", plan_id="plan_trial_2d")

        assert result.subscription.current_period_start == date(2026, 1, 1)
        assert result.subscription.current_period_end == date(2026, 1, 2)

    @pytest.mark.asyncio
    async def test_one_day_trial_rejected(self, enroll, mock_repository):
        mock_repository.seed_plan(TRIAL.model_copy(update={"plan_id": "plan_trial_1d", "trial_days": 1}))

        with pytest.raises(ValidationError):
            await enroll("mbr_1", plan_id="plan_trial_1d")

        assert mock_repository.subscriptions == {}

    @pytest.mark.asyncio
    async def test_join_fee_and_first_period_charged(self, enroll, invoice_client):
        await enroll("mbr_1", plan_id=PREMIUM.plan_id)

        assert invoice_client.charges_for("join_fee")[0]["amount"] == Money.of(100, "SAR")
        assert invoice_client.charges_for("membership_period")[0]["amount"] == Money.of(450, "SAR")

    @pytest.mark.asyncio
    async def test_auto_activate(self, membership_service):
        result = await membership_service.create_contract(
            CreateContractRequest(member_id="mbr_1", plan_id=BASIC.plan_id, auto_activate=True)
        )
        assert result.contract.status == ContractStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_second_live_subscription_rejected(self, enroll, mock_repository):
        await enroll("mbr_1")

        with pytest.raises(BusinessRuleViolationError):
            await enroll("mbr_1", plan_id=PREMIUM.plan_id)
        assert len(mock_repository.contracts) == 1

    @pytest.mark.asyncio
    async def test_unknown_plan(self, membership_service):
        with pytest.raises(NotFoundError):
            await membership_service.create_contract(CreateContractRequest(member_id="mbr_1", plan_id="nope"))

    @pytest.mark.asyncio
    async def test_retired_plan_rejected(self, membership_service):
        with pytest.raises(ValidationError):
            await membership_service.create_contract(
                CreateContractRequest(member_id="mbr_1", plan_id="plan_retired")
            )

    @pytest.mark.asyncio
    async def test_cooling_off_override_up_to_hard_cap(self, membership_service):
        request = CreateContractRequest(member_id="mbr_1", plan_id=BASIC.plan_id, cooling_off_days=14)
        result = await membership_service.create_contract(request)
        assert result.contract.cooling_off_end_date == date(2026, 1, 15)


class TestSignAndApprove:
    """Tests for signature and staff approval"""

    @pytest.mark.asyncio
    async def test_sign_activates(self, enroll, event_bus):
        result = await enroll("mbr_1")

        assert result.contract.status == ContractStatus.ACTIVE
        assert result.contract.signed_at is not None
        assert len(result.contract.signature_ref) == 64
        event_bus.assert_event_published("contract.activated", {"activated_by": "signature"})

    @pytest.mark.asyncio
    async def test_sign_twice_is_idempotent(self, enroll, membership_service):
        result = await enroll("mbr_1")
        first = result.contract

        again = await membership_service.sign_contract(first.contract_id, "another-blob")

        assert again.status == ContractStatus.ACTIVE
        assert again.signed_at == first.signed_at
        assert again.signature_ref == first.signature_ref
        assert again.version == first.version

    @pytest.mark.asyncio
    async def test_sign_after_staff_approval_records_signature(self, enroll, membership_service):
        result = await enroll("mbr_1", sign=False)
        await membership_service.approve_contract(result.contract.contract_id, "staff_7")

        signed = await membership_service.sign_contract(result.contract.contract_id, "sig")

        assert signed.status == ContractStatus.ACTIVE
        assert signed.approved_by == "staff_7"
        assert signed.signed_at is not None

    @pytest.mark.asyncio
    async def test_empty_signature_rejected(self, enroll, membership_service):
        result = await enroll("mbr_1", sign=False)
        with pytest.raises(ValidationError):
            await membership_service.sign_contract(result.contract.contract_id, "")

    @pytest.mark.asyncio
    async def test_approve_only_from_pending(self, enroll, membership_service):
        result = await enroll("mbr_1")
        with pytest.raises(InvalidStateTransitionError):
            await membership_service.approve_contract(result.contract.contract_id, "staff_7")

    @pytest.mark.asyncio
    async def test_get_unknown_contract(self, membership_service):
        with pytest.raises(NotFoundError):
            await membership_service.get_contract("ctr_missing")

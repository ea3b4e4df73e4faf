"""
Membership Service Data Repository

Data access layer - PostgreSQL (asyncpg)
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.config_manager import ConfigManager
from core.postgres_client import PostgresClientWrapper

from .models import (
    ActiveDiscount,
    ActiveFreeze,
    ActiveState,
    BillingCycle,
    CancellationReasonCategory,
    CancellationRequest,
    CancellationRequestStatus,
    CancellationType,
    CancelledState,
    CompletedState,
    Contract,
    ContractTerm,
    ContractType,
    EarlyTerminationFeeType,
    ExitSurvey,
    FreezeHistory,
    FreezeSource,
    InNoticePeriodState,
    MembershipPlan,
    PendingSignatureState,
    PlanChangeHistory,
    PlanChangeType,
    ProrationMode,
    RetentionOffer,
    RetentionOfferStatus,
    RetentionOfferType,
    ScheduledChangeStatus,
    ScheduledPlanChange,
    Subscription,
    SubscriptionStatus,
)
from .money import Money
from .protocols import BusinessRuleViolationError, ConcurrentModificationError, NotFoundError

logger = logging.getLogger(__name__)


def _money(amount: Optional[Decimal], currency: Optional[str]) -> Optional[Money]:
    if amount is None or currency is None:
        return None
    return Money(amount=Decimal(amount), currency=currency.strip())


def _json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


class MembershipRepository:
    """Membership service data repository - PostgreSQL (Async)"""

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        db: Optional[PostgresClientWrapper] = None,
        connection: Optional[asyncpg.Connection] = None,
    ):
        if db is None:
            # Use config_manager for service discovery
            if config is None:
                config = ConfigManager("membership_service")

            host, port = config.discover_service(
                service_name='postgres_service',
                default_host='localhost',
                default_port=5432,
                env_host_key='POSTGRES_HOST',
                env_port_key='POSTGRES_PORT'
            )
            logger.info(f"Connecting to PostgreSQL at {host}:{port}")
            db = PostgresClientWrapper("membership_service", host=host, port=port)

        self.db = db
        self._conn = connection
        self.schema = "membership"
        self.plans_table = "membership_plans"
        self.contracts_table = "contracts"
        self.sequences_table = "contract_number_sequences"
        self.subscriptions_table = "subscriptions"
        self.scheduled_changes_table = "scheduled_plan_changes"
        self.history_table = "plan_change_history"
        self.cancellations_table = "cancellation_requests"
        self.offers_table = "retention_offers"
        self.freeze_table = "freeze_history"
        self.surveys_table = "exit_surveys"

    async def initialize(self):
        """Initialize database connection pool"""
        await self.db.initialize()
        logger.info("Membership repository initialized with PostgreSQL")

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Membership repository database connection closed")

    async def health_check(self) -> bool:
        return await self.db.health_check()

    # ====================
    # Connection & transaction handling
    # ====================

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        if self._conn is not None:
            yield self._conn
        else:
            async with self.db.connection() as conn:
                yield conn

    @asynccontextmanager
    async def transaction(self, lock_subscription_id: Optional[str] = None) -> AsyncIterator["MembershipRepository"]:
        """
        Run the block in one transaction.

        Yields a repository bound to the transaction's connection. With
        lock_subscription_id the subscription row is locked FOR UPDATE first,
        which serializes concurrent mutations of the same subscription.
        """
        if self._conn is not None:
            if lock_subscription_id:
                await self._lock_subscription(self._conn, lock_subscription_id)
            yield self
            return

        async with self.db.transaction() as conn:
            bound = MembershipRepository(db=self.db, connection=conn)
            if lock_subscription_id:
                await self._lock_subscription(conn, lock_subscription_id)
            yield bound

    async def _lock_subscription(self, conn: asyncpg.Connection, subscription_id: str) -> None:
        await conn.execute(
            f"SELECT 1 FROM {self.schema}.{self.subscriptions_table} WHERE subscription_id = $1 FOR UPDATE",
            subscription_id,
        )

    async def _fetch(self, query: str, *params) -> List[Dict[str, Any]]:
        async with self._connection() as conn:
            rows = await conn.fetch(query, *params)
        return [dict(r) for r in rows]

    async def _fetchrow(self, query: str, *params) -> Optional[Dict[str, Any]]:
        async with self._connection() as conn:
            row = await conn.fetchrow(query, *params)
        return dict(row) if row else None

    async def _fetchval(self, query: str, *params) -> Any:
        async with self._connection() as conn:
            return await conn.fetchval(query, *params)

    async def _insert(self, table: str, values: Dict[str, Any], entity: str) -> Dict[str, Any]:
        columns = list(values.keys())
        placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
        query = f'''
            INSERT INTO {self.schema}.{table} ({", ".join(columns)})
            VALUES ({placeholders})
            RETURNING *
        '''
        try:
            return await self._fetchrow(query, *values.values())
        except asyncpg.UniqueViolationError as e:
            raise BusinessRuleViolationError(f"{entity} conflicts with an existing record: {e.constraint_name}") from e

    async def _update(
        self,
        table: str,
        key_column: str,
        key: str,
        values: Dict[str, Any],
        entity: str,
        version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """UPDATE by key; with a version, only if the stored version still matches"""
        columns = list(values.keys())
        assignments = [f"{c} = ${i}" for i, c in enumerate(columns, start=2)]
        params: List[Any] = [key, *values.values()]
        where = f"{key_column} = $1"
        if version is not None:
            assignments.append("version = version + 1")
            assignments.append("updated_at = NOW()")
            params.append(version)
            where += f" AND version = ${len(params)}"

        query = f'''
            UPDATE {self.schema}.{table}
            SET {", ".join(assignments)}
            WHERE {where}
            RETURNING *
        '''
        try:
            row = await self._fetchrow(query, *params)
        except asyncpg.UniqueViolationError as e:
            raise BusinessRuleViolationError(f"{entity} conflicts with an existing record: {e.constraint_name}") from e

        if row:
            return row
        exists = await self._fetchval(
            f"SELECT 1 FROM {self.schema}.{table} WHERE {key_column} = $1", key
        )
        if not exists:
            raise NotFoundError(entity, key)
        raise ConcurrentModificationError(f"{entity} {key} was modified concurrently (expected version {version})")

    # ====================
    # Plans
    # ====================

    async def get_plan(self, plan_id: str) -> Optional[MembershipPlan]:
        row = await self._fetchrow(
            f"SELECT * FROM {self.schema}.{self.plans_table} WHERE plan_id = $1", plan_id
        )
        return self._row_to_plan(row) if row else None

    async def list_active_plans(self) -> List[MembershipPlan]:
        rows = await self._fetch(
            f"SELECT * FROM {self.schema}.{self.plans_table} WHERE is_active = TRUE ORDER BY price_amount"
        )
        return [self._row_to_plan(r) for r in rows]

    # ====================
    # Contracts
    # ====================

    async def next_contract_number(self, year: int) -> str:
        """GYM-<year>-<6-digit sequence>, numbering restarts each year"""
        value = await self._fetchval(
            f'''
                INSERT INTO {self.schema}.{self.sequences_table} (year, last_value)
                VALUES ($1, 1)
                ON CONFLICT (year) DO UPDATE SET last_value = {self.sequences_table}.last_value + 1
                RETURNING last_value
            ''',
            year,
        )
        return f"GYM-{year}-{value:06d}"

    async def create_contract(self, contract: Contract) -> Contract:
        try:
            values = {"contract_id": contract.contract_id, **self._contract_values(contract)}
            row = await self._insert(self.contracts_table, values, "Contract")
            return self._row_to_contract(row)
        except BusinessRuleViolationError:
            raise
        except Exception as e:
            logger.error(f"Error creating contract {contract.contract_id}: {e}", exc_info=True)
            raise

    async def get_contract(self, contract_id: str) -> Optional[Contract]:
        row = await self._fetchrow(
            f"SELECT * FROM {self.schema}.{self.contracts_table} WHERE contract_id = $1", contract_id
        )
        return self._row_to_contract(row) if row else None

    async def update_contract(self, contract: Contract) -> Contract:
        row = await self._update(
            self.contracts_table,
            "contract_id",
            contract.contract_id,
            self._contract_values(contract),
            "Contract",
            version=contract.version,
        )
        return self._row_to_contract(row)

    # ====================
    # Subscriptions
    # ====================

    async def create_subscription(self, subscription: Subscription) -> Subscription:
        try:
            values = {"subscription_id": subscription.subscription_id, **self._subscription_values(subscription)}
            row = await self._insert(self.subscriptions_table, values, "Subscription")
            return self._row_to_subscription(row)
        except BusinessRuleViolationError:
            raise
        except Exception as e:
            logger.error(f"Error creating subscription {subscription.subscription_id}: {e}", exc_info=True)
            raise

    async def get_subscription(self, subscription_id: str) -> Optional[Subscription]:
        row = await self._fetchrow(
            f"SELECT * FROM {self.schema}.{self.subscriptions_table} WHERE subscription_id = $1", subscription_id
        )
        return self._row_to_subscription(row) if row else None

    async def get_current_subscription_for_member(self, member_id: str) -> Optional[Subscription]:
        """Live subscription of the member, else the most recent one"""
        row = await self._fetchrow(
            f'''
                SELECT * FROM {self.schema}.{self.subscriptions_table}
                WHERE member_id = $1
                ORDER BY (status IN ('trial', 'active', 'frozen')) DESC, created_at DESC
                LIMIT 1
            ''',
            member_id,
        )
        return self._row_to_subscription(row) if row else None

    async def update_subscription(self, subscription: Subscription) -> Subscription:
        row = await self._update(
            self.subscriptions_table,
            "subscription_id",
            subscription.subscription_id,
            self._subscription_values(subscription),
            "Subscription",
            version=subscription.version,
        )
        return self._row_to_subscription(row)

    async def list_subscriptions_due_for_period_end(self, today: date) -> List[Subscription]:
        rows = await self._fetch(
            f'''
                SELECT * FROM {self.schema}.{self.subscriptions_table}
                WHERE status IN ('trial', 'active') AND current_period_end < $1
                ORDER BY current_period_end
            ''',
            today,
        )
        return [self._row_to_subscription(r) for r in rows]

    async def list_frozen_subscriptions_due(self, today: date) -> List[Subscription]:
        rows = await self._fetch(
            f'''
                SELECT * FROM {self.schema}.{self.subscriptions_table}
                WHERE status = 'frozen' AND freeze_planned_end_date <= $1
                ORDER BY freeze_planned_end_date
            ''',
            today,
        )
        return [self._row_to_subscription(r) for r in rows]

    # ====================
    # Scheduled plan changes
    # ====================

    async def create_scheduled_change(self, change: ScheduledPlanChange) -> ScheduledPlanChange:
        values = {"change_id": change.change_id, **self._scheduled_change_values(change)}
        row = await self._insert(self.scheduled_changes_table, values, "Scheduled plan change")
        return self._row_to_scheduled_change(row)

    async def get_scheduled_change(self, change_id: str) -> Optional[ScheduledPlanChange]:
        row = await self._fetchrow(
            f"SELECT * FROM {self.schema}.{self.scheduled_changes_table} WHERE change_id = $1", change_id
        )
        return self._row_to_scheduled_change(row) if row else None

    async def get_pending_scheduled_change(self, subscription_id: str) -> Optional[ScheduledPlanChange]:
        row = await self._fetchrow(
            f'''
                SELECT * FROM {self.schema}.{self.scheduled_changes_table}
                WHERE subscription_id = $1 AND status = 'pending'
            ''',
            subscription_id,
        )
        return self._row_to_scheduled_change(row) if row else None

    async def update_scheduled_change(self, change: ScheduledPlanChange) -> ScheduledPlanChange:
        row = await self._update(
            self.scheduled_changes_table,
            "change_id",
            change.change_id,
            self._scheduled_change_values(change),
            "Scheduled plan change",
        )
        return self._row_to_scheduled_change(row)

    async def list_due_scheduled_changes(self, today: date) -> List[ScheduledPlanChange]:
        rows = await self._fetch(
            f'''
                SELECT * FROM {self.schema}.{self.scheduled_changes_table}
                WHERE status = 'pending' AND scheduled_date <= $1
                ORDER BY scheduled_date
            ''',
            today,
        )
        return [self._row_to_scheduled_change(r) for r in rows]

    # ====================
    # Plan change history
    # ====================

    async def create_plan_change_history(self, entry: PlanChangeHistory) -> PlanChangeHistory:
        values = {
            "history_id": entry.history_id,
            "subscription_id": entry.subscription_id,
            "member_id": entry.member_id,
            "old_plan_id": entry.old_plan_id,
            "new_plan_id": entry.new_plan_id,
            "change_type": entry.change_type.value,
            "proration_mode": entry.proration_mode.value,
            "currency": entry.net_amount.currency,
            "old_price": entry.old_price.amount,
            "new_price": entry.new_price.amount,
            "credit_amount": entry.credit_amount.amount,
            "charge_amount": entry.charge_amount.amount,
            "net_amount": entry.net_amount.amount,
            "days_remaining": entry.days_remaining,
            "period_length_days": entry.period_length_days,
            "effective_date": entry.effective_date,
            "scheduled_change_id": entry.scheduled_change_id,
            "initiated_by_member": entry.initiated_by_member,
        }
        row = await self._insert(self.history_table, values, "Plan change history")
        return self._row_to_history(row)

    async def list_plan_change_history(self, subscription_id: str) -> List[PlanChangeHistory]:
        rows = await self._fetch(
            f'''
                SELECT * FROM {self.schema}.{self.history_table}
                WHERE subscription_id = $1
                ORDER BY created_at DESC
            ''',
            subscription_id,
        )
        return [self._row_to_history(r) for r in rows]

    # ====================
    # Cancellation requests
    # ====================

    async def create_cancellation_request(self, request: CancellationRequest) -> CancellationRequest:
        values = {"request_id": request.request_id, **self._cancellation_values(request)}
        row = await self._insert(self.cancellations_table, values, "Cancellation request")
        return self._row_to_cancellation(row)

    async def get_cancellation_request(self, request_id: str) -> Optional[CancellationRequest]:
        row = await self._fetchrow(
            f"SELECT * FROM {self.schema}.{self.cancellations_table} WHERE request_id = $1", request_id
        )
        return self._row_to_cancellation(row) if row else None

    async def get_open_cancellation_request(self, subscription_id: str) -> Optional[CancellationRequest]:
        row = await self._fetchrow(
            f'''
                SELECT * FROM {self.schema}.{self.cancellations_table}
                WHERE subscription_id = $1 AND status = 'in_notice'
            ''',
            subscription_id,
        )
        return self._row_to_cancellation(row) if row else None

    async def get_latest_cancellation_request(self, subscription_id: str) -> Optional[CancellationRequest]:
        row = await self._fetchrow(
            f'''
                SELECT * FROM {self.schema}.{self.cancellations_table}
                WHERE subscription_id = $1
                ORDER BY requested_at DESC
                LIMIT 1
            ''',
            subscription_id,
        )
        return self._row_to_cancellation(row) if row else None

    async def update_cancellation_request(self, request: CancellationRequest) -> CancellationRequest:
        row = await self._update(
            self.cancellations_table,
            "request_id",
            request.request_id,
            self._cancellation_values(request),
            "Cancellation request",
            version=request.version,
        )
        return self._row_to_cancellation(row)

    async def list_cancellation_requests(
        self,
        status: Optional[CancellationRequestStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[CancellationRequest]:
        try:
            if status:
                rows = await self._fetch(
                    f'''
                        SELECT * FROM {self.schema}.{self.cancellations_table}
                        WHERE status = $1
                        ORDER BY requested_at DESC
                        LIMIT $2 OFFSET $3
                    ''',
                    status.value, limit, offset,
                )
            else:
                rows = await self._fetch(
                    f'''
                        SELECT * FROM {self.schema}.{self.cancellations_table}
                        ORDER BY requested_at DESC
                        LIMIT $1 OFFSET $2
                    ''',
                    limit, offset,
                )
            return [self._row_to_cancellation(r) for r in rows]
        except Exception as e:
            logger.error(f"Error listing cancellation requests: {e}")
            raise

    async def count_cancellation_requests(self, status: Optional[CancellationRequestStatus] = None) -> int:
        if status:
            return await self._fetchval(
                f"SELECT COUNT(*) FROM {self.schema}.{self.cancellations_table} WHERE status = $1", status.value
            )
        return await self._fetchval(f"SELECT COUNT(*) FROM {self.schema}.{self.cancellations_table}")

    async def list_due_cancellations(self, today: date) -> List[CancellationRequest]:
        rows = await self._fetch(
            f'''
                SELECT * FROM {self.schema}.{self.cancellations_table}
                WHERE status = 'in_notice' AND effective_date <= $1
                ORDER BY effective_date
            ''',
            today,
        )
        return [self._row_to_cancellation(r) for r in rows]

    async def count_resolved_cancellations(
        self, statuses: List[CancellationRequestStatus], start: date, end: date
    ) -> int:
        return await self._fetchval(
            f'''
                SELECT COUNT(*) FROM {self.schema}.{self.cancellations_table}
                WHERE status = ANY($1::text[])
                  AND resolved_at::date BETWEEN $2 AND $3
            ''',
            [s.value for s in statuses], start, end,
        )

    # ====================
    # Retention offers
    # ====================

    async def create_retention_offers(self, offers: List[RetentionOffer]) -> List[RetentionOffer]:
        created = []
        for offer in offers:
            values = {"offer_id": offer.offer_id, **self._offer_values(offer)}
            row = await self._insert(self.offers_table, values, "Retention offer")
            created.append(self._row_to_offer(row))
        return created

    async def get_retention_offer(self, offer_id: str) -> Optional[RetentionOffer]:
        row = await self._fetchrow(
            f"SELECT * FROM {self.schema}.{self.offers_table} WHERE offer_id = $1", offer_id
        )
        return self._row_to_offer(row) if row else None

    async def list_retention_offers(self, cancellation_request_id: str) -> List[RetentionOffer]:
        rows = await self._fetch(
            f'''
                SELECT * FROM {self.schema}.{self.offers_table}
                WHERE cancellation_request_id = $1
                ORDER BY priority
            ''',
            cancellation_request_id,
        )
        return [self._row_to_offer(r) for r in rows]

    async def update_retention_offer(self, offer: RetentionOffer) -> RetentionOffer:
        row = await self._update(
            self.offers_table, "offer_id", offer.offer_id, self._offer_values(offer), "Retention offer"
        )
        return self._row_to_offer(row)

    # ====================
    # Freeze history
    # ====================

    async def add_freeze_history(self, entry: FreezeHistory) -> FreezeHistory:
        values = {
            "entry_id": entry.entry_id,
            "subscription_id": entry.subscription_id,
            "start_date": entry.start_date,
            "end_date": entry.end_date,
            "days_used": entry.days_used,
            "days_granted": entry.days_granted,
            "source": entry.source.value,
            "reason": entry.reason,
            "recorded_by": entry.recorded_by,
        }
        row = await self._insert(self.freeze_table, values, "Freeze history entry")
        return self._row_to_freeze(row)

    async def list_freeze_history(self, subscription_id: str) -> List[FreezeHistory]:
        rows = await self._fetch(
            f'''
                SELECT * FROM {self.schema}.{self.freeze_table}
                WHERE subscription_id = $1
                ORDER BY created_at
            ''',
            subscription_id,
        )
        return [self._row_to_freeze(r) for r in rows]

    # ====================
    # Exit surveys
    # ====================

    async def create_exit_survey(self, survey: ExitSurvey) -> ExitSurvey:
        values = {
            "survey_id": survey.survey_id,
            "member_id": survey.member_id,
            "subscription_id": survey.subscription_id,
            "cancellation_request_id": survey.cancellation_request_id,
            "reason_category": survey.reason_category.value,
            "overall_satisfaction": survey.overall_satisfaction,
            "nps_score": survey.nps_score,
            "dissatisfaction_areas": json.dumps(survey.dissatisfaction_areas),
            "competitor_name": survey.competitor_name,
            "would_return": survey.would_return,
            "what_would_bring_back": survey.what_would_bring_back,
            "feedback": survey.feedback,
            "submitted_at": survey.submitted_at,
        }
        row = await self._insert(self.surveys_table, values, "Exit survey")
        return self._row_to_survey(row)

    async def get_exit_survey_for_subscription(self, subscription_id: str) -> Optional[ExitSurvey]:
        row = await self._fetchrow(
            f"SELECT * FROM {self.schema}.{self.surveys_table} WHERE subscription_id = $1", subscription_id
        )
        return self._row_to_survey(row) if row else None

    async def list_exit_surveys(self) -> List[ExitSurvey]:
        rows = await self._fetch(
            f"SELECT * FROM {self.schema}.{self.surveys_table} ORDER BY submitted_at DESC"
        )
        return [self._row_to_survey(r) for r in rows]

    # ====================
    # Model -> columns
    # ====================

    @staticmethod
    def _contract_values(contract: Contract) -> Dict[str, Any]:
        state = contract.state
        values = {
            "contract_number": contract.contract_number,
            "member_id": contract.member_id,
            "plan_id": contract.plan_id,
            "contract_type": contract.contract_type.value,
            "contract_term": contract.contract_term.value,
            "start_date": contract.start_date,
            "commitment_end_date": contract.commitment_end_date,
            "notice_period_days": contract.notice_period_days,
            "early_termination_fee_type": contract.early_termination_fee_type.value,
            "early_termination_fee_value": contract.early_termination_fee_value,
            "cooling_off_end_date": contract.cooling_off_end_date,
            "subscription_id": contract.subscription_id,
            "status": state.status,
            "activated_at": getattr(state, "activated_at", None),
            "cancellation_requested_at": getattr(state, "requested_at", None),
            "notice_period_end_date": getattr(state, "notice_period_end_date", None),
            "effective_date": getattr(state, "effective_date", None),
            "cancellation_type": state.cancellation_type.value if hasattr(state, "cancellation_type") else None,
            "cancellation_reason": getattr(state, "reason", None),
            "cancelled_at": getattr(state, "cancelled_at", None),
            "completed_at": getattr(state, "completed_at", None),
            "signed_at": contract.signed_at,
            "signature_ref": contract.signature_ref,
            "approved_by": contract.approved_by,
            "approved_at": contract.approved_at,
        }
        return values

    @staticmethod
    def _subscription_values(subscription: Subscription) -> Dict[str, Any]:
        freeze = subscription.active_freeze
        discount = subscription.active_discount
        return {
            "member_id": subscription.member_id,
            "plan_id": subscription.plan_id,
            "contract_id": subscription.contract_id,
            "status": subscription.status.value,
            "start_date": subscription.start_date,
            "current_period_start": subscription.current_period_start,
            "current_period_end": subscription.current_period_end,
            "agreed_price_amount": subscription.agreed_price.amount,
            "agreed_price_currency": subscription.agreed_price.currency,
            "billing_cycle": subscription.billing_cycle.value,
            "auto_renew": subscription.auto_renew,
            "freeze_days_remaining": subscription.freeze_days_remaining,
            "total_freeze_days_used": subscription.total_freeze_days_used,
            "freeze_start_date": freeze.start_date if freeze else None,
            "freeze_planned_end_date": freeze.planned_end_date if freeze else None,
            "freeze_source": freeze.source.value if freeze else None,
            "freeze_reason": freeze.reason if freeze else None,
            "classes_remaining": subscription.classes_remaining,
            "guest_passes_remaining": subscription.guest_passes_remaining,
            "discount_original_amount": discount.original_price.amount if discount else None,
            "discount_percentage": discount.discount_percentage if discount else None,
            "discount_ends_on": discount.ends_on if discount else None,
            "cancelled_at": subscription.cancelled_at,
            "cancellation_effective_date": subscription.cancellation_effective_date,
        }

    @staticmethod
    def _scheduled_change_values(change: ScheduledPlanChange) -> Dict[str, Any]:
        return {
            "subscription_id": change.subscription_id,
            "current_plan_id": change.current_plan_id,
            "new_plan_id": change.new_plan_id,
            "change_type": change.change_type.value,
            "scheduled_date": change.scheduled_date,
            "status": change.status.value,
            "initiated_by_member": change.initiated_by_member,
            "reason": change.reason,
            "cancellation_reason": change.cancellation_reason,
            "applied_at": change.applied_at,
            "cancelled_at": change.cancelled_at,
        }

    @staticmethod
    def _cancellation_values(request: CancellationRequest) -> Dict[str, Any]:
        fee = request.early_termination_fee
        refund = request.refund_amount
        currency = fee.currency if fee else (refund.currency if refund else None)
        return {
            "member_id": request.member_id,
            "subscription_id": request.subscription_id,
            "contract_id": request.contract_id,
            "cancellation_type": request.cancellation_type.value,
            "reason_category": request.reason_category.value,
            "reason_detail": request.reason_detail,
            "status": request.status.value,
            "requested_at": request.requested_at,
            "notice_period_end_date": request.notice_period_end_date,
            "effective_date": request.effective_date,
            "currency": currency,
            "early_termination_fee": fee.amount if fee else None,
            "fee_waived": request.fee_waived,
            "fee_waived_by": request.fee_waived_by,
            "fee_waived_reason": request.fee_waived_reason,
            "fee_waived_at": request.fee_waived_at,
            "refund_amount": refund.amount if refund else None,
            "accepted_offer_id": request.accepted_offer_id,
            "resolved_at": request.resolved_at,
            "reactivation_eligible_until": request.reactivation_eligible_until,
        }

    @staticmethod
    def _offer_values(offer: RetentionOffer) -> Dict[str, Any]:
        return {
            "cancellation_request_id": offer.cancellation_request_id,
            "offer_type": offer.offer_type.value,
            "title": json.dumps(offer.title, ensure_ascii=False),
            "description": json.dumps(offer.description, ensure_ascii=False),
            "value_amount": offer.value.amount if offer.value else None,
            "value_currency": offer.value.currency if offer.value else None,
            "discount_percentage": offer.discount_percentage,
            "duration_days": offer.duration_days,
            "duration_months": offer.duration_months,
            "alternative_plan_id": offer.alternative_plan_id,
            "status": offer.status.value,
            "expires_at": offer.expires_at,
            "priority": offer.priority,
            "responded_at": offer.responded_at,
        }

    # ====================
    # Row -> model
    # ====================

    def _row_to_plan(self, row: Dict[str, Any]) -> MembershipPlan:
        """Convert database row to MembershipPlan model"""
        return MembershipPlan(
            plan_id=row["plan_id"],
            name=_json(row.get("name"), {}),
            price=_money(row["price_amount"], row["price_currency"]),
            join_fee=_money(row.get("join_fee_amount"), row.get("join_fee_currency")),
            billing_cycle=BillingCycle(row.get("billing_cycle", "monthly")),
            trial_days=row.get("trial_days") or 0,
            classes_per_period=row.get("classes_per_period"),
            guest_passes_per_period=row.get("guest_passes_per_period"),
            freeze_days_allowance=row.get("freeze_days_allowance") or 0,
            max_open_freeze_days=row.get("max_open_freeze_days"),
            contract_type=ContractType(row.get("contract_type", "month_to_month")),
            contract_term=ContractTerm(row.get("contract_term", "one_month")),
            notice_period_days=row.get("notice_period_days"),
            cooling_off_days=row.get("cooling_off_days"),
            early_termination_fee_type=EarlyTerminationFeeType(row.get("early_termination_fee_type", "none")),
            early_termination_fee_value=row.get("early_termination_fee_value") or Decimal("0"),
            is_active=row.get("is_active", True),
        )

    def _row_to_contract(self, row: Dict[str, Any]) -> Contract:
        """Convert database row to Contract model, rebuilding the state variant"""
        status = row["status"]
        if status == "active":
            state = ActiveState(activated_at=row["activated_at"])
        elif status == "in_notice_period":
            state = InNoticePeriodState(
                activated_at=row["activated_at"],
                requested_at=row["cancellation_requested_at"],
                notice_period_end_date=row["notice_period_end_date"],
                effective_date=row["effective_date"],
                cancellation_type=CancellationType(row.get("cancellation_type") or "standard"),
                reason=row.get("cancellation_reason"),
            )
        elif status == "cancelled":
            state = CancelledState(
                cancelled_at=row["cancelled_at"],
                effective_date=row["effective_date"],
                cancellation_type=CancellationType(row["cancellation_type"]),
                reason=row.get("cancellation_reason"),
            )
        elif status == "completed":
            state = CompletedState(completed_at=row["completed_at"])
        else:
            state = PendingSignatureState()

        return Contract(
            contract_id=row["contract_id"],
            contract_number=row["contract_number"],
            member_id=row["member_id"],
            plan_id=row["plan_id"],
            contract_type=ContractType(row["contract_type"]),
            contract_term=ContractTerm(row["contract_term"]),
            start_date=row["start_date"],
            commitment_end_date=row.get("commitment_end_date"),
            notice_period_days=row["notice_period_days"],
            early_termination_fee_type=EarlyTerminationFeeType(row["early_termination_fee_type"]),
            early_termination_fee_value=row["early_termination_fee_value"],
            cooling_off_end_date=row["cooling_off_end_date"],
            subscription_id=row.get("subscription_id"),
            state=state,
            signed_at=row.get("signed_at"),
            signature_ref=row.get("signature_ref"),
            approved_by=row.get("approved_by"),
            approved_at=row.get("approved_at"),
            version=row.get("version", 0),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_subscription(self, row: Dict[str, Any]) -> Subscription:
        """Convert database row to Subscription model"""
        currency = row["agreed_price_currency"]
        freeze = None
        if row.get("freeze_start_date") is not None:
            freeze = ActiveFreeze(
                start_date=row["freeze_start_date"],
                planned_end_date=row.get("freeze_planned_end_date"),
                source=FreezeSource(row.get("freeze_source") or "member_self_service"),
                reason=row.get("freeze_reason"),
            )
        discount = None
        if row.get("discount_original_amount") is not None:
            discount = ActiveDiscount(
                original_price=_money(row["discount_original_amount"], currency),
                discount_percentage=row["discount_percentage"],
                ends_on=row["discount_ends_on"],
            )
        return Subscription(
            subscription_id=row["subscription_id"],
            member_id=row["member_id"],
            plan_id=row["plan_id"],
            contract_id=row.get("contract_id"),
            status=SubscriptionStatus(row["status"]),
            start_date=row["start_date"],
            current_period_start=row["current_period_start"],
            current_period_end=row["current_period_end"],
            agreed_price=_money(row["agreed_price_amount"], currency),
            billing_cycle=BillingCycle(row["billing_cycle"]),
            auto_renew=row.get("auto_renew", True),
            freeze_days_remaining=row.get("freeze_days_remaining", 0),
            total_freeze_days_used=row.get("total_freeze_days_used", 0),
            active_freeze=freeze,
            classes_remaining=row.get("classes_remaining"),
            guest_passes_remaining=row.get("guest_passes_remaining"),
            active_discount=discount,
            cancelled_at=row.get("cancelled_at"),
            cancellation_effective_date=row.get("cancellation_effective_date"),
            version=row.get("version", 0),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_scheduled_change(self, row: Dict[str, Any]) -> ScheduledPlanChange:
        return ScheduledPlanChange(
            change_id=row["change_id"],
            subscription_id=row["subscription_id"],
            current_plan_id=row["current_plan_id"],
            new_plan_id=row["new_plan_id"],
            change_type=PlanChangeType(row["change_type"]),
            scheduled_date=row["scheduled_date"],
            status=ScheduledChangeStatus(row["status"]),
            initiated_by_member=row.get("initiated_by_member", True),
            reason=row.get("reason"),
            cancellation_reason=row.get("cancellation_reason"),
            created_at=row.get("created_at"),
            applied_at=row.get("applied_at"),
            cancelled_at=row.get("cancelled_at"),
        )

    def _row_to_history(self, row: Dict[str, Any]) -> PlanChangeHistory:
        currency = row["currency"]
        return PlanChangeHistory(
            history_id=row["history_id"],
            subscription_id=row["subscription_id"],
            member_id=row["member_id"],
            old_plan_id=row["old_plan_id"],
            new_plan_id=row["new_plan_id"],
            change_type=PlanChangeType(row["change_type"]),
            proration_mode=ProrationMode(row["proration_mode"]),
            old_price=_money(row["old_price"], currency),
            new_price=_money(row["new_price"], currency),
            credit_amount=_money(row["credit_amount"], currency),
            charge_amount=_money(row["charge_amount"], currency),
            net_amount=_money(row["net_amount"], currency),
            days_remaining=row.get("days_remaining", 0),
            period_length_days=row.get("period_length_days", 0),
            effective_date=row["effective_date"],
            scheduled_change_id=row.get("scheduled_change_id"),
            initiated_by_member=row.get("initiated_by_member", True),
            created_at=row.get("created_at"),
        )

    def _row_to_cancellation(self, row: Dict[str, Any]) -> CancellationRequest:
        currency = row.get("currency")
        return CancellationRequest(
            request_id=row["request_id"],
            member_id=row["member_id"],
            subscription_id=row["subscription_id"],
            contract_id=row.get("contract_id"),
            cancellation_type=CancellationType(row["cancellation_type"]),
            reason_category=CancellationReasonCategory(row["reason_category"]),
            reason_detail=row.get("reason_detail"),
            status=CancellationRequestStatus(row["status"]),
            requested_at=row["requested_at"],
            notice_period_end_date=row.get("notice_period_end_date"),
            effective_date=row["effective_date"],
            early_termination_fee=_money(row.get("early_termination_fee"), currency),
            fee_waived=row.get("fee_waived", False),
            fee_waived_by=row.get("fee_waived_by"),
            fee_waived_reason=row.get("fee_waived_reason"),
            fee_waived_at=row.get("fee_waived_at"),
            refund_amount=_money(row.get("refund_amount"), currency),
            accepted_offer_id=row.get("accepted_offer_id"),
            resolved_at=row.get("resolved_at"),
            reactivation_eligible_until=row.get("reactivation_eligible_until"),
            version=row.get("version", 0),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_offer(self, row: Dict[str, Any]) -> RetentionOffer:
        return RetentionOffer(
            offer_id=row["offer_id"],
            cancellation_request_id=row.get("cancellation_request_id"),
            offer_type=RetentionOfferType(row["offer_type"]),
            title=_json(row.get("title"), {}),
            description=_json(row.get("description"), {}),
            value=_money(row.get("value_amount"), row.get("value_currency")),
            discount_percentage=row.get("discount_percentage"),
            duration_days=row.get("duration_days"),
            duration_months=row.get("duration_months"),
            alternative_plan_id=row.get("alternative_plan_id"),
            status=RetentionOfferStatus(row["status"]),
            expires_at=row["expires_at"],
            priority=row.get("priority", 0),
            responded_at=row.get("responded_at"),
            created_at=row.get("created_at"),
        )

    def _row_to_freeze(self, row: Dict[str, Any]) -> FreezeHistory:
        return FreezeHistory(
            entry_id=row["entry_id"],
            subscription_id=row["subscription_id"],
            start_date=row["start_date"],
            end_date=row.get("end_date"),
            days_used=row.get("days_used", 0),
            days_granted=row.get("days_granted", 0),
            source=FreezeSource(row["source"]),
            reason=row.get("reason"),
            recorded_by=row.get("recorded_by"),
            created_at=row.get("created_at"),
        )

    def _row_to_survey(self, row: Dict[str, Any]) -> ExitSurvey:
        return ExitSurvey(
            survey_id=row["survey_id"],
            member_id=row["member_id"],
            subscription_id=row["subscription_id"],
            cancellation_request_id=row.get("cancellation_request_id"),
            reason_category=CancellationReasonCategory(row["reason_category"]),
            overall_satisfaction=row.get("overall_satisfaction"),
            nps_score=row.get("nps_score"),
            dissatisfaction_areas=_json(row.get("dissatisfaction_areas"), []),
            competitor_name=row.get("competitor_name"),
            would_return=row.get("would_return"),
            what_would_bring_back=row.get("what_would_bring_back"),
            feedback=row.get("feedback"),
            submitted_at=row.get("submitted_at"),
        )


__all__ = ["MembershipRepository"]

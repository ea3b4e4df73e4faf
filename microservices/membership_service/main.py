"""
Membership Microservice API

Gym membership contract & subscription lifecycle: contracts, renewals,
freezes, plan changes with proration, and the cancellation/retention workflow.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))
from core.config_manager import ConfigManager
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from .factory import create_membership_service
from .membership_service import MembershipService
from .models import (
    ApproveContractRequest,
    CancelSubscriptionRequest,
    CancellationListResponse,
    CancellationPreview,
    CancellationReasonCategory,
    CancellationRequest,
    CancellationRequestStatus,
    CancellationResult,
    CancellationType,
    Contract,
    ContractEnrollmentResponse,
    CreateContractRequest,
    ExitSurvey,
    ExitSurveyAnalytics,
    ExitSurveyRequest,
    FreezeBalanceResponse,
    FreezeRequest,
    GrantFreezeDaysRequest,
    HealthResponse,
    PlanChangeHistory,
    PlanChangePreview,
    PlanChangeRequest,
    PlanChangeResult,
    ProrationMode,
    RenewSubscriptionRequest,
    RetentionOffer,
    RetentionRateResponse,
    ScheduledPlanChange,
    ServiceInfo,
    SignContractRequest,
    Subscription,
    SweepResult,
    WaiveFeeRequest,
)
from .protocols import (
    BusinessRuleViolationError,
    ConcurrentModificationError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from .routes_registry import BASE_PATH, SERVICE_METADATA, get_route_summary

# Initialize config manager
config_manager = ConfigManager("membership_service")
config = config_manager.get_service_config()

# Configure logger
logger = setup_service_logger("membership_service", level=config.log_level.upper())

# Print config info (development)
if config.debug:
    config_manager.print_config_summary(show_secrets=False)

# Global variables
membership_service: Optional[MembershipService] = None
event_bus = None
SERVICE_PORT = config.service_port or 8250


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global membership_service, event_bus

    try:
        # Initialize NATS JetStream event bus
        if config.nats_enabled and event_bus is None:
            try:
                event_bus = await get_event_bus("membership_service", config=config_manager)
                logger.info("Event bus initialized successfully")
            except Exception as e:
                logger.warning(f"Failed to initialize event bus: {e}. Continuing without events.")
                event_bus = None

        # Create membership service using factory (an injected instance is kept)
        if membership_service is None:
            membership_service = create_membership_service(config=config_manager, event_bus=event_bus)
            await membership_service.initialize()

        # Subscribe to events if event bus is available
        if event_bus:
            try:
                from .events import get_event_handlers

                handler_map = get_event_handlers(membership_service)
                for pattern, handler_func in handler_map.items():
                    await event_bus.subscribe_to_events(
                        pattern=pattern,
                        handler=handler_func,
                        durable=f"membership-{pattern.replace('.', '-').replace('*', 'all')}-consumer",
                    )
                    logger.info(f"Subscribed to {pattern}")

                logger.info(f"Membership event subscriber started ({len(handler_map)} event patterns)")
            except Exception as e:
                logger.warning(f"Failed to subscribe to events: {e}")

        logger.info(f"Membership service started on port {SERVICE_PORT}")
        yield

    except Exception as e:
        logger.error(f"Failed to initialize membership service: {e}")
        raise
    finally:
        # Cleanup
        if event_bus:
            try:
                await event_bus.close()
                logger.info("Membership event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if membership_service:
            await membership_service.close()
            logger.info("Membership service connections closed")


# Create FastAPI app
app = FastAPI(
    title="Membership Service",
    description="Gym membership contracts, subscriptions, plan changes, freezes and cancellations",
    version=SERVICE_METADATA["version"],
    lifespan=lifespan,
)


# ====================
# Dependency Injection
# ====================


async def get_membership_service() -> MembershipService:
    """Get membership service instance"""
    if not membership_service:
        raise HTTPException(status_code=503, detail="Membership service not initialized")
    return membership_service


async def get_member_id(x_member_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity for member routes (authentication happens upstream)"""
    if not x_member_id:
        raise HTTPException(status_code=401, detail="X-Member-Id header required")
    return x_member_id


# ====================
# Error Handling
# ====================


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


@app.exception_handler(InvalidStateTransitionError)
async def invalid_state_handler(request: Request, exc: InvalidStateTransitionError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": str(exc),
            "current_status": exc.current_status,
            "target_status": exc.target_status,
        },
    )


@app.exception_handler(BusinessRuleViolationError)
async def business_rule_handler(request: Request, exc: BusinessRuleViolationError):
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(InsufficientBalanceError)
async def insufficient_balance_handler(request: Request, exc: InsufficientBalanceError):
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content={"detail": str(exc), "available": exc.available, "requested": exc.requested},
    )


@app.exception_handler(ConcurrentModificationError)
async def concurrent_modification_handler(request: Request, exc: ConcurrentModificationError):
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "retryable": True},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception in {request.url}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error occurred"},
    )


# ====================
# Health Check and Service Info
# ====================


@app.get(f"{BASE_PATH}/health", response_model=HealthResponse)
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check"""
    dependencies = {}

    # Check database connection
    try:
        if membership_service:
            is_healthy = await membership_service.health_check()
            dependencies["database"] = "healthy" if is_healthy else "unhealthy"
        else:
            dependencies["database"] = "unhealthy"
    except Exception:
        dependencies["database"] = "unhealthy"

    dependencies["event_bus"] = "healthy" if event_bus else "disabled"

    return HealthResponse(
        status="healthy" if dependencies["database"] == "healthy" else "degraded",
        service="membership_service",
        port=SERVICE_PORT,
        version=SERVICE_METADATA["version"],
        dependencies=dependencies,
    )


@app.get(f"{BASE_PATH}/info", response_model=ServiceInfo)
@app.get("/info", response_model=ServiceInfo)
async def get_service_info():
    """Get service information"""
    return ServiceInfo(
        service="membership_service",
        version=SERVICE_METADATA["version"],
        description=f"Contract and subscription lifecycle engine ({get_route_summary()['route_count']} routes)",
        capabilities=SERVICE_METADATA["capabilities"],
        business_timezone=config.business_timezone,
        default_currency=config.default_currency,
    )


# ====================
# Contracts API
# ====================


@app.post(f"{BASE_PATH}/contracts", response_model=ContractEnrollmentResponse, status_code=201)
async def create_contract(
    request: CreateContractRequest,
    service: MembershipService = Depends(get_membership_service),
):
    """Create a contract and its subscription"""
    return await service.create_contract(request)


@app.get(f"{BASE_PATH}/contracts/{{contract_id}}", response_model=Contract)
async def get_contract(contract_id: str, service: MembershipService = Depends(get_membership_service)):
    return await service.get_contract(contract_id)


@app.post(f"{BASE_PATH}/contracts/{{contract_id}}/sign", response_model=Contract)
async def sign_contract(
    contract_id: str,
    request: SignContractRequest,
    service: MembershipService = Depends(get_membership_service),
):
    """Sign a pending contract; signing an active contract again is a no-op"""
    return await service.sign_contract(contract_id, request.signature)


@app.post(f"{BASE_PATH}/contracts/{{contract_id}}/approve", response_model=Contract)
async def approve_contract(
    contract_id: str,
    request: ApproveContractRequest,
    service: MembershipService = Depends(get_membership_service),
):
    return await service.approve_contract(contract_id, request.staff_id)


@app.get(f"{BASE_PATH}/contracts/{{contract_id}}/cancellation-preview", response_model=CancellationPreview)
async def preview_contract_cancellation(
    contract_id: str,
    service: MembershipService = Depends(get_membership_service),
):
    return await service.preview_contract_cancellation(contract_id)


@app.post(f"{BASE_PATH}/contracts/{{contract_id}}/cancel", response_model=Contract)
async def cancel_contract(
    contract_id: str,
    cancellation_type: CancellationType = Query(default=CancellationType.STANDARD, alias="cancellationType"),
    reason: Optional[str] = Query(default=None),
    service: MembershipService = Depends(get_membership_service),
):
    """Cancel a contract (standard notice or cooling-off)"""
    return await service.cancel_contract(contract_id, cancellation_type, reason)


@app.post(f"{BASE_PATH}/contracts/{{contract_id}}/cancel-cooling-off", response_model=Contract)
async def cancel_contract_cooling_off(
    contract_id: str,
    reason: Optional[str] = Query(default=None),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.cancel_contract_cooling_off(contract_id, reason)


@app.post(f"{BASE_PATH}/contracts/{{contract_id}}/withdraw-cancellation", response_model=Contract)
async def withdraw_contract_cancellation(
    contract_id: str,
    service: MembershipService = Depends(get_membership_service),
):
    return await service.withdraw_contract_cancellation(contract_id)


# ====================
# Member Subscription API
# ====================


@app.get(f"{BASE_PATH}/member/subscription", response_model=Subscription)
async def get_member_subscription(
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    """Current subscription (due scheduled changes are applied first)"""
    return await service.get_member_subscription(member_id)


@app.post(f"{BASE_PATH}/member/subscription/use-class", response_model=Subscription)
async def use_class(
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.use_class(member_id)


@app.post(f"{BASE_PATH}/member/subscription/use-guest-pass", response_model=Subscription)
async def use_guest_pass(
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.use_guest_pass(member_id)


# ====================
# Plan Change API
# ====================


@app.get(f"{BASE_PATH}/member/subscription/change/preview", response_model=PlanChangePreview)
async def preview_plan_change(
    new_plan_id: str = Query(..., alias="newPlanId"),
    proration_mode: Optional[ProrationMode] = Query(default=None, alias="prorationMode"),
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.preview_plan_change(member_id, new_plan_id, proration_mode)


@app.post(f"{BASE_PATH}/member/subscription/upgrade", response_model=PlanChangeResult)
async def upgrade_plan(
    request: PlanChangeRequest,
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    """Upgrade (or lateral switch); immediate with prorated charge by default"""
    return await service.upgrade(member_id, request)


@app.post(f"{BASE_PATH}/member/subscription/downgrade", response_model=PlanChangeResult)
async def downgrade_plan(
    request: PlanChangeRequest,
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    """Downgrade (or lateral switch); scheduled for the next period by default"""
    return await service.downgrade(member_id, request)


@app.post(
    f"{BASE_PATH}/member/subscription/scheduled-change/{{change_id}}/cancel",
    response_model=ScheduledPlanChange,
)
async def cancel_scheduled_change(
    change_id: str,
    reason: Optional[str] = Query(default=None),
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.cancel_scheduled_change(change_id, reason, member_id)


@app.get(f"{BASE_PATH}/member/subscription/plan-change-history", response_model=List[PlanChangeHistory])
async def get_plan_change_history(
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.get_plan_change_history(member_id)


# ====================
# Freeze API
# ====================


@app.post(f"{BASE_PATH}/member/subscription/freeze", response_model=Subscription)
async def freeze_subscription(
    request: FreezeRequest,
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.freeze_subscription(member_id, request)


@app.post(f"{BASE_PATH}/member/subscription/unfreeze", response_model=Subscription)
async def unfreeze_subscription(
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.unfreeze_subscription(member_id)


@app.get(f"{BASE_PATH}/member/subscription/freeze-balance", response_model=FreezeBalanceResponse)
async def get_freeze_balance(
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.get_freeze_balance(member_id)


# ====================
# Cancellation & Retention API
# ====================


@app.get(f"{BASE_PATH}/member/subscription/cancel/preview", response_model=CancellationPreview)
async def preview_cancellation(
    reason_category: CancellationReasonCategory = Query(
        default=CancellationReasonCategory.OTHER, alias="reasonCategory"
    ),
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.preview_cancellation(member_id, reason_category)


@app.post(f"{BASE_PATH}/member/subscription/cancel", response_model=CancellationResult)
async def request_cancellation(
    request: CancelSubscriptionRequest,
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    """Request cancellation; returns the request plus any retention offers"""
    return await service.request_cancellation(member_id, request)


@app.post(f"{BASE_PATH}/member/subscription/cancel/withdraw", response_model=CancellationResult)
async def withdraw_cancellation(
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.withdraw_cancellation(member_id)


@app.post(f"{BASE_PATH}/member/subscription/cancel/accept-offer/{{offer_id}}", response_model=CancellationResult)
async def accept_retention_offer(
    offer_id: str,
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.accept_retention_offer(member_id, offer_id)


@app.post(f"{BASE_PATH}/member/subscription/cancel/decline-offer/{{offer_id}}", response_model=RetentionOffer)
async def decline_retention_offer(
    offer_id: str,
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.decline_retention_offer(member_id, offer_id)


@app.post(f"{BASE_PATH}/member/subscription/exit-survey", response_model=ExitSurvey, status_code=201)
async def submit_exit_survey(
    request: ExitSurveyRequest,
    member_id: str = Depends(get_member_id),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.submit_exit_survey(member_id, request)


# ====================
# Admin API
# ====================


@app.post(f"{BASE_PATH}/admin/subscriptions/{{subscription_id}}/freeze-days", response_model=Subscription)
async def grant_freeze_days(
    subscription_id: str,
    request: GrantFreezeDaysRequest,
    service: MembershipService = Depends(get_membership_service),
):
    return await service.grant_freeze_days(subscription_id, request)


@app.post(f"{BASE_PATH}/admin/subscriptions/{{subscription_id}}/renew", response_model=Subscription)
async def renew_subscription(
    subscription_id: str,
    request: Optional[RenewSubscriptionRequest] = None,
    service: MembershipService = Depends(get_membership_service),
):
    return await service.renew_subscription(subscription_id, request)


@app.get(f"{BASE_PATH}/admin/cancellations", response_model=CancellationListResponse)
async def list_cancellations(
    status_filter: Optional[CancellationRequestStatus] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.list_cancellations(status_filter, page, page_size)


@app.get(f"{BASE_PATH}/admin/cancellations/pending", response_model=CancellationListResponse)
async def list_pending_cancellations(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=100),
    service: MembershipService = Depends(get_membership_service),
):
    return await service.list_pending_cancellations(page, page_size)


@app.get(f"{BASE_PATH}/admin/cancellations/retention-rate", response_model=RetentionRateResponse)
async def get_retention_rate(
    start_date: date = Query(..., alias="startDate"),
    end_date: date = Query(..., alias="endDate"),
    service: MembershipService = Depends(get_membership_service),
):
    if end_date < start_date:
        raise HTTPException(status_code=422, detail="endDate must not precede startDate")
    return await service.get_retention_rate(start_date, end_date)


@app.post(f"{BASE_PATH}/admin/cancellations/{{request_id}}/waive-fee", response_model=CancellationRequest)
async def waive_termination_fee(
    request_id: str,
    request: WaiveFeeRequest,
    service: MembershipService = Depends(get_membership_service),
):
    return await service.waive_termination_fee(request_id, request)


@app.post(f"{BASE_PATH}/admin/cancellations/{{request_id}}/finalize", response_model=CancellationResult)
async def finalize_cancellation(
    request_id: str,
    force: bool = Query(default=False),
    service: MembershipService = Depends(get_membership_service),
):
    """Finalize a cancellation whose effective date has arrived (force skips the date check)"""
    return await service.finalize_cancellation(request_id, force)


@app.get(f"{BASE_PATH}/admin/exit-surveys/analytics", response_model=ExitSurveyAnalytics)
async def get_exit_survey_analytics(service: MembershipService = Depends(get_membership_service)):
    return await service.get_exit_survey_analytics()


@app.post(f"{BASE_PATH}/admin/sweeps/run", response_model=SweepResult)
async def run_sweeps(
    run_date: Optional[date] = Query(default=None, alias="runDate"),
    service: MembershipService = Depends(get_membership_service),
):
    """Run the daily sweeps now (idempotent for a given business day)"""
    return await service.run_sweeps(run_date)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.membership_service.main:app",
        host=config.service_host,
        port=SERVICE_PORT,
        reload=config.debug,
        log_level=config.log_level.lower(),
    )

"""
Membership Service Routes Registry

Defines service metadata and the route catalogue served by /info.
"""

SERVICE_METADATA = {
    "service_name": "membership_service",
    "version": "1.0.0",
    "tags": ["v1", "membership", "contracts", "subscriptions", "microservice"],
    "capabilities": [
        "contract_lifecycle",
        "subscription_lifecycle",
        "plan_change_proration",
        "freeze_management",
        "cancellation_retention",
        "exit_surveys",
        "daily_sweeps",
    ],
}

BASE_PATH = "/api/v1/memberships"

# Route definitions for API documentation
ROUTES = [
    # Health endpoints
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": f"{BASE_PATH}/health", "methods": ["GET"], "description": "Service health check (API v1)"},
    {"path": f"{BASE_PATH}/info", "methods": ["GET"], "description": "Service information"},

    # Contracts
    {"path": f"{BASE_PATH}/contracts", "methods": ["POST"], "description": "Create contract and subscription"},
    {"path": f"{BASE_PATH}/contracts/{{contract_id}}", "methods": ["GET"], "description": "Get contract"},
    {"path": f"{BASE_PATH}/contracts/{{contract_id}}/sign", "methods": ["POST"], "description": "Sign contract"},
    {"path": f"{BASE_PATH}/contracts/{{contract_id}}/approve", "methods": ["POST"], "description": "Staff approval"},
    {"path": f"{BASE_PATH}/contracts/{{contract_id}}/cancellation-preview", "methods": ["GET"], "description": "Cancellation terms"},
    {"path": f"{BASE_PATH}/contracts/{{contract_id}}/cancel", "methods": ["POST"], "description": "Cancel contract"},
    {"path": f"{BASE_PATH}/contracts/{{contract_id}}/cancel-cooling-off", "methods": ["POST"], "description": "Cancel within cooling-off"},
    {"path": f"{BASE_PATH}/contracts/{{contract_id}}/withdraw-cancellation", "methods": ["POST"], "description": "Withdraw cancellation"},

    # Member subscription
    {"path": f"{BASE_PATH}/member/subscription", "methods": ["GET"], "description": "Current subscription"},
    {"path": f"{BASE_PATH}/member/subscription/change/preview", "methods": ["GET"], "description": "Plan change preview"},
    {"path": f"{BASE_PATH}/member/subscription/upgrade", "methods": ["POST"], "description": "Upgrade plan"},
    {"path": f"{BASE_PATH}/member/subscription/downgrade", "methods": ["POST"], "description": "Downgrade plan"},
    {"path": f"{BASE_PATH}/member/subscription/scheduled-change/{{change_id}}/cancel", "methods": ["POST"], "description": "Cancel scheduled change"},
    {"path": f"{BASE_PATH}/member/subscription/plan-change-history", "methods": ["GET"], "description": "Plan change history"},
    {"path": f"{BASE_PATH}/member/subscription/freeze", "methods": ["POST"], "description": "Freeze subscription"},
    {"path": f"{BASE_PATH}/member/subscription/unfreeze", "methods": ["POST"], "description": "Unfreeze subscription"},
    {"path": f"{BASE_PATH}/member/subscription/freeze-balance", "methods": ["GET"], "description": "Freeze balance"},
    {"path": f"{BASE_PATH}/member/subscription/use-class", "methods": ["POST"], "description": "Consume a class"},
    {"path": f"{BASE_PATH}/member/subscription/use-guest-pass", "methods": ["POST"], "description": "Consume a guest pass"},
    {"path": f"{BASE_PATH}/member/subscription/cancel/preview", "methods": ["GET"], "description": "Cancellation preview"},
    {"path": f"{BASE_PATH}/member/subscription/cancel", "methods": ["POST"], "description": "Request cancellation"},
    {"path": f"{BASE_PATH}/member/subscription/cancel/withdraw", "methods": ["POST"], "description": "Withdraw cancellation"},
    {"path": f"{BASE_PATH}/member/subscription/cancel/accept-offer/{{offer_id}}", "methods": ["POST"], "description": "Accept retention offer"},
    {"path": f"{BASE_PATH}/member/subscription/cancel/decline-offer/{{offer_id}}", "methods": ["POST"], "description": "Decline retention offer"},
    {"path": f"{BASE_PATH}/member/subscription/exit-survey", "methods": ["POST"], "description": "Submit exit survey"},

    # Admin
    {"path": f"{BASE_PATH}/admin/subscriptions/{{subscription_id}}/freeze-days", "methods": ["POST"], "description": "Grant freeze days"},
    {"path": f"{BASE_PATH}/admin/subscriptions/{{subscription_id}}/renew", "methods": ["POST"], "description": "Renew subscription"},
    {"path": f"{BASE_PATH}/admin/cancellations", "methods": ["GET"], "description": "List cancellations"},
    {"path": f"{BASE_PATH}/admin/cancellations/pending", "methods": ["GET"], "description": "Pending cancellations"},
    {"path": f"{BASE_PATH}/admin/cancellations/retention-rate", "methods": ["GET"], "description": "Retention rate"},
    {"path": f"{BASE_PATH}/admin/cancellations/{{request_id}}/waive-fee", "methods": ["POST"], "description": "Waive termination fee"},
    {"path": f"{BASE_PATH}/admin/cancellations/{{request_id}}/finalize", "methods": ["POST"], "description": "Finalize cancellation"},
    {"path": f"{BASE_PATH}/admin/exit-surveys/analytics", "methods": ["GET"], "description": "Exit survey analytics"},
    {"path": f"{BASE_PATH}/admin/sweeps/run", "methods": ["POST"], "description": "Run daily sweeps"},
]


def get_route_summary():
    """Route metadata exposed by the service info endpoint"""
    route_paths = [r["path"] for r in ROUTES]
    return {
        "route_count": len(ROUTES),
        "routes": route_paths,
        "api_version": "v1",
        "base_path": BASE_PATH,
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "BASE_PATH", "get_route_summary"]

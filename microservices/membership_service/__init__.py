"""
Membership Service

Gym membership contract & subscription lifecycle microservice providing:
- Contract lifecycle (signature, activation, notice period, cooling-off, completion)
- Subscription lifecycle (trial, renewal, freeze, expiry) with usage counters
- Plan changes with day-exact proration, immediate or end-of-period
- Cancellation workflow with early-termination fees and retention offers
- Exit surveys, retention metrics and daily sweeps

Port: 8250
"""

__version__ = "1.0.0"
__service__ = "membership_service"

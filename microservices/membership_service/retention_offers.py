"""
Retention Offer Rules

Maps a cancellation reason category to offer templates and materializes them
for one subscription. Pure: the cancellation workflow decides whether the
offers are persisted (request) or only shown (preview).
"""

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .models import (
    CancellationReasonCategory,
    MembershipPlan,
    RetentionOffer,
    RetentionOfferType,
    Subscription,
)
from .money import days_between, percentage_of
from .policy import MembershipPolicy
from .service_base import new_id

_DISCOUNT = RetentionOfferType.DISCOUNT
_FREE = RetentionOfferType.FREE_MONTHS
_PAUSE = RetentionOfferType.PAUSE
_SWITCH = RetentionOfferType.PLAN_SWITCH

# Display order; FINANCIAL gets the larger free-months offer
OFFER_RULES: Dict[CancellationReasonCategory, Tuple[RetentionOfferType, ...]] = {
    CancellationReasonCategory.FINANCIAL: (_DISCOUNT, _SWITCH, _FREE),
    CancellationReasonCategory.HEALTH: (_PAUSE, _FREE),
    CancellationReasonCategory.SCHEDULE: (_PAUSE, _FREE),
    CancellationReasonCategory.NOT_USING: (_PAUSE, _SWITCH),
    CancellationReasonCategory.DISSATISFACTION: (_DISCOUNT, _FREE),
    CancellationReasonCategory.FOUND_ALTERNATIVE: (_DISCOUNT, _FREE),
    CancellationReasonCategory.RELOCATION: (_PAUSE,),
    CancellationReasonCategory.OTHER: (_PAUSE, _DISCOUNT),
}


def cheaper_alternative(current_price, plans: Sequence[MembershipPlan], current_plan_id: str) -> Optional[MembershipPlan]:
    """Most expensive active plan that is still cheaper than the current price"""
    candidates = [
        p for p in plans
        if p.is_active
        and p.plan_id != current_plan_id
        and p.price.currency == current_price.currency
        and p.price.amount < current_price.amount
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.price.amount)


def _discount(subscription: Subscription, policy: MembershipPolicy) -> dict:
    pct = policy.loyalty_discount_percentage
    months = policy.loyalty_discount_months
    return {
        "title": {"en": f"{pct}% off for {months} months", "ar": f"خصم {pct}% لمدة {months} أشهر"},
        "description": {
            "en": "A loyalty discount on your current plan.",
            "ar": "خصم ولاء على باقتك الحالية.",
        },
        "value": percentage_of(subscription.agreed_price, pct),
        "discount_percentage": pct,
        "duration_months": months,
    }


def _free_months(subscription: Subscription, months: int) -> dict:
    return {
        "title": {"en": f"{months} free month(s)", "ar": f"{months} شهر مجاني"},
        "description": {
            "en": "Stay with us and we extend your membership at no cost.",
            "ar": "ابقَ معنا وسنمدد عضويتك مجاناً.",
        },
        "value": subscription.agreed_price.times(months),
        "duration_months": months,
    }


def _pause(policy: MembershipPolicy) -> dict:
    days = policy.pause_offer_days
    return {
        "title": {"en": f"Pause for {days} days", "ar": f"إيقاف مؤقت لمدة {days} يوماً"},
        "description": {
            "en": "Freeze your membership free of charge and come back when you are ready.",
            "ar": "جمّد عضويتك مجاناً وعد عندما تكون مستعداً.",
        },
        "duration_days": days,
    }


def _plan_switch(plan: MembershipPlan) -> dict:
    name_en = plan.name.get("en", plan.plan_id)
    name_ar = plan.name.get("ar", name_en)
    return {
        "title": {"en": f"Switch to {name_en}", "ar": f"انتقل إلى {name_ar}"},
        "description": {
            "en": f"Keep training for {plan.price} per period.",
            "ar": f"واصل التدريب مقابل {plan.price} لكل فترة.",
        },
        "value": plan.price,
        "alternative_plan_id": plan.plan_id,
    }


def generate_offers(
    reason: CancellationReasonCategory,
    subscription: Subscription,
    plans: Sequence[MembershipPlan],
    today: date,
    now: datetime,
    policy: MembershipPolicy,
    cancellation_request_id: Optional[str] = None,
) -> List[RetentionOffer]:
    """Offers for this reason that the subscription qualifies for, in priority order"""
    tenure_days = days_between(subscription.start_date, today)
    expires_at = now + timedelta(hours=policy.offer_expiry_hours)

    offers: List[RetentionOffer] = []
    for offer_type in OFFER_RULES.get(reason, ()):
        if offer_type == RetentionOfferType.DISCOUNT:
            if tenure_days < policy.loyalty_discount_min_tenure_days:
                continue
            fields = _discount(subscription, policy)
        elif offer_type == RetentionOfferType.PLAN_SWITCH:
            alternative = cheaper_alternative(subscription.agreed_price, plans, subscription.plan_id)
            if alternative is None:
                continue
            fields = _plan_switch(alternative)
        elif offer_type == RetentionOfferType.FREE_MONTHS:
            months = (
                policy.financial_free_months_offer
                if reason == CancellationReasonCategory.FINANCIAL
                else policy.free_months_offer
            )
            fields = _free_months(subscription, months)
        else:
            fields = _pause(policy)

        offers.append(RetentionOffer(
            offer_id=new_id("off"),
            cancellation_request_id=cancellation_request_id,
            offer_type=offer_type,
            expires_at=expires_at,
            priority=len(offers) + 1,
            **fields,
        ))
    return offers


__all__ = ["OFFER_RULES", "generate_offers", "cheaper_alternative"]

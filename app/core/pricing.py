from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
from dataclasses import dataclass

from app.core.config import settings
from app.core.exceptions import ValidationError

ZERO = Decimal("0")
WHOLE = Decimal("1")
CENTS = Decimal("0.01")


@dataclass(frozen=True)
class RefundTier:
    """Refund share granted when cancelling with more than ``min_hours`` notice"""
    key: str
    min_hours: float
    ratio: Decimal


@dataclass(frozen=True)
class RefundDecision:
    """Outcome of applying the cancellation policy"""
    tier: str
    hours_until_session: float
    refund_amount: Decimal

    @property
    def refunds_payment(self) -> bool:
        return self.refund_amount > ZERO


def build_refund_tiers(
    full_refund_hours: int = None,
    partial_refund_hours: int = None,
    partial_ratio: float = None,
) -> List[RefundTier]:
    """Tiers ordered from most to least notice"""
    return [
        RefundTier(
            key="full",
            min_hours=full_refund_hours if full_refund_hours is not None else settings.FULL_REFUND_HOURS,
            ratio=Decimal("1"),
        ),
        RefundTier(
            key="partial",
            min_hours=partial_refund_hours if partial_refund_hours is not None else settings.PARTIAL_REFUND_HOURS,
            ratio=Decimal(str(partial_ratio if partial_ratio is not None else settings.PARTIAL_REFUND_RATIO)),
        ),
    ]


def calculate_session_price(hourly_rate: Decimal, duration_minutes: int) -> Decimal:
    """Price of a session, rounded half up to a whole currency unit"""
    if duration_minutes <= 0:
        raise ValidationError("Duration must be positive")
    if hourly_rate is None or Decimal(hourly_rate) < ZERO:
        raise ValidationError("Hourly rate must be a non-negative amount")

    amount = Decimal(hourly_rate) * Decimal(duration_minutes) / Decimal(60)
    return amount.quantize(WHOLE, rounding=ROUND_HALF_UP)


class CancellationPolicy:
    """Tiered refund computation based on the notice given before the session"""

    def __init__(self, tiers: Optional[List[RefundTier]] = None):
        self.tiers = sorted(tiers or build_refund_tiers(), key=lambda tier: tier.min_hours, reverse=True)

    def decide(self, total_amount: Decimal, hours_until_session: float) -> RefundDecision:
        for tier in self.tiers:
            if hours_until_session > tier.min_hours:
                refund = (Decimal(total_amount) * tier.ratio).quantize(CENTS, rounding=ROUND_HALF_UP)
                return RefundDecision(tier=tier.key, hours_until_session=hours_until_session, refund_amount=refund)

        return RefundDecision(tier="none", hours_until_session=hours_until_session, refund_amount=ZERO)

from __future__ import annotations

"""
Per-transaction partner commission split.

This module is pure-Python (no Firestore dependency) so it's easy to test.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Literal, Mapping, Optional, Sequence

ContributionType = Literal["lead_generation", "service_delivery", "introduction", "platform_fee"]

DEFAULT_ATTRIBUTION_PERCENTAGES: Mapping[str, float] = {
    "lead_generation": 20.0,
    "service_delivery": 50.0,
    "introduction": 20.0,
    "platform_fee": 10.0,
}

_CENT = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class PartnerContribution:
    partner_id: str
    contribution_type: ContributionType
    percentage: float
    partner_name: str = ""

    def __post_init__(self) -> None:
        if self.contribution_type not in DEFAULT_ATTRIBUTION_PERCENTAGES:
            raise ValueError("contribution_type must be one of: lead_generation|service_delivery|introduction|platform_fee")
        if self.percentage < 0 or self.percentage > 100:
            raise ValueError("percentage must be 0..100")


@dataclass(frozen=True, slots=True)
class CommissionTier:
    """
    Conventions:
    - base_rate / bonus_rate are percentages of the attributed amount (100 = full).
    - max_revenue None means unbounded.
    """

    assigned_partner_ids: tuple[str, ...]
    min_revenue: float
    base_rate: float
    max_revenue: Optional[float] = None
    bonus_rate: Optional[float] = None
    bonus_threshold: Optional[float] = None
    is_active: bool = True

    def matches(self, *, partner_id: str, total_amount: float) -> bool:
        if not self.is_active or partner_id not in self.assigned_partner_ids:
            return False
        if total_amount < self.min_revenue:
            return False
        return self.max_revenue is None or total_amount <= self.max_revenue

    def rate_for(self, total_amount: float) -> float:
        if self.bonus_rate and self.bonus_threshold and total_amount >= self.bonus_threshold:
            return self.base_rate + self.bonus_rate
        return self.base_rate


@dataclass(frozen=True, slots=True)
class PartnerCommission:
    partner_id: str
    partner_name: str
    contribution_type: ContributionType
    percentage: float
    amount: float
    status: Literal["pending", "notified", "paid"] = "pending"


def round_cents(value: float) -> float:
    return float(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def tier_rate(partner_id: str, total_amount: float, tiers: Optional[Sequence[CommissionTier]]) -> float:
    """
    Rate of the first matching tier; 100 (the full attributed amount) otherwise.
    """
    for tier in tiers or ():
        if tier.matches(partner_id=partner_id, total_amount=total_amount):
            return tier.rate_for(total_amount)
    return 100.0


def calculate_commissions(
    total_amount: float,
    attributions: Iterable[PartnerContribution],
    tiers: Optional[Sequence[CommissionTier]] = None,
) -> list[PartnerCommission]:
    """
    amount = total * percentage/100, scaled by the partner's tier rate.
    Platform fee contributions are never tier-scaled.
    """
    total = float(total_amount)
    out: list[PartnerCommission] = []
    for attr in attributions:
        base = total * (attr.percentage / 100.0)
        if attr.contribution_type != "platform_fee":
            base *= tier_rate(attr.partner_id, total, tiers) / 100.0
        out.append(
            PartnerCommission(
                partner_id=attr.partner_id,
                partner_name=attr.partner_name,
                contribution_type=attr.contribution_type,
                percentage=attr.percentage,
                amount=round_cents(base),
            )
        )
    return out


def summarize_commissions(total_amount: float, commissions: Sequence[PartnerCommission]) -> dict[str, float]:
    total_commissions = round_cents(sum(c.amount for c in commissions))
    platform_fee = next((c.amount for c in commissions if c.contribution_type == "platform_fee"), 0.0)
    return {
        "total_commissions": total_commissions,
        "platform_fee": platform_fee,
        "net_amount": round_cents(float(total_amount) - total_commissions),
    }

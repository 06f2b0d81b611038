"""
Customer-facing meal pricing and cycle quotes.

The customer pays the vendor's base price per meal plus the platform delivery
fee and the platform commission on the base price.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError
from app.models import SLOTS, PlatformSetting, TrialType
from app.services.cycles import service_dates
from app.services.vendors import enabled_slots, holiday_dates


def money(value: float) -> float:
    return round(float(value), 2)


def unit_price(base_price: float, delivery_fee: float, commission_pct: float) -> float:
    base = float(base_price or 0)
    return money(base + float(delivery_fee or 0) + base * float(commission_pct or 0))


@dataclass
class QuoteLine:
    slot: str
    dates: list[date]
    base_price: float
    delivery_fee: float
    commission: float
    unit_price: float

    @property
    def meals(self) -> int:
        return len(self.dates)

    @property
    def amount(self) -> float:
        return money(self.unit_price * self.meals)

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot": self.slot,
            "meals": self.meals,
            "base_price": self.base_price,
            "delivery_fee": self.delivery_fee,
            "commission": self.commission,
            "unit_price": self.unit_price,
            "amount": self.amount,
        }


@dataclass
class Quote:
    start: date
    end: date
    lines: list[QuoteLine] = field(default_factory=list)
    discount_total: float = 0.0
    fixed_total: Optional[float] = None

    @property
    def meals(self) -> int:
        return sum(line.meals for line in self.lines)

    @property
    def subtotal_vendor_base(self) -> float:
        return money(sum(line.base_price * line.meals for line in self.lines))

    @property
    def delivery_fee_total(self) -> float:
        return money(sum(line.delivery_fee * line.meals for line in self.lines))

    @property
    def commission_total(self) -> float:
        return money(sum(line.commission * line.meals for line in self.lines))

    @property
    def gross_total(self) -> float:
        return money(sum(line.amount for line in self.lines))

    @property
    def total(self) -> float:
        if self.fixed_total is not None:
            return money(self.fixed_total)
        return money(max(self.gross_total - self.discount_total, 0))

    def unit_price_for(self, slot: str) -> float:
        """Effective per-meal price after any trial discount, spread evenly."""
        line = next((item for item in self.lines if item.slot == slot), None)
        if line is None or not line.meals:
            return 0.0
        if self.total == self.gross_total or not self.gross_total:
            return line.unit_price
        return money(line.unit_price * self.total / self.gross_total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "meals": self.meals,
            "lines": [line.to_dict() for line in self.lines],
            "subtotal_vendor_base": self.subtotal_vendor_base,
            "delivery_fee_total": self.delivery_fee_total,
            "commission_total": self.commission_total,
            "discount_total": money(self.discount_total),
            "total": self.total,
        }


def quote_range(
    db: Session,
    vendor_id: uuid.UUID,
    preferences: dict[str, dict[str, Any]],
    start: date,
    end: date,
    platform: PlatformSetting,
) -> Quote:
    """Price every scheduled meal between ``start`` and ``end`` inclusive."""
    slots = enabled_slots(db, vendor_id)
    quote = Quote(start=start, end=end)
    for slot in SLOTS:
        pref = preferences.get(slot)
        if not pref:
            continue
        vendor_slot = slots.get(slot)
        if vendor_slot is None:
            raise ValidationError(f"Vendor does not serve {slot}")
        dates = service_dates(
            start,
            end,
            pref.get("weekdays") or [],
            holiday_dates(db, vendor_id, start, end, slot),
        )
        base = float(vendor_slot.base_price)
        fee = float(platform.delivery_fee_per_meal or 0)
        commission = money(base * float(platform.commission_pct or 0))
        quote.lines.append(
            QuoteLine(
                slot=slot,
                dates=dates,
                base_price=base,
                delivery_fee=fee,
                commission=commission,
                unit_price=unit_price(base, fee, platform.commission_pct),
            )
        )
    return quote


def cap_meals(quote: Quote, max_meals: int) -> Quote:
    """Keep the earliest ``max_meals`` meals across slots, in date then slot order."""
    ranked = sorted(
        ((d, SLOTS.index(line.slot)) for line in quote.lines for d in line.dates),
    )
    keep = set(ranked[:max_meals])
    for line in quote.lines:
        line.dates = [d for d in line.dates if (d, SLOTS.index(line.slot)) in keep]
    return quote


def apply_trial_pricing(quote: Quote, trial_type: TrialType) -> Quote:
    if trial_type.pricing_mode == "fixed":
        fixed = float(trial_type.fixed_price or 0)
        quote.fixed_total = fixed
        quote.discount_total = money(max(quote.gross_total - fixed, 0))
    else:
        quote.discount_total = money(quote.gross_total * float(trial_type.discount_pct or 0))
    return quote


def quote_trial(
    db: Session,
    vendor_id: uuid.UUID,
    preferences: dict[str, dict[str, Any]],
    start: date,
    end: date,
    platform: PlatformSetting,
    trial_type: TrialType,
) -> Quote:
    quote = quote_range(db, vendor_id, preferences, start, end, platform)
    cap_meals(quote, int(trial_type.max_meals))
    return apply_trial_pricing(quote, trial_type)


def slot_price_card(db: Session, vendor_id: uuid.UUID, platform: PlatformSetting) -> dict[str, Optional[float]]:
    """Customer price per meal for every slot the vendor currently serves."""
    return {
        slot: unit_price(row.base_price, platform.delivery_fee_per_meal, platform.commission_pct)
        for slot, row in enabled_slots(db, vendor_id).items()
    }

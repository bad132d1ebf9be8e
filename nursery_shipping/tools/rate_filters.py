# nursery_shipping/tools/rate_filters.py
from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional, Sequence

from nursery_shipping.models import CarrierRate, ForcedServicePolicy, MarkupPolicy, ZoneVerdict

log = logging.getLogger(__name__)

TWO_DEC = Decimal("0.01")

# Service names that mean "fast". Matched as substrings both ways.
EXPEDITED_VOCAB = ["priority", "express", "expedited", "2_day", "2-day", "1_day", "1-day", "overnight"]
FAST_DELIVERY_DAYS = 3


def _round2(x: float) -> float:
    return float(Decimal(str(x)).quantize(TWO_DEC, rounding=ROUND_HALF_UP))


def filter_by_transit(rates: List[CarrierRate], max_transit_days: Optional[int]) -> List[CarrierRate]:
    """Drop rates slower than the ceiling. Rates without an estimate stay."""
    if not max_transit_days:
        return list(rates)
    return [r for r in rates if not (r.delivery_days and r.delivery_days > max_transit_days)]


def price(amount: float, markup: MarkupPolicy, verdict: ZoneVerdict) -> float:
    """markup -> flat zone surcharge -> percent zone surcharge -> round"""
    if markup.type == "fixed" and markup.fixed_amount > 0:
        amount = amount + markup.fixed_amount
    elif markup.type == "percentage" and markup.percent > 0:
        amount = amount * (1 + markup.percent / 100)

    if verdict.surcharge_amount:
        amount = amount + verdict.surcharge_amount
    if verdict.surcharge_percent:
        amount = amount * (1 + verdict.surcharge_percent / 100)

    return _round2(amount)


def apply_pricing(rates: List[CarrierRate], markup: MarkupPolicy, verdict: ZoneVerdict) -> List[CarrierRate]:
    return [r.model_copy(update={"shipping_amount": price(r.shipping_amount, markup, verdict)}) for r in rates]


def sort_by_amount(rates: List[CarrierRate]) -> List[CarrierRate]:
    return sorted(rates, key=lambda r: r.shipping_amount)


def filter_allowed_services(rates: List[CarrierRate], allowed: Optional[Sequence[str]]) -> List[CarrierRate]:
    """Allow-list of service codes. Fails closed: may return nothing."""
    if not allowed:
        return list(rates)
    out = [r for r in rates if r.service_code in allowed]
    log.info(f"Filtered rates by allowed service codes: {len(rates)} -> {len(out)} (allowed: {', '.join(allowed)})")
    return out


def _is_expedited(name: str) -> bool:
    n = (name or "").lower()
    return any(v in n or (n and n in v) for v in EXPEDITED_VOCAB)


def _rate_is_fast(r: CarrierRate) -> bool:
    st, sc = r.service_type.lower(), r.service_code.lower()
    if any(v in st or v in sc for v in EXPEDITED_VOCAB):
        return True
    return bool(r.delivery_days and r.delivery_days <= FAST_DELIVERY_DAYS)


def filter_required_services(rates: List[CarrierRate], required: Sequence[str]) -> List[CarrierRate]:
    """
    When the zone asks for an expedited tier, keep only fast rates.
    Fails open: if nothing fast is on offer, everything stays.
    """
    if not required or not rates:
        return list(rates)
    if not any(_is_expedited(s) for s in required):
        return list(rates)
    fast = [r for r in rates if _rate_is_fast(r)]
    if not fast:
        log.warning(f"Zone requires {list(required)} but no fast rate was offered; showing all rates")
        return list(rates)
    return fast


def apply_forced_service(
    rates: List[CarrierRate],
    policy: Optional[ForcedServicePolicy],
    region_code: str,
) -> List[CarrierRate]:
    """Narrow to the one forced service for the region. Fails open when absent."""
    if policy is None or not policy.default or not rates:
        return list(rates)
    code = policy.service_for(region_code)
    log.info(f"Forced service: {code} for state {(region_code or '').upper()}")
    forced = [r for r in rates if r.service_code == code]
    if not forced:
        log.warning(f'Forced service code "{code}" not found in rates, showing all rates as fallback')
        return list(rates)
    return forced


def process(
    rates: List[CarrierRate],
    verdict: ZoneVerdict,
    markup: MarkupPolicy,
    allowed_service_codes: Optional[Sequence[str]] = None,
    forced_service: Optional[ForcedServicePolicy] = None,
    region_code: str = "",
) -> List[CarrierRate]:
    """Zone filtering, pricing, ordering and service steering, in that order."""
    out = filter_by_transit(rates, verdict.max_transit_days)
    out = apply_pricing(out, markup, verdict)
    out = sort_by_amount(out)
    out = filter_allowed_services(out, allowed_service_codes)
    out = filter_required_services(out, verdict.required_services)
    out = apply_forced_service(out, forced_service, region_code)
    return out

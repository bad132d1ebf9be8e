# nursery_shipping/tools/zone_policy.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from nursery_shipping.models import (
    SeasonalBlockRule,
    ServiceRequirementRule,
    SurchargeRule,
    TransitLimitRule,
    ZoneRecord,
    ZoneRule,
    ZoneStatus,
    ZoneVerdict,
)

RULE_BLOCK_MESSAGE = "Shipping to this location is not available at this time."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(dt: datetime) -> datetime:
    # naive config timestamps are UTC
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


def _blocked(message: str) -> ZoneVerdict:
    return ZoneVerdict(allowed=False, status=ZoneStatus.BLOCKED, message=message)


def rule_applies(rule: ZoneRule, region: str, now: datetime) -> bool:
    """Active, in scope for the region, the month, and the effective window."""
    if not rule.is_active:
        return False
    if rule.states and region not in [s.upper() for s in rule.states]:
        return False
    if rule.effective_start and _aware(rule.effective_start) > now:
        return False
    if rule.effective_end and _aware(rule.effective_end) < now:
        return False
    if rule.months and now.month not in rule.months:
        return False
    return True


def applicable_rules(rules: Iterable[ZoneRule], region: str, now: datetime) -> List[ZoneRule]:
    # sorted() is stable: equal priorities keep configuration order
    return sorted((r for r in rules if rule_applies(r, region, now)), key=lambda r: r.priority)


def evaluate(
    region_code: str,
    zones: Dict[str, ZoneRecord],
    rules: Iterable[ZoneRule],
    now: Optional[datetime] = None,
) -> ZoneVerdict:
    """
    Decide whether we ship to `region_code` right now.

    Base zone first (missing zone = allowed), then applicable rules in ascending
    priority. Any block is final; other rules accumulate constraints.
    """
    now = _aware(now) if now is not None else _utcnow()
    region = (region_code or "").strip().upper()
    verdict = ZoneVerdict()

    zone = zones.get(region)
    if zone is not None:
        verdict.status = zone.status

        if zone.status == ZoneStatus.BLOCKED:
            return _blocked(zone.customer_message or f"We cannot ship to {zone.display_name} at this time.")

        if zone.status == ZoneStatus.CONDITIONAL and zone.conditions is not None:
            cond = zone.conditions
            verdict.conditions = cond
            verdict.message = zone.customer_message or None

            if now.month in cond.blocked_months:
                return _blocked(zone.customer_message or f"Shipping to {zone.display_name} is temporarily suspended.")

            if cond.max_transit_days:
                verdict.max_transit_days = cond.max_transit_days
            if cond.required_service:
                verdict.required_services = [cond.required_service]

    for rule in applicable_rules(rules, region, now):
        if isinstance(rule, SeasonalBlockRule):
            return _blocked(rule.block_message or RULE_BLOCK_MESSAGE)
        elif isinstance(rule, ServiceRequirementRule):
            for service in rule.required_services:
                if service not in verdict.required_services:
                    verdict.required_services.append(service)
        elif isinstance(rule, TransitLimitRule):
            if rule.max_transit_days:
                current = verdict.max_transit_days
                verdict.max_transit_days = (
                    rule.max_transit_days if current is None else min(current, rule.max_transit_days)
                )
        elif isinstance(rule, SurchargeRule):
            if rule.surcharge_amount:
                verdict.surcharge_amount = (verdict.surcharge_amount or 0) + rule.surcharge_amount
            if rule.surcharge_percent:
                verdict.surcharge_percent = (verdict.surcharge_percent or 0) + rule.surcharge_percent
        else:
            raise TypeError(f"unhandled zone rule type: {type(rule).__name__}")

    return verdict

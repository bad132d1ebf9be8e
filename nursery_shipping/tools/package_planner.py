# nursery_shipping/tools/package_planner.py
from __future__ import annotations

import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List

from nursery_shipping.models import Dimensions, PackagePlan, PackageTemplate, PlannedPackage, Weight

log = logging.getLogger(__name__)

TWO_DEC = Decimal("0.01")
NO_CONFIG_SUMMARY = "No package configuration available"


def _round2(x: float) -> float:
    return float(Decimal(str(x)).quantize(TWO_DEC, rounding=ROUND_HALF_UP))


def pick_template(qty: int, templates: List[PackageTemplate]) -> PackageTemplate:
    """
    Choose the box for `qty` remaining items.

    Tightest fit among templates whose [min, max] range holds qty; otherwise the
    largest box when qty overflows everything, else the smallest box that still
    holds qty, then the default box, then the largest.
    """
    by_capacity = sorted(templates, key=lambda t: t.max_quantity, reverse=True)
    largest = by_capacity[0]

    fits = [t for t in templates if t.min_quantity <= qty <= t.max_quantity]
    if fits:
        return min(fits, key=lambda t: t.max_quantity)

    if qty > largest.max_quantity:
        return largest

    for t in reversed(by_capacity):
        if qty <= t.max_quantity:
            return t
    for t in templates:
        if t.is_default:
            return t
    return largest


def _summary(packages: List[PlannedPackage]) -> str:
    total_items = sum(p.item_count for p in packages)
    if len(packages) == 1:
        return f"Ships in: 1 {packages[0].name} ({total_items} items)"

    counts: Dict[str, int] = {}
    for p in packages:
        counts[p.name] = counts.get(p.name, 0) + 1
    parts = " + ".join(f"{n} {name}" for name, n in counts.items())
    return f"Ships in: {len(packages)} packages ({parts}) — {total_items} items"


def plan(total_quantity: int, weight_per_item: float, templates: List[PackageTemplate]) -> PackagePlan:
    """
    Pack `total_quantity` items into as few boxes as the templates allow.
    Deterministic: same inputs, same packages in the same order, same summary.
    """
    if not templates or total_quantity <= 0:
        return PackagePlan(packages=[], summary=NO_CONFIG_SUMMARY)

    packages: List[PlannedPackage] = []
    remaining = total_quantity
    while remaining > 0:
        box = pick_template(remaining, templates)
        placed = min(remaining, box.max_quantity)
        if placed <= 0:
            # a template with max_quantity <= 0 can never make progress
            raise ValueError(f"package template {box.name!r} has no capacity")
        packages.append(
            PlannedPackage(
                name=box.name,
                weight=Weight(value=_round2(box.empty_weight + placed * weight_per_item)),
                dimensions=Dimensions(length=box.length, width=box.width, height=box.height),
                item_count=placed,
            )
        )
        remaining -= placed

    result = PackagePlan(packages=packages, summary=_summary(packages))
    log.debug("package plan: " + json.dumps({
        "total_quantity": total_quantity,
        "weight_per_item": weight_per_item,
        "templates": [f"{t.name}({t.min_quantity}-{t.max_quantity})" for t in templates],
        "result": [f"{p.name}:{p.item_count}" for p in packages],
        "summary": result.summary,
    }))
    return result

from __future__ import annotations
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from typing_extensions import TypedDict
import logging

from langgraph.graph import StateGraph, START, END

from nursery_shipping.config_store import ShippingConfig
from nursery_shipping.errors import (
    MissingConfigError,
    NoCarriersError,
    RateEngineError,
    ZoneBlockedError,
    failure,
)
from nursery_shipping.models import (
    CarrierError,
    CarrierRate,
    OrderItem,
    PackagePlan,
    PackageSpec,
    RateRequest,
    ZoneVerdict,
)
from nursery_shipping.settings import RatingAccount

# Tools
from nursery_shipping.tools.package_planner import plan
from nursery_shipping.tools.zone_policy import evaluate
from nursery_shipping.tools.rate_gateway import ShipEngineGateway, resolve_carrier_ids
from nursery_shipping.tools.rate_filters import process

log = logging.getLogger(__name__)

DEFAULT_WEIGHT_PER_ITEM = 0.5  # pounds


# -------- Rate State --------
class RateState(TypedDict, total=False):
    # inputs
    request: RateRequest
    config: ShippingConfig
    account: RatingAccount
    now: Optional[datetime]
    weight_per_item: float
    # step outputs
    verdict: ZoneVerdict
    package_list: List[PackageSpec]
    plan: Optional[PackagePlan]
    carrier_ids: List[str]
    raw_rates: List[CarrierRate]
    carrier_errors: List[CarrierError]
    rates: List[CarrierRate]
    # control
    error: Optional[RateEngineError]
    # final
    response: Dict[str, Any]


# -------- helpers --------
def per_item_weight(items: List[OrderItem], default: float = DEFAULT_WEIGHT_PER_ITEM) -> float:
    """Mean of the lines' per-item weights; lines without one count as `default`."""
    if not items:
        return default
    return sum((it.weight_per_item or default) for it in items) / len(items)


def choose_packages(
    req: RateRequest,
    config: ShippingConfig,
    weight_default: float = DEFAULT_WEIGHT_PER_ITEM,
) -> tuple[List[PackageSpec], Optional[PackagePlan]]:
    """
    Explicit packages, else a plan from order items, else the default package.
    The plan is returned only when packages were computed from quantities.
    """
    if req.packages:
        return list(req.packages), None

    if req.order_items:
        templates = config.active_templates()
        total = sum(max(0, int(it.quantity or 0)) for it in req.order_items)
        weight = per_item_weight(req.order_items, weight_default)
        if templates:
            package_plan = plan(total, weight, templates)
            if package_plan.packages:
                return package_plan.as_package_specs(), package_plan
        else:
            log.warning("No active package templates, using default package")

    if config.default_package is not None:
        return [config.default_package], None

    raise MissingConfigError(
        "No package could be determined: send packages, or configure package templates or a default package."
    )


# -------- Nodes --------
def node_zone_check(state: RateState) -> RateState:
    """Zone policy first; a block ends the run."""
    region = state["request"].destination.region
    cfg = state["config"]
    verdict = evaluate(region, cfg.zone_index(), cfg.zone_rules, state.get("now"))
    state["verdict"] = verdict
    if not verdict.allowed:
        message = verdict.message or "Shipping to this location is not available."
        log.info(f"Zone blocked for {region}: {message}")
        state["error"] = ZoneBlockedError(
            message, zone_info={"status": verdict.status.value, "message": verdict.message}
        )
    return state


def node_package_plan(state: RateState) -> RateState:
    try:
        packages, package_plan = choose_packages(
            state["request"], state["config"], state.get("weight_per_item", DEFAULT_WEIGHT_PER_ITEM)
        )
    except RateEngineError as e:
        state["error"] = e
        return state
    state["package_list"] = packages
    state["plan"] = package_plan
    return state


def node_carrier_select(state: RateState, gateway: ShipEngineGateway) -> RateState:
    try:
        ids = resolve_carrier_ids(gateway, state["config"].carriers, state["account"])
    except RateEngineError as e:
        state["error"] = e
        return state
    state["carrier_ids"] = ids
    if not ids:
        state["error"] = NoCarriersError()
    return state


def node_rate_fetch(state: RateState, gateway: ShipEngineGateway) -> RateState:
    cfg = state["config"]
    try:
        quote = gateway.fetch_rates(
            cfg.origin, state["request"].destination, state["package_list"], state["carrier_ids"]
        )
    except RateEngineError as e:
        state["error"] = e
        return state
    state["raw_rates"] = quote.rates
    state["carrier_errors"] = quote.carrier_errors
    return state


def node_post_process(state: RateState) -> RateState:
    cfg = state["config"]
    state["rates"] = process(
        state["raw_rates"],
        state["verdict"],
        cfg.markup,
        allowed_service_codes=cfg.allowed_service_codes,
        forced_service=cfg.forced_service,
        region_code=state["request"].destination.region,
    )
    return state


def node_respond_ok(state: RateState) -> RateState:
    cfg = state["config"]
    rates = state.get("rates", [])
    carrier_errors = state.get("carrier_errors", [])
    package_plan = state.get("plan")
    account = state["account"]

    log.info(
        f"Success: {len(rates)} rate(s) returned: "
        + "; ".join(
            f"{r.carrier_friendly_name} {r.service_code} ${r.shipping_amount} ({r.delivery_days or '?'} days)"
            for r in rates
        )
    )
    if carrier_errors:
        log.warning(
            f"{len(carrier_errors)} carrier error(s): "
            + "; ".join(f"{e.carrier_friendly_name}: {e.message}" for e in carrier_errors)
        )

    out: Dict[str, Any] = {
        "success": True,
        "rates": [r.model_dump() for r in rates],
        "origin": cfg.origin.model_dump(),
        "destination": state["request"].destination.model_dump(),
        "carrier_ids_used": state.get("carrier_ids", []),
        "markup_applied": cfg.markup.describe(),
    }
    zone_info = state["verdict"].zone_info()
    if zone_info:
        out["zone_info"] = zone_info
    if package_plan is not None:
        out["package_breakdown"] = package_plan.breakdown()
    if carrier_errors:
        out["carrier_errors"] = [e.model_dump() for e in carrier_errors]
    if account.is_sandbox:
        out["is_sandbox"] = True

    state["response"] = out
    return state


def node_respond_error(state: RateState) -> RateState:
    state["response"] = failure(state["error"])
    return state


def _ok_or_error(next_node: str) -> Callable[[RateState], str]:
    def route(state: RateState) -> str:
        return "respond_error" if state.get("error") is not None else next_node
    return route


# -------- Builder --------
def build_rate_graph(gateway: ShipEngineGateway):
    """
    Build and return the compiled rate graph. The gateway is injected so the
    caller decides which account (and, in tests, which fake) is used.

    zone_check -> package_plan -> carrier_select -> rate_fetch -> post_process -> respond_ok
    Any step that records an error jumps to respond_error.
    """
    g = StateGraph(RateState)

    def _carrier_select(state: RateState) -> RateState:
        return node_carrier_select(state, gateway)

    def _rate_fetch(state: RateState) -> RateState:
        return node_rate_fetch(state, gateway)

    g.add_node("zone_check", node_zone_check)
    g.add_node("package_plan", node_package_plan)
    g.add_node("carrier_select", _carrier_select)
    g.add_node("rate_fetch", _rate_fetch)
    g.add_node("post_process", node_post_process)
    g.add_node("respond_ok", node_respond_ok)
    g.add_node("respond_error", node_respond_error)

    g.add_edge(START, "zone_check")
    g.add_conditional_edges("zone_check", _ok_or_error("package_plan"), ["package_plan", "respond_error"])
    g.add_conditional_edges("package_plan", _ok_or_error("carrier_select"), ["carrier_select", "respond_error"])
    g.add_conditional_edges("carrier_select", _ok_or_error("rate_fetch"), ["rate_fetch", "respond_error"])
    g.add_conditional_edges("rate_fetch", _ok_or_error("post_process"), ["post_process", "respond_error"])
    g.add_edge("post_process", "respond_ok")

    g.add_edge("respond_ok", END)
    g.add_edge("respond_error", END)

    return g.compile()


# -------- Runner convenience --------
def run_rate_graph(app, **inputs: Any) -> Dict[str, Any]:
    """Run the compiled graph and return the final state."""
    init: RateState = {"error": None, **inputs}
    return app.invoke(init)

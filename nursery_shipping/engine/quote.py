"""
Entry point for one rate request: pre-flight checks, then the rate graph.

Configuration and input problems are answered before any outbound call. Every
outcome, including unexpected exceptions, comes back as a plain dict in the
success or failure envelope.
"""
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from nursery_shipping.config_store import ShippingConfig
from nursery_shipping.engine.graph import build_rate_graph, run_rate_graph
from nursery_shipping.errors import (
    IntegrationDisabledError,
    InvalidRequestError,
    MissingApiKeyError,
    MissingConfigError,
    RateEngineError,
    failure,
)
from nursery_shipping.models import RateRequest
from nursery_shipping.settings import RatingAccount, Settings, resolve_rating_account
from nursery_shipping.tools.rate_gateway import ShipEngineGateway

log = logging.getLogger(__name__)

GatewayFactory = Callable[[RatingAccount], ShipEngineGateway]


def default_gateway_factory(s: Settings) -> GatewayFactory:
    def make(account: RatingAccount) -> ShipEngineGateway:
        return ShipEngineGateway(account, base_url=s.shipengine_base_url, timeout=s.rating_timeout_s)
    return make


def preflight(s: Settings, config: ShippingConfig) -> RatingAccount:
    """Integration switch, credential, origin. Raises on the first problem."""
    if not s.rating_enabled:
        raise IntegrationDisabledError()
    account = resolve_rating_account(s)
    if account is None:
        raise MissingApiKeyError(s.shipengine_mode)
    if config.origin is None or config.origin.missing_fields():
        raise MissingConfigError("Ship-from address is not configured. Set origin in the shipping configuration.")
    return account


def validate_destination(req: RateRequest) -> None:
    missing = req.destination.missing_fields()
    if missing:
        raise InvalidRequestError(
            "destination address is required with address_line1, city_locality, state_province, and postal_code",
            details="missing: " + ", ".join(missing),
        )


def quote_rates(
    req: RateRequest,
    *,
    settings: Settings,
    config: ShippingConfig,
    gateway_factory: Optional[GatewayFactory] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    try:
        account = preflight(settings, config)
        validate_destination(req)

        log.info("Rate config: " + json.dumps({
            "mode": account.mode,
            "is_sandbox": account.is_sandbox,
            "api_key_prefix": account.key_preview,
            "origin": config.origin.one_line(),
            "markup": config.markup.model_dump(),
        }))
        if account.is_sandbox:
            log.warning("SANDBOX MODE: rates are estimated retail, not negotiated.")

        with (gateway_factory or default_gateway_factory(settings))(account) as gateway:
            app = build_rate_graph(gateway)
            final_state = run_rate_graph(
                app,
                request=req,
                config=config,
                account=account,
                now=now,
                weight_per_item=settings.default_weight_per_item,
            )
        return final_state["response"]

    except RateEngineError as e:
        log.error(f"{e.code}: {e.message}")
        return failure(e)
    except Exception as e:
        log.exception(f"Unhandled error while quoting rates: {e}")
        return failure(RateEngineError(str(e) or "Failed to get shipping rates"))

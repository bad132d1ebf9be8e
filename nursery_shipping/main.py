# nursery_shipping/main.py
from typing import Any, Dict, List, Optional
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from nursery_shipping.config_store import ShippingConfig, load_config
from nursery_shipping.engine.quote import GatewayFactory, default_gateway_factory, quote_rates
from nursery_shipping.errors import (
    InvalidRequestError,
    MissingApiKeyError,
    RateEngineError,
    failure,
)
from nursery_shipping.models import RateRequest
from nursery_shipping.settings import settings, resolve_rating_account
from nursery_shipping.tools.package_planner import plan
from nursery_shipping.tools.zone_policy import evaluate
from dotenv import load_dotenv

load_dotenv()  # loads variables from .env at repo root


log = logging.getLogger("uvicorn")
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))


# ========= Config & gateway seams =========
def _load_shipping_config() -> ShippingConfig:
    # fresh read-only snapshot per request
    return load_config(settings.shipping_config_path)


def _gateway_factory() -> GatewayFactory:
    return default_gateway_factory(settings)


# ========= FastAPI app =========
app = FastAPI(title="Nursery Shipping Rates", version="1.0")


@app.exception_handler(RequestValidationError)
async def _invalid_body(_: Request, exc: RequestValidationError):
    err = InvalidRequestError("Request body is invalid", details=str(exc.errors()))
    return JSONResponse(status_code=422, content=failure(err))


# ========= Schemas =========
class PlanRequest(BaseModel):
    quantity: int = Field(..., ge=0)
    weight_per_item: Optional[float] = Field(default=None, gt=0)


class HealthResponse(BaseModel):
    status: str
    mode: str
    rating_enabled: bool
    has_api_key: bool


# ========= Endpoints =========
def _unexpected(where: str, e: Exception) -> Dict[str, Any]:
    log.exception(f"Unhandled error in {where}: {e}")
    return failure(RateEngineError(str(e) or "Unexpected error"))


@app.get("/health", response_model=HealthResponse)
def health():
    return {
        "status": "ok",
        "mode": settings.shipengine_mode,
        "rating_enabled": bool(settings.rating_enabled),
        "has_api_key": resolve_rating_account(settings) is not None,
    }


@app.post("/rates")
def get_rates(req: RateRequest) -> Dict[str, Any]:
    try:
        config = _load_shipping_config()
    except RateEngineError as e:
        log.error(f"{e.code}: {e.message}")
        return failure(e)
    except Exception as e:
        return _unexpected("/rates", e)
    # quote_rates shapes every outcome itself
    return quote_rates(req, settings=settings, config=config, gateway_factory=_gateway_factory())


@app.get("/carriers")
def list_carriers() -> Dict[str, Any]:
    """Carriers on the rating account, for the admin carrier screen."""
    account = resolve_rating_account(settings)
    if account is None:
        return failure(MissingApiKeyError(settings.shipengine_mode))
    try:
        with _gateway_factory()(account) as gateway:
            carriers: List[Dict[str, Any]] = gateway.list_carriers()
    except RateEngineError as e:
        return failure(e)
    except Exception as e:
        return _unexpected("/carriers", e)
    return {
        "success": True,
        "carriers": carriers,
        "total": len(carriers),
        "active": sum(1 for c in carriers if not c["disabled"]),
    }


@app.post("/packages/plan")
def plan_packages(req: PlanRequest) -> Dict[str, Any]:
    """Cart preview: how an order of `quantity` items would be boxed."""
    try:
        config = _load_shipping_config()
        weight = req.weight_per_item or settings.default_weight_per_item
        result = plan(req.quantity, weight, config.active_templates())
    except RateEngineError as e:
        return failure(e)
    except Exception as e:
        return _unexpected("/packages/plan", e)
    return {"success": True, "package_breakdown": result.breakdown()}


@app.get("/zones/{region_code}")
def zone_verdict(region_code: str) -> Dict[str, Any]:
    """Current zone verdict for a region (checkout pre-check)."""
    try:
        config = _load_shipping_config()
        verdict = evaluate(region_code, config.zone_index(), config.zone_rules)
    except RateEngineError as e:
        return failure(e)
    except Exception as e:
        return _unexpected("/zones", e)
    return {
        "success": True,
        "region_code": region_code.upper(),
        "verdict": verdict.model_dump(mode="json", exclude_none=True),
    }

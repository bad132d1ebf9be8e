# tests/conftest.py
import os, sys
from typing import Any, Dict, List, Optional

import pytest
from dotenv import load_dotenv

# project root on path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# load env once
load_dotenv()

from nursery_shipping.config_store import ShippingConfig
from nursery_shipping.models import Address, CarrierRate, PackageTemplate, RateQuote
from nursery_shipping.settings import RatingAccount, Settings


class FakeGateway:
    """Stands in for ShipEngineGateway; records every call."""

    def __init__(self, rates=None, carriers=None, carrier_errors=None, error=None):
        self.rates = rates or []
        self.carriers = carriers if carriers is not None else []
        self.carrier_errors = carrier_errors or []
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def list_carriers(self):
        self.calls.append({"op": "list_carriers"})
        if self.error:
            raise self.error
        return self.carriers

    def fetch_rates(self, origin, destination, packages, carrier_ids):
        self.calls.append({
            "op": "fetch_rates",
            "origin": origin,
            "destination": destination,
            "packages": packages,
            "carrier_ids": carrier_ids,
        })
        if self.error:
            raise self.error
        return RateQuote(rates=self.rates, carrier_errors=self.carrier_errors)


def make_rate(
    amount: float,
    service_code: str = "ups_ground",
    days: Optional[int] = None,
    service_type: str = "",
    rate_id: Optional[str] = None,
) -> CarrierRate:
    return CarrierRate(
        rate_id=rate_id or f"se-{service_code}-{amount}",
        carrier_id="se-1",
        carrier_code="ups",
        carrier_friendly_name="UPS",
        service_code=service_code,
        service_type=service_type or service_code.replace("_", " ").title(),
        shipping_amount=amount,
        delivery_days=days,
    )


@pytest.fixture
def rate():
    return make_rate


@pytest.fixture
def fake_gateway():
    return FakeGateway


@pytest.fixture
def origin():
    return Address(
        name="Nursery", address_line1="1 Greenhouse Way", city_locality="Atlanta",
        state_province="GA", postal_code="30318",
    )


@pytest.fixture
def destination():
    return Address(
        name="Jo Gardener", address_line1="12 Elm St", city_locality="Decatur",
        state_province="GA", postal_code="30030",
    )


@pytest.fixture
def small_large():
    return [
        PackageTemplate(name="Small Box", length=8, width=6, height=4, empty_weight=1.0, min_quantity=1, max_quantity=12),
        PackageTemplate(name="Large Box", length=16, width=12, height=8, empty_weight=2.0, min_quantity=13, max_quantity=24),
    ]


@pytest.fixture
def config(origin, small_large):
    return ShippingConfig(origin=origin, package_templates=small_large)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        rating_enabled=True,
        shipengine_mode="production",
        shipengine_api_key_production="live_key_123456",
    )


@pytest.fixture
def live_account():
    return RatingAccount(mode="production", api_key="live_key_123456", is_sandbox=False)

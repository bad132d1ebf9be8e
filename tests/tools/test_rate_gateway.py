import json

import pytest
import requests

from nursery_shipping.errors import RatingProviderError
from nursery_shipping.models import CarrierAccount, PackageSpec, Weight
from nursery_shipping.settings import RatingAccount
from nursery_shipping.tools.rate_gateway import (
    ShipEngineGateway,
    build_rate_request,
    normalize_rate_response,
    resolve_carrier_ids,
)


def _response(status: int, body) -> requests.Response:
    r = requests.Response()
    r.status_code = status
    r._content = (body if isinstance(body, str) else json.dumps(body)).encode("utf-8")
    r.encoding = "utf-8"
    return r


class FakeSession:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def request(self, method, url, headers=None, json=None, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json, "timeout": timeout})
        out = self.outcomes.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


RATE_BODY = {
    "rate_response": {
        "rates": [
            {
                "rate_id": "se-r1", "carrier_id": "se-1", "carrier_code": "ups",
                "carrier_friendly_name": "UPS", "service_code": "ups_ground", "service_type": "UPS Ground",
                "shipping_amount": {"currency": "usd", "amount": 8.0},
                "delivery_days": 3, "estimated_delivery_date": "2026-10-22T00:00:00Z",
                "carrier_delivery_days": "3", "guaranteed_service": False,
            },
            {
                "rate_id": "se-r2", "carrier_id": "se-1", "carrier_code": "ups",
                "service_code": "ups_freight", "shipping_amount": None,
            },
            {
                "rate_id": "se-r3", "carrier_id": "se-1", "carrier_code": "ups",
                "carrier_friendly_name": "UPS", "service_code": "ups_next_day_air",
                "service_type": "UPS Next Day Air", "shipping_amount": {"amount": 15.0},
                "delivery_days": 1, "guaranteed_service": True,
            },
        ],
        "errors": [{"carrier_id": "se-9", "carrier_friendly_name": "FedEx", "message": "Account suspended"}],
    }
}


def _gateway(session, account=None):
    account = account or RatingAccount(mode="production", api_key="live_key", is_sandbox=False)
    return ShipEngineGateway(account, base_url="https://rates.test/v1/", timeout=5, session=session)


def test_fetch_rates_normalizes_and_keeps_carrier_errors(origin, destination):
    session = FakeSession(_response(200, RATE_BODY))
    pkgs = [PackageSpec(weight=Weight(value=3.5))]
    quote = _gateway(session).fetch_rates(origin, destination, pkgs, ["se-1"])

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://rates.test/v1/rates"
    assert call["headers"]["API-Key"] == "live_key"
    assert call["timeout"] == 5
    assert call["json"]["rate_options"] == {"carrier_ids": ["se-1"]}
    assert call["json"]["shipment"]["packages"] == [{"weight": {"value": 3.5, "unit": "pound"}}]

    assert [r.rate_id for r in quote.rates] == ["se-r1", "se-r3"]
    ground, air = quote.rates
    assert ground.shipping_amount == 8.0
    assert ground.currency == "usd"
    assert ground.estimated_delivery_date == "2026-10-22T00:00:00Z"
    assert air.currency == "USD"
    assert air.guaranteed_service is True
    assert air.carrier_delivery_days is None
    assert [e.carrier_friendly_name for e in quote.carrier_errors] == ["FedEx"]


def test_http_error_is_provider_error_with_body(origin, destination):
    session = FakeSession(_response(400, '{"errors":[{"message":"bad postal code"}]}'))
    with pytest.raises(RatingProviderError) as ei:
        _gateway(session).fetch_rates(origin, destination, [], ["se-1"])
    assert ei.value.status_code == 400
    assert "bad postal code" in ei.value.details
    assert ei.value.code == "RATING_PROVIDER_ERROR"
    # 4xx is final
    assert len(session.calls) == 1


def test_timeout_is_not_retried(origin, destination):
    session = FakeSession(requests.Timeout("read timed out"), _response(200, RATE_BODY))
    with pytest.raises(RatingProviderError):
        _gateway(session).fetch_rates(origin, destination, [], ["se-1"])
    assert len(session.calls) == 1


def test_connection_failure_retried_once(origin, destination):
    session = FakeSession(requests.ConnectionError("reset"), _response(200, RATE_BODY))
    quote = _gateway(session).fetch_rates(origin, destination, [], ["se-1"])
    assert len(quote.rates) == 2
    assert len(session.calls) == 2


def test_connection_failure_twice_gives_up(origin, destination):
    session = FakeSession(requests.ConnectionError("reset"), requests.ConnectionError("reset"))
    with pytest.raises(RatingProviderError):
        _gateway(session).fetch_rates(origin, destination, [], ["se-1"])


def test_configured_carriers_win_in_production():
    session = FakeSession()
    configured = [
        CarrierAccount(carrier_name="UPS", carrier_id="se-1"),
        CarrierAccount(carrier_name="Old FedEx", carrier_id="se-2", is_enabled=False),
        CarrierAccount(carrier_name="No id yet"),
    ]
    gw = _gateway(session)
    assert resolve_carrier_ids(gw, configured, gw.account) == ["se-1"]
    assert session.calls == []


def test_sandbox_always_discovers():
    carriers = {"carriers": [
        {"carrier_id": "se-t1", "carrier_code": "stamps_com", "friendly_name": "Stamps.com"},
        {"carrier_id": "se-t2", "carrier_code": "ups", "disabled": True},
    ]}
    session = FakeSession(_response(200, carriers))
    sandbox = RatingAccount(mode="sandbox", api_key="TEST_abc", is_sandbox=True)
    gw = _gateway(session, sandbox)
    ids = resolve_carrier_ids(gw, [CarrierAccount(carrier_name="UPS", carrier_id="se-1")], sandbox)
    assert ids == ["se-t1"]
    assert session.calls[0]["method"] == "GET"
    assert session.calls[0]["url"].endswith("/carriers")


def test_list_carriers_normalizes():
    session = FakeSession(_response(200, {"carriers": [{
        "carrier_id": "se-1", "carrier_code": "ups", "nickname": "ShipStation - UPS", "primary": True,
        "has_multi_package_supporting_services": True,
        "services": [{"carrier_id": "se-1", "carrier_code": "ups", "service_code": "ups_ground",
                      "name": "UPS Ground", "domestic": True, "international": False}],
    }]}))
    (c,) = _gateway(session).list_carriers()
    assert c["friendly_name"] == "ups"
    assert c["is_primary"] is True
    assert c["disabled"] is False
    assert c["has_multi_package"] is True
    assert c["services"][0]["service_code"] == "ups_ground"


def test_build_rate_request_defaults_country(origin, destination):
    destination.country_code = ""
    body = build_rate_request(origin, destination, [], ["se-1"])
    assert body["shipment"]["ship_to"]["country_code"] == "US"
    assert body["shipment"]["ship_from"]["city_locality"] == "Atlanta"


def test_empty_rate_response():
    quote = normalize_rate_response({})
    assert quote.rates == [] and quote.carrier_errors == []


def test_null_address_parts_go_out_as_blank(origin, destination):
    destination.address_line2 = None
    destination.company_name = None
    destination.phone = None
    ship_to = build_rate_request(origin, destination, [], ["se-1"])["shipment"]["ship_to"]
    assert ship_to["address_line2"] == ""
    assert ship_to["company_name"] == ""
    assert ship_to["phone"] == ""
    assert ship_to["postal_code"] == "30030"


def test_gateway_closes_its_session():
    closed = []

    class ClosingSession(FakeSession):
        def close(self):
            closed.append(True)

    with _gateway(ClosingSession()) as gw:
        assert gw.session is not None
    assert closed == [True]

# nursery_shipping/tools/rate_gateway.py
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import requests

from nursery_shipping.errors import RatingProviderError
from nursery_shipping.models import (
    Address,
    CarrierAccount,
    CarrierError,
    CarrierRate,
    PackageSpec,
    RateQuote,
)
from nursery_shipping.settings import RatingAccount

log = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.shipengine.com/v1"


class ShipEngineGateway:
    """
    Thin client for the ShipEngine rating API: list carriers, rate a shipment.
    One instance per request; the account is fixed at construction. The
    gateway owns its session: use it as a context manager or call close().
    """

    def __init__(
        self,
        account: RatingAccount,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ):
        self.account = account
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "ShipEngineGateway":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _call(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"API-Key": self.account.api_key, "Content-Type": "application/json"}

        # one retry on a dropped connection; timeouts and HTTP answers are final
        for attempt in (1, 2):
            try:
                resp = self.session.request(method, url, headers=headers, json=payload, timeout=self.timeout)
                break
            except requests.Timeout as e:
                log.error(f"Rating provider timed out after {self.timeout}s: {method} {path}")
                raise RatingProviderError("Rating provider timed out", details=str(e)) from e
            except requests.ConnectionError as e:
                if attempt == 2:
                    log.error(f"Rating provider unreachable: {method} {path}: {e}")
                    raise RatingProviderError("Rating provider unreachable", details=str(e)) from e
                log.warning(f"Connection to rating provider failed, retrying once: {e}")

        if not resp.ok:
            body = resp.text
            log.error(f"Rating provider error {resp.status_code} on {method} {path}: {body}")
            raise RatingProviderError(
                f"Rating provider error: {resp.status_code}",
                status_code=resp.status_code,
                details=body,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise RatingProviderError(
                "Rating provider returned an unreadable response",
                status_code=resp.status_code,
                details=resp.text,
            ) from e

    # ---------- carriers ----------
    def list_carriers(self) -> List[Dict[str, Any]]:
        data = self._call("GET", "/carriers")
        return [normalize_carrier(c) for c in (data.get("carriers") or [])]

    # ---------- rates ----------
    def fetch_rates(
        self,
        origin: Address,
        destination: Address,
        packages: List[PackageSpec],
        carrier_ids: List[str],
    ) -> RateQuote:
        payload = build_rate_request(origin, destination, packages, carrier_ids)
        shipment = payload["shipment"]
        log.info("Rate request: " + json.dumps({
            "carrier_ids": carrier_ids,
            "ship_from": origin.one_line(),
            "ship_to": destination.one_line(),
            "packages": [
                {
                    "weight": p["weight"],
                    "dims": f"{p['dimensions']['length']}x{p['dimensions']['width']}x{p['dimensions']['height']}"
                    if p.get("dimensions") else "none",
                }
                for p in shipment["packages"]
            ],
        }))
        data = self._call("POST", "/rates", payload)
        return normalize_rate_response(data)


def normalize_carrier(c: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "carrier_id": c.get("carrier_id"),
        "carrier_code": c.get("carrier_code"),
        "friendly_name": c.get("friendly_name") or c.get("carrier_code"),
        "nickname": c.get("nickname"),
        "account_number": c.get("account_number"),
        "is_primary": bool(c.get("primary", False)),
        "disabled": bool(c.get("disabled", False)),
        "has_multi_package": bool(c.get("has_multi_package_supporting_services", False)),
        "services": [
            {
                "carrier_id": s.get("carrier_id"),
                "carrier_code": s.get("carrier_code"),
                "service_code": s.get("service_code"),
                "name": s.get("name"),
                "domestic": s.get("domestic"),
                "international": s.get("international"),
            }
            for s in (c.get("services") or [])
        ],
    }


def resolve_carrier_ids(
    gateway: ShipEngineGateway,
    configured: List[CarrierAccount],
    account: RatingAccount,
) -> List[str]:
    """
    Configured carrier ids win; otherwise ask the provider. Sandbox accounts
    always discover, since stored ids belong to the production account.
    """
    if not account.is_sandbox:
        ids = [c.carrier_id for c in configured if c.is_enabled and c.carrier_id]
        if ids:
            log.info(
                f"Using {len(ids)} configured carrier(s): "
                + ", ".join(f"{c.carrier_name} ({c.carrier_id})" for c in configured if c.is_enabled and c.carrier_id)
            )
            return ids

    if account.is_sandbox:
        log.info("Sandbox account: discovering carriers from the provider (skipping configured ids)")
    else:
        log.info("No configured carriers with provider ids, falling back to provider discovery")

    carriers = [c for c in gateway.list_carriers() if not c["disabled"] and c["carrier_id"]]
    log.info(
        f"Provider returned {len(carriers)} active carrier(s): "
        + ", ".join(f"{c['friendly_name']} ({c['carrier_id']})" for c in carriers)
    )
    return [c["carrier_id"] for c in carriers]


def _address_payload(a: Address) -> Dict[str, str]:
    # the provider wants strings everywhere; blanks go out as ""
    return {
        "name": a.name or "",
        "company_name": a.company_name or "",
        "phone": a.phone or "",
        "address_line1": a.address_line1 or "",
        "address_line2": a.address_line2 or "",
        "city_locality": a.city_locality or "",
        "state_province": a.state_province or "",
        "postal_code": a.postal_code or "",
        "country_code": a.country_code or "US",
    }


def build_rate_request(
    origin: Address,
    destination: Address,
    packages: List[PackageSpec],
    carrier_ids: List[str],
) -> Dict[str, Any]:
    """One shipment, all packages, rated against the resolved carriers."""
    return {
        "rate_options": {"carrier_ids": list(carrier_ids)},
        "shipment": {
            "ship_from": _address_payload(origin),
            "ship_to": _address_payload(destination),
            "packages": [p.model_dump(exclude_none=True) for p in packages],
        },
    }


def normalize_rate(r: Dict[str, Any]) -> CarrierRate:
    amt = r["shipping_amount"]
    return CarrierRate(
        rate_id=r.get("rate_id") or "",
        carrier_id=r.get("carrier_id") or "",
        carrier_code=r.get("carrier_code") or "",
        carrier_friendly_name=r.get("carrier_friendly_name") or "",
        service_code=r.get("service_code") or "",
        service_type=r.get("service_type") or "",
        shipping_amount=float(amt["amount"]),
        currency=amt.get("currency") or "USD",
        delivery_days=r.get("delivery_days") or None,
        estimated_delivery_date=r.get("estimated_delivery_date") or None,
        carrier_delivery_days=r.get("carrier_delivery_days") or None,
        guaranteed_service=bool(r.get("guaranteed_service") or False),
    )


def normalize_rate_response(data: Dict[str, Any]) -> RateQuote:
    """Map the provider's rate_response into uniform rates + carrier errors."""
    body = data.get("rate_response") or {}

    errors: List[CarrierError] = []
    for e in body.get("errors") or []:
        err = CarrierError(
            carrier_id=e.get("carrier_id") or "unknown",
            carrier_friendly_name=e.get("carrier_friendly_name") or "Unknown Carrier",
            message=e.get("message") or "Unknown error",
        )
        log.warning(f"Rate calculation warning: {err.carrier_friendly_name} - {err.message}")
        errors.append(err)

    rates: List[CarrierRate] = []
    for r in body.get("rates") or []:
        if (r.get("shipping_amount") or {}).get("amount") is None:
            continue
        rates.append(normalize_rate(r))

    return RateQuote(rates=rates, carrier_errors=errors)

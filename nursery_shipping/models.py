"""
Shipping data models.

Configuration entities (package templates, zones, zone rules, carriers, markup,
forced service) are long-lived and read-only to the engine. Everything else is
built and thrown away per rate request.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator
from typing_extensions import Annotated


# ----------------------------
# addresses & packages
# ----------------------------
class Address(BaseModel):
    # storefronts send null for the parts a customer left blank
    name: Optional[str] = None
    company_name: Optional[str] = None
    phone: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city_locality: Optional[str] = None
    state_province: Optional[str] = None
    postal_code: Optional[str] = None
    country_code: Optional[str] = "US"

    @property
    def region(self) -> str:
        return (self.state_province or "").strip().upper()

    def missing_fields(self) -> List[str]:
        required = ["address_line1", "city_locality", "state_province", "postal_code"]
        return [f for f in required if not (getattr(self, f) or "").strip()]

    def one_line(self) -> str:
        return f"{self.city_locality or ''}, {self.state_province or ''} {self.postal_code or ''}"


class Weight(BaseModel):
    value: float
    unit: Literal["pound", "ounce", "gram", "kilogram"] = "pound"


class Dimensions(BaseModel):
    length: float
    width: float
    height: float
    unit: Literal["inch", "centimeter"] = "inch"


class PackageSpec(BaseModel):
    """A physical package as the rating provider sees it."""
    weight: Weight
    dimensions: Optional[Dimensions] = None


class PackageTemplate(BaseModel):
    """Administrator-configured box. Quantity ranges may overlap."""
    id: Optional[str] = None
    name: str
    length: float
    width: float
    height: float
    empty_weight: float = Field(default=0.0, ge=0)   # pounds
    min_quantity: int = Field(..., ge=0)
    max_quantity: int = Field(..., ge=1)
    is_default: bool = False
    is_active: bool = True

    @model_validator(mode="after")
    def _range_in_order(self) -> "PackageTemplate":
        if self.min_quantity > self.max_quantity:
            raise ValueError(
                f"package template {self.name!r}: min_quantity {self.min_quantity} "
                f"exceeds max_quantity {self.max_quantity}"
            )
        return self

    def dimensions(self) -> Dimensions:
        return Dimensions(length=self.length, width=self.width, height=self.height)


class PlannedPackage(BaseModel):
    name: str
    weight: Weight
    dimensions: Dimensions
    item_count: int

    def as_spec(self) -> PackageSpec:
        return PackageSpec(weight=self.weight, dimensions=self.dimensions)


class PackagePlan(BaseModel):
    packages: List[PlannedPackage] = Field(default_factory=list)
    summary: str

    @property
    def total_packages(self) -> int:
        return len(self.packages)

    @property
    def total_items(self) -> int:
        return sum(p.item_count for p in self.packages)

    @property
    def total_weight(self) -> float:
        # package weights are already rounded to cents; keep the sum there too
        return round(sum(p.weight.value for p in self.packages), 2)

    def as_package_specs(self) -> List[PackageSpec]:
        return [p.as_spec() for p in self.packages]

    def breakdown(self) -> Dict[str, Any]:
        return {
            "total_packages": self.total_packages,
            "total_weight": self.total_weight,
            "packages": [p.model_dump() for p in self.packages],
            "summary": self.summary,
        }


# ----------------------------
# zones
# ----------------------------
class ZoneStatus(str, Enum):
    ALLOWED = "allowed"
    BLOCKED = "blocked"
    CONDITIONAL = "conditional"


class ZoneConditions(BaseModel):
    required_service: Optional[str] = None
    blocked_months: List[int] = Field(default_factory=list)   # 1-12
    min_order_value: Optional[float] = None
    max_transit_days: Optional[int] = None


class ZoneRecord(BaseModel):
    state_code: str
    state_name: Optional[str] = None
    status: ZoneStatus = ZoneStatus.ALLOWED
    conditions: Optional[ZoneConditions] = None
    customer_message: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.state_name or self.state_code


class _RuleBase(BaseModel):
    id: Optional[str] = None
    name: str = ""
    priority: int = 100
    is_active: bool = True
    # scope filters; empty means "every"
    states: List[str] = Field(default_factory=list)
    months: List[int] = Field(default_factory=list)
    effective_start: Optional[datetime] = None
    effective_end: Optional[datetime] = None


class SeasonalBlockRule(_RuleBase):
    rule_type: Literal["seasonal_block"] = "seasonal_block"
    block_message: Optional[str] = None


class ServiceRequirementRule(_RuleBase):
    rule_type: Literal["service_requirement"] = "service_requirement"
    required_services: List[str] = Field(default_factory=list)


class TransitLimitRule(_RuleBase):
    rule_type: Literal["transit_limit"] = "transit_limit"
    max_transit_days: int


class SurchargeRule(_RuleBase):
    rule_type: Literal["surcharge"] = "surcharge"
    surcharge_amount: float = 0.0
    surcharge_percent: float = 0.0


ZoneRule = Annotated[
    Union[SeasonalBlockRule, ServiceRequirementRule, TransitLimitRule, SurchargeRule],
    Field(discriminator="rule_type"),
]


class ZoneVerdict(BaseModel):
    allowed: bool = True
    status: ZoneStatus = ZoneStatus.ALLOWED
    message: Optional[str] = None
    conditions: Optional[ZoneConditions] = None
    max_transit_days: Optional[int] = None
    required_services: List[str] = Field(default_factory=list)
    surcharge_amount: Optional[float] = None
    surcharge_percent: Optional[float] = None

    def zone_info(self) -> Optional[Dict[str, Any]]:
        """Echoed to the customer only when the zone is not plainly allowed."""
        if self.status == ZoneStatus.ALLOWED:
            return None
        info: Dict[str, Any] = {"status": self.status.value}
        if self.message:
            info["message"] = self.message
        if self.conditions is not None:
            info["conditions"] = self.conditions.model_dump(exclude_none=True)
        return info


# ----------------------------
# carriers & rates
# ----------------------------
class CarrierAccount(BaseModel):
    """Row of the carrier configuration store."""
    carrier_name: str
    carrier_id: Optional[str] = None    # provider-side id; environment specific
    is_enabled: bool = True


class CarrierRate(BaseModel):
    rate_id: str
    carrier_id: str
    carrier_code: str = ""
    carrier_friendly_name: str = ""
    service_code: str = ""
    service_type: str = ""
    shipping_amount: float
    currency: str = "USD"
    delivery_days: Optional[int] = None
    estimated_delivery_date: Optional[str] = None
    carrier_delivery_days: Optional[str] = None
    guaranteed_service: bool = False


class CarrierError(BaseModel):
    carrier_id: str = "unknown"
    carrier_friendly_name: str = "Unknown Carrier"
    message: str = "Unknown error"


class RateQuote(BaseModel):
    """Normalized provider answer: usable rates plus non-fatal carrier errors."""
    rates: List[CarrierRate] = Field(default_factory=list)
    carrier_errors: List[CarrierError] = Field(default_factory=list)


# ----------------------------
# pricing policy
# ----------------------------
class MarkupPolicy(BaseModel):
    type: Literal["percentage", "fixed"] = "percentage"
    percent: float = 0.0
    fixed_amount: float = 0.0

    def describe(self) -> Optional[Dict[str, Any]]:
        if self.type == "fixed" and self.fixed_amount > 0:
            return {"type": "fixed", "amount": self.fixed_amount}
        if self.type == "percentage" and self.percent > 0:
            return {"type": "percentage", "percent": self.percent}
        return None


class ForcedServiceOverride(BaseModel):
    service_code: str = ""
    states: List[str] = Field(default_factory=list)


class ForcedServicePolicy(BaseModel):
    default: Optional[str] = None
    overrides: ForcedServiceOverride = Field(default_factory=ForcedServiceOverride)

    def service_for(self, region_code: str) -> Optional[str]:
        region = (region_code or "").upper()
        o = self.overrides
        if o.service_code and region in [s.upper() for s in o.states]:
            return o.service_code
        return self.default


# ----------------------------
# inbound request
# ----------------------------
class OrderItem(BaseModel):
    quantity: int = 0
    weight_per_item: Optional[float] = None   # pounds


class RateRequest(BaseModel):
    destination: Address
    packages: Optional[List[PackageSpec]] = None
    order_items: Optional[List[OrderItem]] = None

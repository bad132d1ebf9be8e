"""Read-only configuration snapshot for the rate engine.

One canonical JSON document holds everything the engine reads: origin address,
default package, package templates, zones, zone rules, carrier accounts, markup,
forced service and the service allow-list. It is loaded once per request.
"""
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import MissingConfigError
from .models import (
    Address,
    CarrierAccount,
    ForcedServicePolicy,
    MarkupPolicy,
    PackageSpec,
    PackageTemplate,
    ZoneRecord,
    ZoneRule,
)

log = logging.getLogger(__name__)


class ShippingConfig(BaseModel):
    origin: Optional[Address] = None
    default_package: Optional[PackageSpec] = None
    package_templates: List[PackageTemplate] = Field(default_factory=list)
    zones: List[ZoneRecord] = Field(default_factory=list)
    zone_rules: List[ZoneRule] = Field(default_factory=list)
    carriers: List[CarrierAccount] = Field(default_factory=list)
    markup: MarkupPolicy = Field(default_factory=MarkupPolicy)
    forced_service: Optional[ForcedServicePolicy] = None
    allowed_service_codes: List[str] = Field(default_factory=list)

    def zone_index(self) -> Dict[str, ZoneRecord]:
        return {z.state_code.upper(): z for z in self.zones}

    def active_templates(self) -> List[PackageTemplate]:
        return sorted((t for t in self.package_templates if t.is_active), key=lambda t: t.min_quantity)

    def enabled_carriers(self) -> List[CarrierAccount]:
        return [c for c in self.carriers if c.is_enabled]


def load_config(path: str | Path) -> ShippingConfig:
    """Parse the configuration document at ``path``."""
    p = Path(path)
    if not p.is_file():
        raise MissingConfigError(f"Shipping configuration not found at {p}.")
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise MissingConfigError(f"Shipping configuration at {p} could not be read.", details=str(e)) from e
    except json.JSONDecodeError as e:
        raise MissingConfigError(f"Shipping configuration at {p} is not valid JSON.", details=str(e)) from e
    try:
        cfg = ShippingConfig.model_validate(raw)
    except ValidationError as e:
        raise MissingConfigError(f"Shipping configuration at {p} is invalid.", details=str(e)) from e

    log.debug(
        f"Loaded shipping config from {p}: {len(cfg.zones)} zone(s), {len(cfg.zone_rules)} rule(s), "
        f"{len(cfg.package_templates)} template(s), {len(cfg.carriers)} carrier(s)"
    )
    return cfg

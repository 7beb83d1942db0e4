"""
bom_models.py

Data models for BOM explosion.

Master data (Item, BomMaster, BomComponent, PricingRecord) is parsed from
loosely typed records (dicts, DataFrame rows, JSON text) into strict types
here, at the edge. Nothing past this module sees an untyped map.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd


# ---------- Enumerations ----------

class ItemType(str, Enum):
    RAW_MATERIAL = "raw_material"
    WORK_IN_PROGRESS = "work_in_progress"
    CONSUMABLE = "consumable"
    FINISHED_GOOD = "finished_good"

    @property
    def is_stocked_leaf(self) -> bool:
        """Raw materials and consumables are never exploded further."""
        return self in (ItemType.RAW_MATERIAL, ItemType.CONSUMABLE)


class ApprovalStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"
    REJECTED = "rejected"


class ConsumptionType(str, Enum):
    DIRECT = "direct"
    INDIRECT = "indirect"
    BYPRODUCT = "byproduct"


class Severity(str, Enum):
    NONE = "none"
    MINOR = "minor"
    CRITICAL = "critical"


class SuggestedAction(str, Enum):
    ORDER = "order"
    SUBSTITUTE = "substitute"
    ESCALATE = "escalate"


# ---------- Parsing helpers ----------

def is_missing(value: Any) -> bool:
    """True for None, NaN/NaT and blank strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def to_decimal(value: Any, name: str, default: Optional[Decimal] = None) -> Optional[Decimal]:
    if is_missing(value):
        return default
    try:
        # Handle European decimal "," if present
        result = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, ValueError):
        raise ValueError(f"{name} is not a number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"{name} is not a finite number: {value!r}")
    return result


def to_bool(value: Any, default: bool = False) -> bool:
    if is_missing(value):
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "y", "t"):
            return True
        if text in ("0", "false", "no", "n", "f"):
            return False
        raise ValueError(f"Not a boolean: {value!r}")
    return bool(value)


def to_date(value: Any, name: str) -> Optional[date]:
    if is_missing(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValueError(f"{name} is not an ISO date: {value!r}")


def to_int(value: Any, name: str) -> Optional[int]:
    if is_missing(value):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        raise ValueError(f"{name} is not an integer: {value!r}")


def to_text(value: Any) -> Optional[str]:
    if is_missing(value):
        return None
    return str(value).strip()


def to_code_list(value: Any) -> List[str]:
    """
    Parse an ordered list of item codes.

    Accepts a list, JSON array text (as exported from the database) or
    comma/semicolon separated text. Order is kept, duplicates dropped.
    """
    if is_missing(value):
        return []
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            try:
                value = json.loads(text)
            except json.JSONDecodeError:
                raise ValueError(f"substitute_items is not valid JSON: {value!r}")
        else:
            value = text.replace(";", ",").split(",")
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"substitute_items must be a list: {value!r}")
    codes = [str(code).strip() for code in value if not is_missing(code)]
    return list(dict.fromkeys(codes))


def first_present(record: Mapping[str, Any], *keys: str) -> Any:
    """Value of the first key that is present and not missing (column aliases)."""
    for key in keys:
        value = record.get(key)
        if not is_missing(value):
            return value
    return None


def _enum(enum_cls, value: Any, name: str, default=None):
    if is_missing(value):
        if default is None:
            raise ValueError(f"{name} is required")
        return default
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValueError(f"{name} must be one of {allowed}, got {value!r}")


def _percentage(value: Any, name: str, default: Optional[Decimal]) -> Optional[Decimal]:
    pct = to_decimal(value, name, default)
    if pct is not None and not Decimal("0") <= pct <= Decimal("100"):
        raise ValueError(f"{name} must be between 0 and 100, got {pct}")
    return pct


def normalize_uom(uom: str) -> str:
    return str(uom).strip().upper()


# ---------- Master data ----------

@dataclass(frozen=True)
class Item:
    """An item master record."""
    item_code: str
    item_name: str
    unit_of_measure: str
    item_type: ItemType
    standard_cost: Optional[Decimal] = None
    category: Optional[str] = None
    display_precision: Optional[int] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Item":
        code = to_text(record.get("item_code"))
        if not code:
            raise ValueError("item_code is required")
        uom = to_text(first_present(record, "unit_of_measure", "uom"))
        if not uom:
            raise ValueError(f"unit_of_measure is required for item {code}")
        return cls(
            item_code=code,
            item_name=to_text(record.get("item_name")) or code,
            unit_of_measure=normalize_uom(uom),
            item_type=_enum(ItemType, record.get("item_type"), f"item_type of {code}"),
            standard_cost=to_decimal(record.get("standard_cost"), "standard_cost"),
            category=to_text(record.get("category")),
            display_precision=to_int(record.get("display_precision"), "display_precision"),
        )


@dataclass(frozen=True)
class BomMaster:
    """Header of one version of an item's bill of materials."""
    id: str
    item_code: str
    version: str
    effective_from: date
    effective_until: Optional[date] = None
    approval_status: ApprovalStatus = ApprovalStatus.DRAFT
    is_active: bool = True
    yield_percentage: Decimal = Decimal("100")
    scrap_percentage: Decimal = Decimal("0")
    notes: Optional[str] = None

    def is_effective_on(self, as_of_date: date) -> bool:
        if self.effective_from > as_of_date:
            return False
        return self.effective_until is None or self.effective_until >= as_of_date

    def is_candidate_on(self, as_of_date: date) -> bool:
        """Approved, flagged active and inside its date range."""
        return (self.is_active
                and self.approval_status == ApprovalStatus.APPROVED
                and self.is_effective_on(as_of_date))

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "BomMaster":
        item_code = to_text(record.get("item_code"))
        if not item_code:
            raise ValueError("item_code is required for a BOM master")
        version = to_text(first_present(record, "version", "bom_version")) or "1"
        bom_id = to_text(first_present(record, "id", "bom_master_id")) or f"{item_code}@{version}"
        effective_from = to_date(record.get("effective_from"), "effective_from")
        if effective_from is None:
            raise ValueError(f"effective_from is required for BOM {bom_id}")
        effective_until = to_date(record.get("effective_until"), "effective_until")
        if effective_until is not None and effective_until < effective_from:
            raise ValueError(f"BOM {bom_id} ends before it starts")
        return cls(
            id=bom_id,
            item_code=item_code,
            version=version,
            effective_from=effective_from,
            effective_until=effective_until,
            approval_status=_enum(ApprovalStatus, record.get("approval_status"),
                                  "approval_status", ApprovalStatus.DRAFT),
            is_active=to_bool(record.get("is_active"), True),
            yield_percentage=_percentage(record.get("yield_percentage"), "yield_percentage",
                                         Decimal("100")),
            scrap_percentage=_percentage(record.get("scrap_percentage"), "scrap_percentage",
                                         Decimal("0")),
            notes=to_text(first_present(record, "notes", "bom_notes")),
        )


@dataclass(frozen=True)
class BomComponent:
    """A line within a BomMaster."""
    bom_master_id: str
    component_item_code: str
    quantity_per_unit: Decimal
    uom: str
    waste_percentage: Optional[Decimal] = None
    consumption_type: ConsumptionType = ConsumptionType.DIRECT
    is_critical: bool = False
    stage_id: Optional[str] = None
    stage_name: Optional[str] = None
    stage_sequence: Optional[int] = None
    substitute_items: List[str] = field(default_factory=list)
    notes: Optional[str] = None

    @property
    def stage_key(self) -> Optional[str]:
        """Stage identifier contributed to requirements (id, else sequence)."""
        if self.stage_id:
            return self.stage_id
        if self.stage_sequence is not None:
            return str(self.stage_sequence)
        return None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "BomComponent":
        bom_id = to_text(record.get("bom_master_id"))
        code = to_text(record.get("component_item_code"))
        if not bom_id or not code:
            raise ValueError("bom_master_id and component_item_code are required")
        qty = to_decimal(record.get("quantity_per_unit"), f"quantity_per_unit of {code}")
        if qty is None or qty <= 0:
            raise ValueError(f"quantity_per_unit of {code} must be positive, got {qty}")
        uom = to_text(record.get("uom"))
        if not uom:
            raise ValueError(f"uom is required for component {code}")
        substitutes = to_code_list(record.get("substitute_items"))
        if code in substitutes:
            raise ValueError(f"Component {code} lists itself as a substitute")
        return cls(
            bom_master_id=bom_id,
            component_item_code=code,
            quantity_per_unit=qty,
            uom=normalize_uom(uom),
            waste_percentage=_percentage(record.get("waste_percentage"),
                                         f"waste_percentage of {code}", None),
            consumption_type=_enum(ConsumptionType, record.get("consumption_type"),
                                   "consumption_type", ConsumptionType.DIRECT),
            is_critical=to_bool(record.get("is_critical")),
            stage_id=to_text(record.get("stage_id")),
            stage_name=to_text(record.get("stage_name")),
            stage_sequence=to_int(record.get("stage_sequence"), "stage_sequence"),
            substitute_items=substitutes,
            notes=to_text(first_present(record, "notes", "component_notes")),
        )


@dataclass(frozen=True)
class PricingRecord:
    """Valuation fields for one item from the pricing master."""
    item_code: str
    standard_cost: Optional[Decimal] = None
    weighted_average: Optional[Decimal] = None
    last_grn_price: Optional[Decimal] = None
    price_tolerance_percentage: Optional[Decimal] = None

    def cost_for(self, policy: str) -> Optional[Decimal]:
        return getattr(self, policy)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "PricingRecord":
        code = to_text(record.get("item_code"))
        if not code:
            raise ValueError("item_code is required for a pricing record")
        return cls(
            item_code=code,
            standard_cost=to_decimal(record.get("standard_cost"), "standard_cost"),
            weighted_average=to_decimal(
                first_present(record, "weighted_average", "current_weighted_avg"),
                "weighted_average"),
            last_grn_price=to_decimal(record.get("last_grn_price"), "last_grn_price"),
            price_tolerance_percentage=to_decimal(record.get("price_tolerance_percentage"),
                                                  "price_tolerance_percentage"),
        )


# ---------- Computed results ----------

def round_for_display(quantity: Decimal, precision: int) -> Decimal:
    return quantity.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_UP)


@dataclass
class ExplosionResult:
    """One consolidated requirement row per resolved leaf item."""
    item_code: str
    item_name: str
    uom: str
    item_type: ItemType
    total_quantity_required: Decimal = Decimal("0")
    contributing_stage_ids: List[str] = field(default_factory=list)
    stage_names: Dict[str, str] = field(default_factory=dict)
    stage_quantities: Dict[Optional[str], Decimal] = field(default_factory=dict)
    consumption_types: List[ConsumptionType] = field(default_factory=list)
    is_critical: bool = False
    substitute_items: List[str] = field(default_factory=list)
    unit_cost: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    display_precision: int = 2

    @property
    def display_quantity(self) -> Decimal:
        return round_for_display(self.total_quantity_required, self.display_precision)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "item_code": self.item_code,
            "item_name": self.item_name,
            "uom": self.uom,
            "item_type": self.item_type.value,
            "total_quantity_required": self.display_quantity,
            "contributing_stage_ids": ", ".join(self.contributing_stage_ids),
            "consumption_types": ", ".join(c.value for c in self.consumption_types),
            "is_critical": self.is_critical,
            "substitute_items": ", ".join(self.substitute_items),
            "unit_cost": self.unit_cost,
            "total_cost": self.total_cost,
        }


@dataclass(frozen=True)
class ShortageRecord:
    """An explosion row paired with available stock."""
    item_code: str
    item_name: str
    uom: str
    required_quantity: Decimal
    available_quantity: Decimal
    shortage_quantity: Decimal
    severity: Severity
    suggested_action: Optional[SuggestedAction] = None
    substitute_item_code: Optional[str] = None
    is_critical: bool = False
    display_precision: int = 2

    @property
    def net_requirement(self) -> Decimal:
        return self.shortage_quantity


@dataclass(frozen=True)
class StageRequirement:
    """Requirement of one item within one production stage."""
    stage_id: str
    stage_name: Optional[str]
    item_code: str
    quantity: Decimal

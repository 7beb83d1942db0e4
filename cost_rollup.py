"""
cost_rollup.py

Material cost of an explosion under a valuation policy, and price variance
checks against the pricing master.
"""

import dataclasses
import logging
import warnings
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import pandas as pd

from bom_errors import CostUnavailableWarning
from bom_models import ExplosionResult, round_for_display, to_decimal
from config import STANDARD_COST, VALUATION_POLICIES, EngineConfig
from master_data import MasterDataSource

logger = logging.getLogger(__name__)

WITHIN_TOLERANCE = "within_tolerance"
LOW = "low"
MEDIUM = "medium"
HIGH = "high"


@dataclass
class CostRollupResult:
    lines: List[ExplosionResult]
    unit_cost: Decimal
    total_cost: Decimal
    policy: str
    quantity: Decimal
    warnings: List[CostUnavailableWarning] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        """False when any line was valued at zero for lack of a cost."""
        return not self.warnings


@dataclass(frozen=True)
class PricingVariance:
    item_code: str
    master_price: Decimal
    new_price: Decimal
    variance_percentage: Decimal  # signed; positive when the new price is higher
    tolerance_percentage: Decimal
    severity: str

    @property
    def is_within_tolerance(self) -> bool:
        return self.severity == WITHIN_TOLERANCE


class CostRollup:
    """
    Values explosion results from the pricing master.

    standard_cost falls back to the item master's standard cost when the
    pricing master has none. A missing cost never aborts the rollup: the
    line is valued at zero, and a CostUnavailableWarning is both issued
    through the warnings module and attached to the result.
    """

    def __init__(self, source: MasterDataSource, config: EngineConfig = EngineConfig()):
        self.source = source
        self.config = config

    def rollup_cost(self, results: Iterable[ExplosionResult], policy: Optional[str] = None,
                    quantity=1) -> CostRollupResult:
        """
        Args:
            results: Explosion rows to value
            policy: standard_cost, weighted_average or last_grn_price
                    (default: the organisation's valuation policy)
            quantity: Finished quantity the results were exploded for; the
                      unit cost is the total divided by it

        Returns:
            CostRollupResult with costed copies of the rows
        """
        policy = policy or self.config.valuation_policy
        if policy not in VALUATION_POLICIES:
            raise ValueError(f"Unknown valuation policy: {policy!r}")
        quantity = to_decimal(quantity, "quantity")
        if quantity is None or quantity <= 0:
            raise ValueError(f"Quantity must be positive, got {quantity}")

        results = list(results)
        costs = self._unit_costs([r.item_code for r in results], policy)

        lines = []
        unavailable = []
        total = Decimal("0")
        for result in results:
            unit_cost = costs.get(result.item_code)
            if unit_cost is None:
                warning = CostUnavailableWarning(result.item_code, policy)
                logger.warning(str(warning))
                warnings.warn(warning, stacklevel=2)
                unavailable.append(warning)
                unit_cost = Decimal("0")
            line_cost = result.total_quantity_required * unit_cost
            total += line_cost
            lines.append(dataclasses.replace(
                result,
                unit_cost=unit_cost,
                total_cost=line_cost,
                contributing_stage_ids=list(result.contributing_stage_ids),
                stage_names=dict(result.stage_names),
                stage_quantities=dict(result.stage_quantities),
                consumption_types=list(result.consumption_types),
                substitute_items=list(result.substitute_items),
            ))

        logger.info(f"Cost rollup ({policy}): total {total} over {len(lines)} line(s), "
                    f"{len(unavailable)} without cost")
        return CostRollupResult(lines=lines, unit_cost=total / quantity, total_cost=total,
                                policy=policy, quantity=quantity, warnings=unavailable)

    def detect_pricing_variance(self, item_code: str, new_price) -> Optional[PricingVariance]:
        """
        Compare a new (e.g. goods-receipt) price with the item's standard cost.

        Severity bands are at 1x, 2x and 3x the item's price tolerance.
        Returns None when the item has no standard cost to compare against.
        """
        new_price = to_decimal(new_price, "new_price")
        if new_price is None or new_price < 0:
            raise ValueError(f"new_price must be a non-negative number, got {new_price}")

        master_price = self._unit_costs([item_code], STANDARD_COST).get(item_code)
        if not master_price:
            logger.warning(f"No standard cost for {item_code}; price variance not checked")
            return None

        pricing = self.source.get_pricing([item_code]).get(item_code)
        tolerance = None
        if pricing is not None:
            tolerance = pricing.price_tolerance_percentage
        if tolerance is None:
            tolerance = Decimal(str(self.config.default_price_tolerance))

        variance = (new_price - master_price) / master_price * 100
        magnitude = abs(variance)
        if magnitude <= tolerance:
            severity = WITHIN_TOLERANCE
        elif magnitude > tolerance * 3:
            severity = HIGH
        elif magnitude > tolerance * 2:
            severity = MEDIUM
        else:
            severity = LOW

        if severity != WITHIN_TOLERANCE:
            logger.warning(f"Price variance {variance:.2f}% for {item_code} "
                           f"(master {master_price}, new {new_price}, tolerance {tolerance}%)")
        return PricingVariance(item_code=item_code, master_price=master_price, new_price=new_price,
                               variance_percentage=variance, tolerance_percentage=tolerance,
                               severity=severity)

    def _unit_costs(self, item_codes: List[str], policy: str) -> Dict[str, Decimal]:
        pricing = self.source.get_pricing(item_codes)
        costs = {}
        for code in item_codes:
            record = pricing.get(code)
            cost = record.cost_for(policy) if record is not None else None
            if cost is not None:
                costs[code] = cost
        if policy == STANDARD_COST:
            missing = [code for code in item_codes if code not in costs]
            if missing:
                for code, item in self.source.get_items(missing).items():
                    if item.standard_cost is not None:
                        costs[code] = item.standard_cost
        return costs


def rollup_to_dataframe(rollup: CostRollupResult) -> pd.DataFrame:
    """Costed lines with quantities and amounts rounded for display."""
    rows = []
    for line in rollup.lines:
        rows.append({
            "item_code": line.item_code,
            "item_name": line.item_name,
            "uom": line.uom,
            "total_quantity_required": line.display_quantity,
            "unit_cost": line.unit_cost,
            "total_cost": round_for_display(line.total_cost, 2),
        })
    return pd.DataFrame(rows, columns=["item_code", "item_name", "uom", "total_quantity_required",
                                       "unit_cost", "total_cost"])

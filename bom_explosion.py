"""
BOM (Bill of Materials) Explosion Engine

Expands a finished item's bill of materials into a flat, consolidated list
of the raw materials and consumables needed to produce a given quantity,
applying waste allowances and unit conversions level by level.
"""

import logging
from datetime import date
from decimal import Decimal, localcontext
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from bom_graph import BomGraph, BomNode
from bom_models import (ConsumptionType, ExplosionResult, StageRequirement, round_for_display,
                        to_decimal)
from config import EngineConfig
from item_catalog import ItemCatalog
from master_data import MasterDataSource
from unit_converter import UnitConverter

logger = logging.getLogger(__name__)

# Significant digits for intermediate quantities (decimal128)
QUANTITY_PRECISION = 34
UNASSIGNED_STAGE = "unassigned"

RESULT_COLUMNS = [
    "item_code", "item_name", "uom", "item_type", "total_quantity_required",
    "contributing_stage_ids", "consumption_types", "is_critical", "substitute_items",
    "unit_cost", "total_cost",
]


class BomExplosionEngine:
    """
    Explodes BOMs into consolidated material requirements.

    Each call builds its own graph and result set; the engine holds no
    per-call state, so concurrent calls are independent.
    """

    def __init__(self, catalog: ItemCatalog, converter: UnitConverter,
                 config: Optional[EngineConfig] = None):
        self.catalog = catalog
        self.converter = converter
        self.config = config or catalog.config

    @classmethod
    def from_source(cls, source: MasterDataSource,
                    config: EngineConfig = EngineConfig()) -> "BomExplosionEngine":
        """Wire a catalog and the organisation's unit converter over one source."""
        return cls(ItemCatalog(source, config),
                   UnitConverter.for_organization(source, config.organization_id),
                   config)

    def explode(self, item_code: str, quantity, as_of_date: Optional[date] = None) -> List[ExplosionResult]:
        """
        Explode one item into its leaf material requirements.

        Args:
            item_code: The item to produce; it must have an active BOM
            quantity: Quantity to produce, in the item's stock unit
            as_of_date: Date used to pick BOM versions (default: today)

        Returns:
            One ExplosionResult per distinct raw material / consumable, in
            the order first reached.
        """
        return self.explode_batch([(item_code, quantity)], as_of_date)

    def explode_batch(self, orders: Iterable[Tuple[str, object]],
                      as_of_date: Optional[date] = None) -> List[ExplosionResult]:
        """
        Explode several (item_code, quantity) roots into one consolidated list.

        A component reached from several roots or paths gets a single summed row.
        Any structural error aborts the whole batch.
        """
        as_of_date = as_of_date or date.today()
        orders = [(code, _positive_quantity(code, qty)) for code, qty in orders]
        if not orders:
            return []

        codes = list(dict.fromkeys(code for code, _ in orders))
        logger.info(f"Exploding {len(orders)} order(s) as of {as_of_date.isoformat()}: "
                    + ", ".join(f"{code} x {qty}" for code, qty in orders))
        graphs = {
            graph.item_code: graph
            for graph in BomGraph.build_many(self.catalog, self.converter, codes,
                                             as_of_date, self.config)
        }

        rows: Dict[str, ExplosionResult] = {}
        with localcontext() as ctx:
            ctx.prec = QUANTITY_PRECISION
            for code, qty in orders:
                self._accumulate(graphs[code].root, qty, rows)

        logger.info(f"Explosion produced {len(rows)} requirement row(s)")
        return list(rows.values())

    def get_summary(self, item_code: str, quantity,
                    as_of_date: Optional[date] = None) -> Dict[str, Decimal]:
        """Map of leaf item code to total quantity required."""
        return {r.item_code: r.total_quantity_required
                for r in self.explode(item_code, quantity, as_of_date)}

    def display_topology(self, item_code: str, quantity=1,
                         as_of_date: Optional[date] = None) -> str:
        """
        Display the topology of an item in a tree-like format.

        Args:
            item_code: The item to display
            quantity: The quantity of this item

        Returns:
            String representation of the BOM topology with the effective
            quantity of every node
        """
        as_of_date = as_of_date or date.today()
        quantity = _positive_quantity(item_code, quantity)
        graph = BomGraph.build(self.catalog, self.converter, item_code, as_of_date, self.config)

        lines = []
        lines.append("=" * 80)
        lines.append(f"BOM EXPLOSION FOR: {item_code} (Quantity: {quantity}) as of {as_of_date.isoformat()}")
        lines.append("=" * 80)
        lines.append("")

        with localcontext() as ctx:
            ctx.prec = QUANTITY_PRECISION
            for node, qty in self._walk_quantities(graph.root, quantity):
                indent = "  " * node.level
                prefix = "└─ " if node.level > 0 else ""
                precision = self._precision(node.item)
                label = "WIP" if node.is_expanded and node.level > 0 else node.item.item_type.value
                if node.component is not None and node.component.consumption_type == ConsumptionType.BYPRODUCT:
                    label += ", byproduct"
                lines.append(f"{indent}{prefix}{node.item_code} "
                             f"(Qty: {round_for_display(qty, precision)} {node.item.unit_of_measure}) [{label}]")

        lines.append("")
        lines.append("=" * 80)

        return "\n".join(lines)

    # --- internals ---

    def _precision(self, item) -> int:
        if item.display_precision is not None:
            return item.display_precision
        return self.config.display_precision

    def _effective_quantity(self, node: BomNode, parent_multiplier: Decimal) -> Decimal:
        line = node.component
        waste = line.waste_percentage
        if waste is None:
            waste = Decimal(str(self.config.default_waste_percentage))
        effective = line.quantity_per_unit * parent_multiplier * (1 + waste / 100)
        return effective * node.conversion_factor

    def _accumulate(self, node: BomNode, multiplier: Decimal, rows: Dict[str, ExplosionResult]) -> None:
        for child in node.children:
            if child.component.consumption_type == ConsumptionType.BYPRODUCT:
                logger.debug(f"Skipping byproduct {child.item_code} of {node.item_code}")
                continue
            effective = self._effective_quantity(child, multiplier)
            if child.is_expanded:
                self._accumulate(child, effective, rows)
            else:
                self._add_requirement(rows, child, effective)

    def _walk_quantities(self, root: BomNode, quantity: Decimal):
        stack = [(root, quantity)]
        while stack:
            node, qty = stack.pop()
            yield node, qty
            children = [(child, self._effective_quantity(child, qty)) for child in node.children]
            stack.extend(reversed(children))

    def _add_requirement(self, rows: Dict[str, ExplosionResult], node: BomNode, quantity: Decimal) -> None:
        item = node.item
        line = node.component
        row = rows.get(item.item_code)
        if row is None:
            row = ExplosionResult(
                item_code=item.item_code,
                item_name=item.item_name,
                uom=item.unit_of_measure,
                item_type=item.item_type,
                display_precision=self._precision(item),
            )
            rows[item.item_code] = row

        row.total_quantity_required += quantity
        stage = line.stage_key
        if stage is not None and stage not in row.contributing_stage_ids:
            row.contributing_stage_ids.append(stage)
        if stage is not None and line.stage_name:
            row.stage_names.setdefault(stage, line.stage_name)
        row.stage_quantities[stage] = row.stage_quantities.get(stage, Decimal("0")) + quantity
        if line.consumption_type not in row.consumption_types:
            row.consumption_types.append(line.consumption_type)
        row.is_critical = row.is_critical or line.is_critical
        for substitute in line.substitute_items:
            if substitute not in row.substitute_items and substitute != item.item_code:
                row.substitute_items.append(substitute)


def _positive_quantity(item_code: str, quantity) -> Decimal:
    qty = to_decimal(quantity, f"quantity for {item_code}")
    if qty is None or qty <= 0:
        raise ValueError(f"Quantity for {item_code} must be positive, got {quantity!r}")
    return qty


def group_by_stage(results: Iterable[ExplosionResult]) -> List[StageRequirement]:
    """
    Requirements per production stage.

    Stages appear in the order first contributed; lines without a stage
    binding are grouped under "unassigned", listed last.
    """
    grouped: Dict[str, List[StageRequirement]] = {}
    for result in results:
        for stage, qty in result.stage_quantities.items():
            key = stage if stage is not None else UNASSIGNED_STAGE
            grouped.setdefault(key, []).append(StageRequirement(
                stage_id=key,
                stage_name=result.stage_names.get(stage) if stage is not None else None,
                item_code=result.item_code,
                quantity=qty,
            ))
    unassigned = grouped.pop(UNASSIGNED_STAGE, [])
    ordered = [req for reqs in grouped.values() for req in reqs]
    return ordered + unassigned


def results_to_dataframe(results: Iterable[ExplosionResult]) -> pd.DataFrame:
    """Tabular view of explosion results, quantities rounded for display."""
    return pd.DataFrame([r.as_dict() for r in results], columns=RESULT_COLUMNS)

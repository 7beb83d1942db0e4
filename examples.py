#!/usr/bin/env python3
"""
Example usage script for the BOM explosion engine

Builds a small packaging plant's master data in memory and runs an
explosion, a shortage check and a cost rollup over it. Modify
create_sample_master_data() to try your own product structures.
"""

from datetime import date
from decimal import Decimal

from bom_explosion import BomExplosionEngine, group_by_stage, results_to_dataframe
from bom_models import (ApprovalStatus, BomComponent, BomMaster, ConsumptionType, Item, ItemType,
                        PricingRecord)
from config import WEIGHTED_AVERAGE, EngineConfig
from cost_rollup import CostRollup, rollup_to_dataframe
from master_data import InMemoryMasterData
from shortage_detector import ShortageDetector, shortages_to_dataframe

SAMPLE_AS_OF = date(2024, 6, 1)


def _bom(item_code, version="1", effective_from=date(2024, 1, 1)):
    return BomMaster(id=f"{item_code}@{version}", item_code=item_code, version=version,
                     effective_from=effective_from, approval_status=ApprovalStatus.APPROVED)


def _line(bom_id, code, qty, uom, **kwargs):
    return BomComponent(bom_master_id=bom_id, component_item_code=code,
                        quantity_per_unit=Decimal(qty), uom=uom, **kwargs)


def create_sample_master_data() -> InMemoryMasterData:
    """
    Create sample master data for demonstration.

    CARTON-A  (finished)  2 x FLAP-B (+5% waste), 10 G INK-RED
    BOX-Y     (finished)  3 x LAMINATE-X, 1 x CORE-TUBE, TRIM-SCRAP byproduct
    LAMINATE-X (WIP, KG)  1.2 KG FILM-RAW, 0.02 KG INK-RED, 0.05 KG ADHESIVE-P

    Returns:
        Master data with stock, pricing and a G -> KG conversion
    """
    items = [
        Item("CARTON-A", "Printed Carton A", "PCS", ItemType.FINISHED_GOOD),
        Item("BOX-Y", "Laminated Box Y", "PCS", ItemType.FINISHED_GOOD),
        Item("LAMINATE-X", "Laminate X", "KG", ItemType.WORK_IN_PROGRESS),
        Item("FLAP-B", "Flap Board B", "PCS", ItemType.RAW_MATERIAL, standard_cost=Decimal("0.50")),
        Item("FLAP-B-ALT", "Flap Board B (alternate mill)", "PCS", ItemType.RAW_MATERIAL,
             standard_cost=Decimal("0.55")),
        Item("FILM-RAW", "BOPP Film", "KG", ItemType.RAW_MATERIAL, standard_cost=Decimal("2.40")),
        Item("INK-RED", "Red Ink", "KG", ItemType.CONSUMABLE, standard_cost=Decimal("12.00"),
             display_precision=3),
        Item("ADHESIVE-P", "PU Adhesive", "KG", ItemType.CONSUMABLE),
        Item("CORE-TUBE", "Paper Core", "PCS", ItemType.RAW_MATERIAL, standard_cost=Decimal("0.20")),
        Item("TRIM-SCRAP", "Trim Scrap", "KG", ItemType.RAW_MATERIAL),
    ]
    masters = [_bom("CARTON-A"), _bom("BOX-Y"), _bom("LAMINATE-X")]
    components = [
        _line("CARTON-A@1", "FLAP-B", "2", "PCS", waste_percentage=Decimal("5"), is_critical=True,
              stage_id="die-cutting", stage_name="Die Cutting", stage_sequence=2,
              substitute_items=["FLAP-B-ALT"]),
        _line("CARTON-A@1", "INK-RED", "10", "G", stage_id="printing", stage_name="Printing",
              stage_sequence=1),
        _line("BOX-Y@1", "LAMINATE-X", "3", "KG", stage_id="forming", stage_name="Forming"),
        _line("BOX-Y@1", "CORE-TUBE", "1", "PCS", stage_id="forming", stage_name="Forming"),
        _line("BOX-Y@1", "TRIM-SCRAP", "0.1", "KG", consumption_type=ConsumptionType.BYPRODUCT),
        _line("LAMINATE-X@1", "FILM-RAW", "1.2", "KG", is_critical=True,
              stage_id="lamination", stage_name="Lamination"),
        _line("LAMINATE-X@1", "INK-RED", "0.02", "KG", stage_id="printing", stage_name="Printing"),
        _line("LAMINATE-X@1", "ADHESIVE-P", "0.05", "KG", consumption_type=ConsumptionType.INDIRECT,
              stage_id="lamination", stage_name="Lamination"),
    ]
    stock = {
        "FLAP-B": "150", "FLAP-B-ALT": "500", "FILM-RAW": "40", "INK-RED": "0.5",
        "ADHESIVE-P": "5", "CORE-TUBE": "8",
    }
    pricing = [
        PricingRecord("FILM-RAW", standard_cost=Decimal("2.40"), weighted_average=Decimal("2.35"),
                      last_grn_price=Decimal("2.50"), price_tolerance_percentage=Decimal("5")),
        PricingRecord("INK-RED", weighted_average=Decimal("11.80")),
    ]
    return InMemoryMasterData(items=items, bom_masters=masters, bom_components=components,
                              stock=stock, conversions=[("G", "KG", "0.001", None)],
                              pricing=pricing)


def main():
    """
    Main function to demonstrate the BOM explosion engine.
    """
    source = create_sample_master_data()
    config = EngineConfig(valuation_policy=WEIGHTED_AVERAGE)
    engine = BomExplosionEngine.from_source(source, config)

    # Example 1: Topology of BOX-Y
    print(engine.display_topology("BOX-Y", 10, SAMPLE_AS_OF))

    # Example 2: Consolidated requirements for a batch of two products
    results = engine.explode_batch([("CARTON-A", 100), ("BOX-Y", 10)], SAMPLE_AS_OF)
    print("\nMATERIAL REQUIREMENTS FOR 100 x CARTON-A + 10 x BOX-Y:")
    print("-" * 40)
    print(results_to_dataframe(results).to_string(index=False))

    # Example 3: Requirements per production stage
    print("\nREQUIREMENTS BY STAGE:")
    print("-" * 40)
    for req in group_by_stage(results):
        print(f"{req.stage_id:<12} {req.item_code:<12} {req.quantity:.3f}")

    # Example 4: Shortages against current stock
    print("\nSHORTAGES:")
    print("-" * 40)
    shortages = ShortageDetector().detect_shortages(results, source)
    print(shortages_to_dataframe(shortages).to_string(index=False))

    # Example 5: Material cost
    rollup = CostRollup(source, config).rollup_cost(results)
    print(f"\nMATERIAL COST ({rollup.policy}):")
    print("-" * 40)
    print(rollup_to_dataframe(rollup).to_string(index=False))
    print(f"Total: {rollup.total_cost:.2f}")
    for warning in rollup.warnings:
        print(f"Warning: {warning}")


if __name__ == "__main__":
    main()

"""
Tests for the BOM Explosion Engine
"""

import unittest
from datetime import date
from decimal import Decimal

from bom_errors import (AmbiguousBomError, CycleError, DepthLimitExceededError, NotFoundError,
                        UnitMismatchError)
from bom_explosion import BomExplosionEngine, group_by_stage, results_to_dataframe
from bom_models import ApprovalStatus, BomComponent, BomMaster, Item, ItemType
from config import EngineConfig
from examples import SAMPLE_AS_OF, create_sample_master_data
from master_data import InMemoryMasterData


def make_source(items, lines, conversions=(), extra_masters=()):
    """
    Build master data from compact tuples.

    items: (code, uom, item_type); lines: (parent, component, qty, uom, extra kwargs)
    Every parent gets one approved BOM effective from 2024-01-01; extra_masters
    adds further versions.
    """
    parents = list(dict.fromkeys(line[0] for line in lines))
    return InMemoryMasterData(
        items=[Item(code, code, uom, item_type) for code, uom, item_type in items],
        bom_masters=[
            BomMaster(id=f"{p}@1", item_code=p, version="1", effective_from=date(2024, 1, 1),
                      approval_status=ApprovalStatus.APPROVED)
            for p in parents
        ] + list(extra_masters),
        bom_components=[
            BomComponent(bom_master_id=f"{parent}@1", component_item_code=code,
                         quantity_per_unit=Decimal(qty), uom=uom, **(extra[0] if extra else {}))
            for parent, code, qty, uom, *extra in lines
        ],
        conversions=conversions,
    )


class TestBomExplosion(unittest.TestCase):
    """Test cases for BOM explosion functionality"""

    def setUp(self):
        """Set up test data"""
        self.source = create_sample_master_data()
        self.engine = BomExplosionEngine.from_source(self.source)

    def summary(self, item_code, quantity):
        return self.engine.get_summary(item_code, quantity, SAMPLE_AS_OF)

    def test_single_level_waste_allowance(self):
        """100 x CARTON-A needs 100 x 2 x 1.05 FLAP-B"""
        self.assertEqual(self.summary("CARTON-A", 100)["FLAP-B"], Decimal("210"))

    def test_wip_is_expanded_not_listed(self):
        """BOX-Y -> 3 x LAMINATE-X -> 1.2 KG FILM-RAW gives 36 KG for 10 boxes"""
        summary = self.summary("BOX-Y", 10)
        self.assertEqual(summary["FILM-RAW"], Decimal("36"))
        self.assertNotIn("LAMINATE-X", summary)

    def test_unit_conversion_to_stock_uom(self):
        """CARTON-A declares INK-RED in grams; the requirement is in KG"""
        results = self.engine.explode("CARTON-A", 100, SAMPLE_AS_OF)
        ink = next(r for r in results if r.item_code == "INK-RED")
        self.assertEqual(ink.uom, "KG")
        self.assertEqual(ink.total_quantity_required, Decimal("1"))

    def test_batch_consolidates_shared_component(self):
        """INK-RED reached from two finished items gets one summed row"""
        results = self.engine.explode_batch([("CARTON-A", 100), ("BOX-Y", 10)], SAMPLE_AS_OF)
        ink_rows = [r for r in results if r.item_code == "INK-RED"]
        self.assertEqual(len(ink_rows), 1)
        self.assertEqual(ink_rows[0].total_quantity_required, Decimal("1.6"))

    def test_one_row_per_leaf_in_first_reached_order(self):
        results = self.engine.explode_batch([("CARTON-A", 100), ("BOX-Y", 10)], SAMPLE_AS_OF)
        self.assertEqual([r.item_code for r in results],
                         ["FLAP-B", "INK-RED", "FILM-RAW", "ADHESIVE-P", "CORE-TUBE"])

    def test_byproduct_is_not_a_requirement(self):
        self.assertNotIn("TRIM-SCRAP", self.summary("BOX-Y", 10))

    def test_quantity_linearity(self):
        """Scaling the order scales every requirement by the same factor"""
        base = self.summary("BOX-Y", 10)
        scaled = self.summary("BOX-Y", 30)
        self.assertEqual(base.keys(), scaled.keys())
        for code, qty in base.items():
            self.assertEqual(scaled[code], qty * 3)

    def test_stage_ids_accumulate_in_order(self):
        results = self.engine.explode("BOX-Y", 10, SAMPLE_AS_OF)
        by_code = {r.item_code: r for r in results}
        self.assertEqual(by_code["FILM-RAW"].contributing_stage_ids, ["lamination"])
        self.assertEqual(by_code["CORE-TUBE"].contributing_stage_ids, ["forming"])
        self.assertEqual(by_code["FILM-RAW"].stage_names, {"lamination": "Lamination"})

    def test_critical_and_substitutes_carried(self):
        results = self.engine.explode("CARTON-A", 100, SAMPLE_AS_OF)
        flap = next(r for r in results if r.item_code == "FLAP-B")
        self.assertTrue(flap.is_critical)
        self.assertEqual(flap.substitute_items, ["FLAP-B-ALT"])

    def test_display_precision_only_at_boundary(self):
        results = self.engine.explode("BOX-Y", 10, SAMPLE_AS_OF)
        ink = next(r for r in results if r.item_code == "INK-RED")
        self.assertEqual(ink.total_quantity_required, Decimal("0.6"))
        self.assertEqual(str(ink.display_quantity), "0.600")

    def test_default_waste_applies_when_line_has_none(self):
        engine = BomExplosionEngine.from_source(self.source, EngineConfig(default_waste_percentage=10))
        summary = engine.get_summary("CARTON-A", 100, SAMPLE_AS_OF)
        # FLAP-B declares 5% itself; INK-RED falls back to the default
        self.assertEqual(summary["FLAP-B"], Decimal("210"))
        self.assertEqual(summary["INK-RED"], Decimal("1.1"))

    def test_rejects_non_positive_quantity(self):
        with self.assertRaises(ValueError):
            self.engine.explode("CARTON-A", 0, SAMPLE_AS_OF)
        with self.assertRaises(ValueError):
            self.engine.explode("CARTON-A", "-5", SAMPLE_AS_OF)

    def test_rejects_non_finite_quantity(self):
        for quantity in ("nan", "inf", "-Infinity"):
            with self.assertRaises(ValueError, msg=quantity):
                self.engine.explode("CARTON-A", quantity, SAMPLE_AS_OF)

    def test_ambiguous_subassembly_bom_aborts_batch(self):
        """Two approved versions of a WIP item sharing effective_from stop the whole batch"""
        source = make_source(
            [("P", "PCS", ItemType.FINISHED_GOOD), ("W", "PCS", ItemType.WORK_IN_PROGRESS),
             ("R", "PCS", ItemType.RAW_MATERIAL), ("Q", "PCS", ItemType.FINISHED_GOOD)],
            [("P", "W", "1", "PCS"), ("W", "R", "1", "PCS"), ("Q", "R", "1", "PCS")],
            extra_masters=[BomMaster(id="W@2", item_code="W", version="2", effective_from=date(2024, 1, 1),
                                     approval_status=ApprovalStatus.APPROVED)],
        )
        engine = BomExplosionEngine.from_source(source)
        with self.assertRaises(AmbiguousBomError) as ctx:
            engine.explode_batch([("Q", 1), ("P", 1)], SAMPLE_AS_OF)
        self.assertEqual(ctx.exception.item_codes, ["W"])

    def test_unknown_item(self):
        with self.assertRaises(NotFoundError) as ctx:
            self.engine.explode("NOPE", 1, SAMPLE_AS_OF)
        self.assertEqual(ctx.exception.item_codes, ["NOPE"])

    def test_no_active_bom_before_effective_date(self):
        with self.assertRaises(NotFoundError):
            self.engine.explode("CARTON-A", 1, date(2023, 12, 31))

    def test_raw_material_root_has_no_bom(self):
        with self.assertRaises(NotFoundError):
            self.engine.explode("FLAP-B", 1, SAMPLE_AS_OF)

    def test_circular_reference_detection(self):
        """Test circular reference detection"""
        source = make_source(
            [("A", "PCS", ItemType.FINISHED_GOOD), ("B", "PCS", ItemType.WORK_IN_PROGRESS),
             ("C", "PCS", ItemType.WORK_IN_PROGRESS)],
            [("A", "B", "1", "PCS"), ("B", "C", "1", "PCS"), ("C", "A", "1", "PCS")],
        )
        engine = BomExplosionEngine.from_source(source)
        with self.assertRaises(CycleError) as ctx:
            engine.explode("A", 1, SAMPLE_AS_OF)
        self.assertEqual(ctx.exception.cycle, ["A", "B", "C", "A"])

    def test_direct_self_reference(self):
        source = make_source([("A", "PCS", ItemType.FINISHED_GOOD)], [("A", "A", "1", "PCS")])
        with self.assertRaises(CycleError):
            BomExplosionEngine.from_source(source).explode("A", 1, SAMPLE_AS_OF)

    def test_depth_limit(self):
        items = [("L0", "PCS", ItemType.FINISHED_GOOD)]
        items += [(f"L{i}", "PCS", ItemType.WORK_IN_PROGRESS) for i in range(1, 25)]
        items += [("L25", "PCS", ItemType.RAW_MATERIAL)]
        lines = [(f"L{i}", f"L{i + 1}", "2", "PCS") for i in range(25)]
        source = make_source(items, lines)

        with self.assertRaises(DepthLimitExceededError) as ctx:
            BomExplosionEngine.from_source(source).explode("L0", 1, SAMPLE_AS_OF)
        self.assertEqual(len(ctx.exception.path), 22)

        deep = BomExplosionEngine.from_source(source, EngineConfig(max_depth=30))
        self.assertEqual(deep.get_summary("L0", 1, SAMPLE_AS_OF), {"L25": Decimal(2) ** 25})

    def test_missing_conversion_aborts(self):
        source = make_source(
            [("P", "PCS", ItemType.FINISHED_GOOD), ("R", "KG", ItemType.RAW_MATERIAL)],
            [("P", "R", "1", "LB")],
        )
        with self.assertRaises(UnitMismatchError) as ctx:
            BomExplosionEngine.from_source(source).explode("P", 1, SAMPLE_AS_OF)
        self.assertEqual(ctx.exception.path, ["P", "R"])

    def test_error_anywhere_returns_nothing(self):
        """A bad branch aborts the batch even if other roots are fine"""
        source = make_source(
            [("GOOD", "PCS", ItemType.FINISHED_GOOD), ("BAD", "PCS", ItemType.FINISHED_GOOD),
             ("R", "KG", ItemType.RAW_MATERIAL), ("W", "KG", ItemType.WORK_IN_PROGRESS)],
            [("GOOD", "R", "1", "KG"), ("BAD", "W", "1", "KG")],
        )
        engine = BomExplosionEngine.from_source(source)
        with self.assertRaises(NotFoundError) as ctx:
            engine.explode_batch([("GOOD", 1), ("BAD", 1)], SAMPLE_AS_OF)
        self.assertEqual(ctx.exception.path, ["BAD", "W"])

    def test_group_by_stage(self):
        results = self.engine.explode_batch([("CARTON-A", 100), ("BOX-Y", 10)], SAMPLE_AS_OF)
        stages = group_by_stage(results)
        self.assertEqual(list(dict.fromkeys(s.stage_id for s in stages)),
                         ["die-cutting", "printing", "lamination", "forming"])
        printing = [s for s in stages if s.stage_id == "printing"]
        self.assertEqual(len(printing), 1)
        self.assertEqual(printing[0].quantity, Decimal("1.6"))

    def test_unassigned_stage_listed_last(self):
        source = make_source(
            [("P", "PCS", ItemType.FINISHED_GOOD), ("R1", "PCS", ItemType.RAW_MATERIAL),
             ("R2", "PCS", ItemType.RAW_MATERIAL)],
            [("P", "R1", "1", "PCS"), ("P", "R2", "1", "PCS", {"stage_sequence": 3})],
        )
        results = BomExplosionEngine.from_source(source).explode("P", 1, SAMPLE_AS_OF)
        self.assertEqual([(s.stage_id, s.item_code) for s in group_by_stage(results)],
                         [("3", "R2"), ("unassigned", "R1")])

    def test_display_topology_format(self):
        """Test that topology display returns a formatted string"""
        topology = self.engine.display_topology("BOX-Y", 10, SAMPLE_AS_OF)
        self.assertIsInstance(topology, str)
        self.assertIn("BOM EXPLOSION FOR: BOX-Y", topology)
        self.assertIn("└─ LAMINATE-X (Qty: 30.00 KG) [WIP]", topology)
        self.assertIn("└─ FILM-RAW (Qty: 36.00 KG) [raw_material]", topology)
        self.assertIn("TRIM-SCRAP", topology)

    def test_results_to_dataframe(self):
        df = results_to_dataframe(self.engine.explode("CARTON-A", 100, SAMPLE_AS_OF))
        self.assertEqual(list(df["item_code"]), ["FLAP-B", "INK-RED"])
        self.assertEqual(df.loc[0, "total_quantity_required"], Decimal("210.00"))

    def test_empty_dataframe_keeps_columns(self):
        df = results_to_dataframe([])
        self.assertIn("total_quantity_required", df.columns)
        self.assertTrue(df.empty)


if __name__ == "__main__":
    unittest.main()

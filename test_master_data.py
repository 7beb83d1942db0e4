"""
Tests for loading master data from tables
"""

import os
import shutil
import tempfile
import unittest
from datetime import date
from decimal import Decimal

import pandas as pd

from bom_explosion import BomExplosionEngine
from bom_models import ApprovalStatus, ConsumptionType, Item, ItemType
from master_data import InMemoryMasterData, canonical_columns, parse_stock_frame

ITEMS_CSV = """Item Code,Name,UOM,Type,Standard Cost
CARTON-A,Printed Carton A,pcs,finished_good,
FLAP-B,Flap Board B,PCS,raw_material,"0,50"
FLAP-B-ALT,Flap Board B alt,PCS,raw_material,0.55
INK-RED,Red Ink,KG,consumable,12
"""

BOM_MASTERS_CSV = """id,item_code,version,effective_from,approval_status,is_active
CARTON-A@1,CARTON-A,1,2024-01-01,approved,yes
"""

BOM_COMPONENTS_CSV = """bom_master_id,component_item_code,quantity_per_unit,uom,waste_percentage,is_critical,substitute_items,stage_id
CARTON-A@1,FLAP-B,2,PCS,5,true,"[""FLAP-B-ALT""]",die-cutting
CARTON-A@1,INK-RED,10,g,,,,printing
"""

STOCK_CSV = """item_code,location,available_quantity
FLAP-B,WH1,100
FLAP-B,WH2,50
INK-RED,WH1,0.5
"""

CONVERSIONS_CSV = """from_uom,to_uom,factor,organization_id
G,KG,0.001,
"""


def write_tables(directory, **tables):
    for name, text in tables.items():
        with open(os.path.join(directory, f"{name}.csv"), "w", encoding="utf-8") as f:
            f.write(text)


class TestFromFrames(unittest.TestCase):

    def test_header_aliases(self):
        df = pd.DataFrame({"SKU": ["X"], "Description": ["Thing"], "Unit": ["kg"]})
        df = canonical_columns(df, ["item_code", "item_name", "unit_of_measure"])
        self.assertEqual(list(df.columns), ["item_code", "item_name", "unit_of_measure"])

    def test_stock_summed_across_rows(self):
        stock = parse_stock_frame(pd.DataFrame({"Item": ["A", "A", "B"], "Qty": ["1.5", "2", None]}))
        self.assertEqual(stock, {"A": Decimal("3.5"), "B": Decimal("0")})

    def test_row_errors_name_table_and_row(self):
        items = pd.DataFrame({"item_code": ["A", "B"], "uom": ["PCS", "PCS"],
                              "item_type": ["raw_material", "gadget"]})
        with self.assertRaises(ValueError) as ctx:
            InMemoryMasterData.from_frames(items, pd.DataFrame(), pd.DataFrame())
        self.assertIn("items row 3", str(ctx.exception))

    def test_non_positive_component_quantity_rejected(self):
        items = pd.DataFrame({"item_code": ["A"], "uom": ["PCS"], "item_type": ["raw_material"]})
        components = pd.DataFrame({"bom_master_id": ["P@1"], "component_item_code": ["A"],
                                   "quantity_per_unit": ["0"], "uom": ["PCS"]})
        with self.assertRaises(ValueError) as ctx:
            InMemoryMasterData.from_frames(items, pd.DataFrame(), components)
        self.assertIn("bom_components row 2", str(ctx.exception))

    def test_non_finite_component_quantity_rejected(self):
        items = pd.DataFrame({"item_code": ["A"], "uom": ["PCS"], "item_type": ["raw_material"]})
        components = pd.DataFrame({"bom_master_id": ["P@1", "P@1"], "component_item_code": ["A", "A"],
                                   "quantity_per_unit": ["1", "nan"], "uom": ["PCS", "PCS"]})
        with self.assertRaises(ValueError) as ctx:
            InMemoryMasterData.from_frames(items, pd.DataFrame(), components)
        self.assertIn("bom_components row 3", str(ctx.exception))
        self.assertIn("not a finite number", str(ctx.exception))

    def test_duplicate_item_codes_rejected(self):
        with self.assertRaises(ValueError):
            InMemoryMasterData(items=[Item("A", "A", "PCS", ItemType.RAW_MATERIAL),
                                      Item("A", "A", "KG", ItemType.RAW_MATERIAL)])


class TestFromDirectory(unittest.TestCase):

    def setUp(self):
        self.directory = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.directory)

    def test_loads_and_explodes(self):
        write_tables(self.directory, items=ITEMS_CSV, bom_masters=BOM_MASTERS_CSV,
                     bom_components=BOM_COMPONENTS_CSV, stock=STOCK_CSV,
                     uom_conversions=CONVERSIONS_CSV)
        source = InMemoryMasterData.from_directory(self.directory)

        self.assertEqual(source.item_codes(), ["CARTON-A", "FLAP-B", "FLAP-B-ALT", "INK-RED"])
        self.assertEqual(source.get_items(["CARTON-A"])["CARTON-A"].unit_of_measure, "PCS")
        self.assertEqual(source.get_items(["FLAP-B"])["FLAP-B"].standard_cost, Decimal("0.50"))
        self.assertEqual(source.get_available_stock("FLAP-B"), Decimal("150"))
        self.assertEqual(source.get_available_stock("FLAP-B-ALT"), Decimal("0"))

        [master] = source.get_bom_masters(["CARTON-A"])["CARTON-A"]
        self.assertEqual(master.approval_status, ApprovalStatus.APPROVED)
        self.assertEqual(master.effective_from, date(2024, 1, 1))

        flap, ink = source.get_bom_components(["CARTON-A@1"])["CARTON-A@1"]
        self.assertEqual(flap.substitute_items, ["FLAP-B-ALT"])
        self.assertTrue(flap.is_critical)
        self.assertIsNone(ink.waste_percentage)
        self.assertEqual(ink.uom, "G")
        self.assertEqual(ink.consumption_type, ConsumptionType.DIRECT)

        summary = BomExplosionEngine.from_source(source).get_summary("CARTON-A", 100, date(2024, 6, 1))
        self.assertEqual(summary, {"FLAP-B": Decimal("210"), "INK-RED": Decimal("1")})

    def test_optional_tables_may_be_absent(self):
        write_tables(self.directory, items=ITEMS_CSV, bom_masters=BOM_MASTERS_CSV,
                     bom_components=BOM_COMPONENTS_CSV)
        source = InMemoryMasterData.from_directory(self.directory)
        self.assertEqual(source.get_conversion_factors(), {})
        self.assertEqual(source.get_pricing(["FLAP-B"]), {})

    def test_missing_required_table(self):
        write_tables(self.directory, items=ITEMS_CSV)
        with self.assertRaises(FileNotFoundError):
            InMemoryMasterData.from_directory(self.directory)

    def test_legacy_xls_is_not_read(self):
        write_tables(self.directory, bom_masters=BOM_MASTERS_CSV, bom_components=BOM_COMPONENTS_CSV)
        with open(os.path.join(self.directory, "items.xls"), "wb") as f:
            f.write(b"")
        with self.assertRaises(FileNotFoundError):
            InMemoryMasterData.from_directory(self.directory)


if __name__ == "__main__":
    unittest.main()

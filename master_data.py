"""
master_data.py

Master data collaborator for the explosion engine.

MasterDataSource is the interface the engine reads through: items, BOM
versions, BOM lines, available stock, unit conversion factors and pricing.
Every read takes a batch of keys so callers can fetch one level of a BOM
tree in a single round trip.

InMemoryMasterData is the shipped implementation. It is loaded from pandas
DataFrames, or from a directory of CSV/Excel exports of the master tables.
"""

import logging
import os
from abc import ABC, abstractmethod
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from bom_models import (BomComponent, BomMaster, Item, PricingRecord, first_present,
                        normalize_uom, to_decimal, to_text)

logger = logging.getLogger(__name__)

ConversionTable = Dict[Tuple[str, str], Decimal]


class MasterDataSource(ABC):
    """Read-only access to master data and stock."""

    @abstractmethod
    def get_items(self, item_codes: Iterable[str]) -> Dict[str, Item]:
        """Items by code; unknown codes are omitted."""

    @abstractmethod
    def get_bom_masters(self, item_codes: Iterable[str]) -> Dict[str, List[BomMaster]]:
        """Every BOM version of each item, whatever its status."""

    @abstractmethod
    def get_bom_components(self, bom_master_ids: Iterable[str]) -> Dict[str, List[BomComponent]]:
        """BOM lines by master id, in declared order."""

    @abstractmethod
    def get_available_stock(self, item_code: str) -> Decimal:
        """Available quantity in the item's stock unit; zero when unknown."""

    def get_available_stocks(self, item_codes: Iterable[str]) -> Dict[str, Decimal]:
        return {code: self.get_available_stock(code) for code in item_codes}

    @abstractmethod
    def get_conversion_factors(self, organization_id: Optional[str] = None) -> ConversionTable:
        """(from_uom, to_uom) -> factor for the organisation."""

    @abstractmethod
    def get_pricing(self, item_codes: Iterable[str]) -> Dict[str, PricingRecord]:
        """Pricing master rows by item code; unknown codes are omitted."""


class InMemoryMasterData(MasterDataSource):
    """Master data held in dictionaries, built from typed records."""

    def __init__(self,
                 items: Iterable[Item] = (),
                 bom_masters: Iterable[BomMaster] = (),
                 bom_components: Iterable[BomComponent] = (),
                 stock: Optional[Mapping[str, Any]] = None,
                 conversions: Iterable[Tuple[str, str, Any, Optional[str]]] = (),
                 pricing: Iterable[PricingRecord] = ()):
        self._items: Dict[str, Item] = {}
        for item in items:
            if item.item_code in self._items:
                raise ValueError(f"Duplicate item code: {item.item_code}")
            self._items[item.item_code] = item

        self._masters: Dict[str, List[BomMaster]] = defaultdict(list)
        seen_ids = set()
        for master in bom_masters:
            if master.id in seen_ids:
                raise ValueError(f"Duplicate BOM master id: {master.id}")
            seen_ids.add(master.id)
            self._masters[master.item_code].append(master)

        self._components: Dict[str, List[BomComponent]] = defaultdict(list)
        for component in bom_components:
            self._components[component.bom_master_id].append(component)

        self._stock: Dict[str, Decimal] = {
            code: to_decimal(qty, f"stock of {code}", Decimal("0"))
            for code, qty in (stock or {}).items()
        }

        # organisation (None = shared) -> conversion table
        self._conversions: Dict[Optional[str], ConversionTable] = defaultdict(dict)
        for from_uom, to_uom, factor, organization_id in conversions:
            value = to_decimal(factor, f"factor {from_uom}->{to_uom}")
            if value is None or value <= 0:
                raise ValueError(f"Conversion factor {from_uom}->{to_uom} must be positive")
            key = (normalize_uom(from_uom), normalize_uom(to_uom))
            self._conversions[organization_id][key] = value

        self._pricing: Dict[str, PricingRecord] = {p.item_code: p for p in pricing}

    # --- MasterDataSource ---

    def get_items(self, item_codes: Iterable[str]) -> Dict[str, Item]:
        return {code: self._items[code] for code in item_codes if code in self._items}

    def get_bom_masters(self, item_codes: Iterable[str]) -> Dict[str, List[BomMaster]]:
        return {code: list(self._masters[code]) for code in item_codes if code in self._masters}

    def get_bom_components(self, bom_master_ids: Iterable[str]) -> Dict[str, List[BomComponent]]:
        return {bom_id: list(self._components.get(bom_id, [])) for bom_id in bom_master_ids}

    def get_available_stock(self, item_code: str) -> Decimal:
        if item_code not in self._stock:
            logger.debug(f"No stock record for {item_code}; treating as zero")
        return self._stock.get(item_code, Decimal("0"))

    def get_conversion_factors(self, organization_id: Optional[str] = None) -> ConversionTable:
        table = dict(self._conversions.get(None, {}))
        if organization_id is not None:
            table.update(self._conversions.get(organization_id, {}))
        return table

    def get_pricing(self, item_codes: Iterable[str]) -> Dict[str, PricingRecord]:
        return {code: self._pricing[code] for code in item_codes if code in self._pricing}

    def item_codes(self) -> List[str]:
        return sorted(self._items)

    # --- Construction from tables ---

    @classmethod
    def from_frames(cls,
                    items: pd.DataFrame,
                    bom_masters: pd.DataFrame,
                    bom_components: pd.DataFrame,
                    stock: Optional[pd.DataFrame] = None,
                    uom_conversions: Optional[pd.DataFrame] = None,
                    pricing: Optional[pd.DataFrame] = None) -> "InMemoryMasterData":
        """
        Build master data from DataFrames of the master tables.

        Column headers are matched case-insensitively against known aliases;
        each row is validated into its typed record.
        """
        return cls(
            items=_parse_rows(items, "items", Item.from_record),
            bom_masters=_parse_rows(bom_masters, "bom_masters", BomMaster.from_record),
            bom_components=_parse_rows(bom_components, "bom_components", BomComponent.from_record),
            stock=parse_stock_frame(stock) if stock is not None else None,
            conversions=parse_conversion_frame(uom_conversions) if uom_conversions is not None else (),
            pricing=_parse_rows(pricing, "pricing", PricingRecord.from_record) if pricing is not None else (),
        )

    @classmethod
    def from_directory(cls, directory: str) -> "InMemoryMasterData":
        """Load every master table found in a directory of CSV/Excel files."""
        frames = {}
        for table in TABLE_NAMES:
            path = find_table_file(directory, table)
            if path is None:
                if table in REQUIRED_TABLES:
                    raise FileNotFoundError(f"Missing {table} table (csv/xlsx) in {directory}")
                continue
            frames[table] = read_table(path)
            logger.info(f"Loaded {len(frames[table])} rows from {path}")
        return cls.from_frames(**frames)


# ---------- Table reading ----------

TABLE_NAMES = ("items", "bom_masters", "bom_components", "stock", "uom_conversions", "pricing")
REQUIRED_TABLES = ("items", "bom_masters", "bom_components")
TABLE_EXTENSIONS = (".csv", ".xlsx")

# canonical column -> accepted header spellings (already normalised)
COLUMN_ALIASES = {
    "item_code": ["item_code", "item", "sku", "material", "component_number"],
    "item_name": ["item_name", "name", "description"],
    "unit_of_measure": ["unit_of_measure", "uom", "unit", "bun", "stock_uom"],
    "item_type": ["item_type", "type", "material_type"],
    "version": ["version", "bom_version", "revision"],
    "id": ["id", "bom_id"],
    "bom_master_id": ["bom_master_id", "bom_id", "bom"],
    "component_item_code": ["component_item_code", "component", "component_code"],
    "quantity_per_unit": ["quantity_per_unit", "qty_per_unit", "qty_per", "quantity", "comp._qty_(bun)"],
    "available_quantity": ["available_quantity", "available_qty", "current_qty", "stock", "qty"],
    "from_uom": ["from_uom", "from_unit", "from"],
    "to_uom": ["to_uom", "to_unit", "to"],
    "factor": ["factor", "conversion_factor", "multiplier"],
    "organization_id": ["organization_id", "org_id", "organization"],
    "weighted_average": ["weighted_average", "current_weighted_avg", "wac"],
}


def normalize_header(header: Any) -> str:
    return "_".join(str(header).strip().lower().split())


def canonical_columns(df: pd.DataFrame, wanted: Sequence[str]) -> pd.DataFrame:
    """
    Rename a frame's columns to canonical names.

    Headers are normalised (lower case, spaces to underscores); for each
    wanted canonical column the first matching alias is renamed to it.
    """
    df = df.rename(columns={c: normalize_header(c) for c in df.columns})
    renames = {}
    for canonical in wanted:
        if canonical in df.columns:
            continue
        for alias in COLUMN_ALIASES.get(canonical, []):
            if alias in df.columns and alias not in renames and alias not in wanted:
                renames[alias] = canonical
                break
    return df.rename(columns=renames)


TABLE_COLUMNS = {
    "items": ["item_code", "item_name", "unit_of_measure", "item_type"],
    "bom_masters": ["id", "item_code", "version"],
    "bom_components": ["bom_master_id", "component_item_code", "quantity_per_unit"],
    "stock": ["item_code", "available_quantity"],
    "uom_conversions": ["from_uom", "to_uom", "factor", "organization_id"],
    "pricing": ["item_code", "weighted_average"],
}


def read_table(path: str) -> pd.DataFrame:
    """Read a CSV or Excel file, falling back to latin-1 for legacy CSV exports."""
    if path.lower().endswith(".csv"):
        try:
            return pd.read_csv(path, dtype=str, keep_default_na=True)
        except UnicodeDecodeError:
            return pd.read_csv(path, dtype=str, keep_default_na=True, encoding="latin1")
    return pd.read_excel(path, dtype=str)


def find_table_file(directory: str, table: str) -> Optional[str]:
    for extension in TABLE_EXTENSIONS:
        path = os.path.join(directory, table + extension)
        if os.path.exists(path):
            return path
    return None


def _records(df: pd.DataFrame, table: str) -> List[Dict[str, Any]]:
    df = canonical_columns(df, TABLE_COLUMNS[table])
    return df.to_dict("records")


def _parse_rows(df: pd.DataFrame, table: str, parse) -> list:
    parsed = []
    # Row numbers are reported 1-based below the header, as spreadsheets show them
    for row_number, record in enumerate(_records(df, table), start=2):
        try:
            parsed.append(parse(record))
        except ValueError as e:
            raise ValueError(f"{table} row {row_number}: {e}") from e
    return parsed


def parse_stock_frame(df: pd.DataFrame) -> Dict[str, Decimal]:
    """Sum available quantity per item across locations/lots."""
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    for row_number, record in enumerate(_records(df, "stock"), start=2):
        code = to_text(record.get("item_code"))
        if not code:
            raise ValueError(f"stock row {row_number}: item_code is required")
        try:
            qty = to_decimal(record.get("available_quantity"), "available_quantity", Decimal("0"))
        except ValueError as e:
            raise ValueError(f"stock row {row_number}: {e}") from e
        totals[code] += qty
    return dict(totals)


def parse_conversion_frame(df: pd.DataFrame) -> List[Tuple[str, str, Decimal, Optional[str]]]:
    conversions = []
    for row_number, record in enumerate(_records(df, "uom_conversions"), start=2):
        from_uom = to_text(record.get("from_uom"))
        to_uom = to_text(record.get("to_uom"))
        if not from_uom or not to_uom:
            raise ValueError(f"uom_conversions row {row_number}: from_uom and to_uom are required")
        try:
            factor = to_decimal(record.get("factor"), "factor")
        except ValueError as e:
            raise ValueError(f"uom_conversions row {row_number}: {e}") from e
        if factor is None:
            raise ValueError(f"uom_conversions row {row_number}: factor is required")
        organization_id = to_text(first_present(record, "organization_id"))
        conversions.append((from_uom, to_uom, factor, organization_id))
    return conversions

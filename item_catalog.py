"""
item_catalog.py

Item and active-BOM lookup over a MasterDataSource.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List

from bom_errors import AmbiguousBomError, NotFoundError
from bom_models import BomComponent, BomMaster, Item
from config import TIE_BREAK_STRICT, EngineConfig
from master_data import MasterDataSource

logger = logging.getLogger(__name__)


class ItemCatalog:
    """
    Side-effect-free reads of item master and BOM versions.

    Every method has a bulk form so a BOM tree can be loaded one level at a
    time instead of one node at a time.
    """

    def __init__(self, source: MasterDataSource, config: EngineConfig = EngineConfig()):
        self.source = source
        self.config = config

    def get_item(self, item_code: str) -> Item:
        return self.get_items([item_code])[item_code]

    def get_items(self, item_codes: Iterable[str]) -> Dict[str, Item]:
        """Fetch items in one call; every unknown code is reported at once."""
        codes = list(dict.fromkeys(item_codes))
        items = self.source.get_items(codes)
        missing = [code for code in codes if code not in items]
        if missing:
            raise NotFoundError(f"Unknown item code(s): {', '.join(missing)}", item_codes=missing)
        return items

    def get_active_bom(self, item_code: str, as_of_date: date) -> BomMaster:
        boms = self.find_active_boms([item_code], as_of_date)
        if item_code not in boms:
            raise NotFoundError(f"No active BOM for {item_code} on {as_of_date.isoformat()}",
                                item_codes=[item_code])
        return boms[item_code]

    def find_active_boms(self, item_codes: Iterable[str], as_of_date: date) -> Dict[str, BomMaster]:
        """Active BOM per item; items without one are left out."""
        codes = list(dict.fromkeys(item_codes))
        active = {}
        for code, masters in self.source.get_bom_masters(codes).items():
            candidates = [m for m in masters if m.item_code == code and m.is_candidate_on(as_of_date)]
            if candidates:
                active[code] = self._select(code, candidates, as_of_date)
        return active

    def get_components(self, bom_master_ids: Iterable[str]) -> Dict[str, List[BomComponent]]:
        return self.source.get_bom_components(list(dict.fromkeys(bom_master_ids)))

    def _select(self, item_code: str, candidates: List[BomMaster], as_of_date: date) -> BomMaster:
        if len(candidates) == 1:
            return candidates[0]

        versions = ", ".join(sorted(m.version for m in candidates))
        if self.config.bom_tie_break == TIE_BREAK_STRICT:
            raise AmbiguousBomError(
                f"{len(candidates)} active BOM versions for {item_code} on "
                f"{as_of_date.isoformat()}: {versions}",
                item_codes=[item_code],
            )

        # Most recent effective_from wins; a tie at the top is a data fault.
        ranked = sorted(candidates, key=lambda m: m.effective_from, reverse=True)
        if ranked[0].effective_from == ranked[1].effective_from:
            raise AmbiguousBomError(
                f"BOM versions for {item_code} share effective_from "
                f"{ranked[0].effective_from.isoformat()}: {versions}",
                item_codes=[item_code],
            )
        logger.warning(f"{len(candidates)} active BOM versions for {item_code}; "
                       f"using version {ranked[0].version} (effective {ranked[0].effective_from})")
        return ranked[0]

"""
shortage_detector.py

Cross-references explosion results with available stock.
"""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from bom_models import (ExplosionResult, Severity, ShortageRecord, SuggestedAction, round_for_display,
                        to_decimal)

logger = logging.getLogger(__name__)

SHORTAGE_COLUMNS = [
    "item_code", "item_name", "uom", "required_quantity", "available_quantity",
    "shortage_quantity", "severity", "suggested_action", "substitute_item_code", "is_critical",
]


class ShortageDetector:
    """
    Computes shortages, severity and a suggested action per requirement.

    Substitutes are tried strictly in their declared order and the first one
    whose free stock covers the whole shortage is suggested. Free stock is
    what remains after the substitute's own requirement in the same
    explosion and after earlier substitutions made in the same call.
    """

    def detect_shortages(self, results: Iterable[ExplosionResult], stock_lookup) -> List[ShortageRecord]:
        """
        Pair each requirement with available stock.

        stock_lookup is either a mapping of item code to quantity or an
        object with get_available_stock(item_code); when it also offers
        get_available_stocks(item_codes) all stock is read in one call.
        """
        results = list(results)
        codes = []
        for result in results:
            codes.append(result.item_code)
            codes.extend(result.substitute_items)
        stock = self._fetch_stock(stock_lookup, list(dict.fromkeys(codes)))

        required = {r.item_code: r.total_quantity_required for r in results}
        claimed: Dict[str, Decimal] = defaultdict(Decimal)
        records = []
        for result in results:
            record = self._evaluate(result, stock, required, claimed)
            if record.shortage_quantity > 0:
                logger.info(f"Shortage of {record.shortage_quantity} {record.uom} for {record.item_code} "
                            f"({record.severity.value}, suggest {record.suggested_action.value}"
                            + (f" {record.substitute_item_code})" if record.substitute_item_code else ")"))
            records.append(record)
        return records

    def _evaluate(self, result: ExplosionResult, stock: Mapping[str, Decimal],
                  required: Mapping[str, Decimal], claimed: Dict[str, Decimal]) -> ShortageRecord:
        available = stock[result.item_code]
        shortage = max(Decimal("0"), result.total_quantity_required - available)

        severity = Severity.NONE
        action = None
        substitute = None
        if shortage > 0:
            severity = Severity.CRITICAL if result.is_critical else Severity.MINOR
            substitute = self._find_substitute(result, shortage, stock, required, claimed)
            if substitute is not None:
                claimed[substitute] += shortage
                action = SuggestedAction.SUBSTITUTE
            elif result.is_critical:
                action = SuggestedAction.ESCALATE
            else:
                action = SuggestedAction.ORDER

        return ShortageRecord(
            item_code=result.item_code,
            item_name=result.item_name,
            uom=result.uom,
            required_quantity=result.total_quantity_required,
            available_quantity=available,
            shortage_quantity=shortage,
            severity=severity,
            suggested_action=action,
            substitute_item_code=substitute,
            is_critical=result.is_critical,
            display_precision=result.display_precision,
        )

    @staticmethod
    def _find_substitute(result: ExplosionResult, shortage: Decimal, stock: Mapping[str, Decimal],
                         required: Mapping[str, Decimal], claimed: Mapping[str, Decimal]) -> Optional[str]:
        for candidate in result.substitute_items:
            free = stock[candidate] - required.get(candidate, Decimal("0")) - claimed.get(candidate, Decimal("0"))
            if free >= shortage:
                return candidate
            logger.debug(f"Substitute {candidate} for {result.item_code} has {free} free, needs {shortage}")
        return None

    @staticmethod
    def _fetch_stock(stock_lookup, codes: List[str]) -> Dict[str, Decimal]:
        if isinstance(stock_lookup, Mapping):
            raw = {code: stock_lookup.get(code) for code in codes}
        elif hasattr(stock_lookup, "get_available_stocks"):
            raw = stock_lookup.get_available_stocks(codes)
        else:
            raw = {code: stock_lookup.get_available_stock(code) for code in codes}
        return {code: to_decimal(raw.get(code), f"stock of {code}", Decimal("0")) for code in codes}


def detect_shortages(results: Iterable[ExplosionResult], stock_lookup) -> List[ShortageRecord]:
    return ShortageDetector().detect_shortages(results, stock_lookup)


def shortages_to_dataframe(records: Iterable[ShortageRecord]) -> pd.DataFrame:
    rows = [
        {
            "item_code": r.item_code,
            "item_name": r.item_name,
            "uom": r.uom,
            "required_quantity": round_for_display(r.required_quantity, r.display_precision),
            "available_quantity": round_for_display(r.available_quantity, r.display_precision),
            "shortage_quantity": round_for_display(r.shortage_quantity, r.display_precision),
            "severity": r.severity.value,
            "suggested_action": r.suggested_action.value if r.suggested_action else None,
            "substitute_item_code": r.substitute_item_code,
            "is_critical": r.is_critical,
        }
        for r in records
    ]
    return pd.DataFrame(rows, columns=SHORTAGE_COLUMNS)

"""
unit_converter.py

Quantity conversion between units of measure using a configured table.
"""

import logging
from decimal import Decimal
from typing import Mapping, Optional, Tuple

from bom_errors import UnitMismatchError
from bom_models import normalize_uom

logger = logging.getLogger(__name__)


class UnitConverter:
    """
    Converts quantities with factors keyed by (from_uom, to_uom).

    The table is the one configured for a single organisation. A pair is
    usable in either direction: (A, B) = f also gives B -> A as 1/f. A pair
    that is not configured raises UnitMismatchError; 1:1 is never assumed.
    """

    def __init__(self, factors: Mapping[Tuple[str, str], Decimal],
                 organization_id: Optional[str] = None):
        self.organization_id = organization_id
        self._factors = {
            (normalize_uom(a), normalize_uom(b)): Decimal(str(f)) for (a, b), f in factors.items()
        }

    @classmethod
    def for_organization(cls, source, organization_id: Optional[str] = None) -> "UnitConverter":
        """Build a converter from a master data source's conversion table."""
        return cls(source.get_conversion_factors(organization_id), organization_id)

    def _lookup(self, a: str, b: str) -> Optional[Decimal]:
        if a == b:
            return Decimal("1")
        if (a, b) in self._factors:
            return self._factors[(a, b)]
        if (b, a) in self._factors:
            return Decimal("1") / self._factors[(b, a)]
        return None

    def factor(self, from_uom: str, to_uom: str, item_code: Optional[str] = None) -> Decimal:
        a, b = normalize_uom(from_uom), normalize_uom(to_uom)
        found = self._lookup(a, b)
        if found is not None:
            return found
        logger.error(f"No conversion {a} -> {b} for organization {self.organization_id}"
                     + (f" (item {item_code})" if item_code else ""))
        raise UnitMismatchError(a, b, item_code)

    def can_convert(self, from_uom: str, to_uom: str) -> bool:
        return self._lookup(normalize_uom(from_uom), normalize_uom(to_uom)) is not None

    def convert(self, quantity, from_uom: str, to_uom: str,
                item_code: Optional[str] = None) -> Decimal:
        quantity = Decimal(str(quantity))
        return quantity * self.factor(from_uom, to_uom, item_code)

"""
Error taxonomy for BOM explosion.

Structural errors abort an explosion; CostUnavailableWarning is issued as a
warning and attached to cost rollups, never raised.
"""

from typing import Iterable, Optional, Sequence


class BomError(Exception):
    """Base class for structural BOM errors."""

    def __init__(self, message: str, item_codes: Iterable[str] = (), path: Sequence[str] = ()):
        self.item_codes = list(item_codes)
        self.path = list(path)
        if self.path:
            message = f"{message} (path: {' -> '.join(self.path)})"
        super().__init__(message)


class NotFoundError(BomError):
    """Unknown item code or no active BOM for the as-of date."""


class AmbiguousBomError(BomError):
    """More than one BOM version qualifies and the tie cannot be broken."""


class CycleError(BomError):
    """An item consumes itself, directly or indirectly."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(
            f"Circular BOM reference: {' -> '.join(self.cycle)}",
            item_codes=dict.fromkeys(self.cycle),
        )


class UnitMismatchError(BomError):
    """No conversion factor between two units of measure."""

    def __init__(self, from_uom: str, to_uom: str, item_code: Optional[str] = None,
                 path: Sequence[str] = ()):
        self.from_uom = from_uom
        self.to_uom = to_uom
        message = f"No conversion from {from_uom!r} to {to_uom!r}"
        if item_code:
            message += f" for item {item_code}"
        super().__init__(message, item_codes=[item_code] if item_code else [], path=path)


class DepthLimitExceededError(BomError):
    """Recursion guard tripped; usually hides a cycle the data did not expose."""

    def __init__(self, max_depth: int, path: Sequence[str]):
        self.max_depth = max_depth
        super().__init__(
            f"BOM deeper than {max_depth} levels",
            item_codes=[path[-1]] if path else [],
            path=path,
        )


class CostUnavailableWarning(UserWarning):
    """No cost for an item under the chosen valuation policy; valued at zero."""

    def __init__(self, item_code: str, policy: str):
        self.item_code = item_code
        self.policy = policy
        super().__init__(f"No {policy} for item {item_code}; valued at zero")

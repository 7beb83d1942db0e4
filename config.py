"""
Configuration for the BOM explosion engine.

Per-organisation settings are carried in an EngineConfig that is passed
explicitly into every entry point; nothing is read from global state.
"""

import logging
import logging.config
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional


# --- Valuation policies ---
STANDARD_COST = "standard_cost"
WEIGHTED_AVERAGE = "weighted_average"
LAST_GRN_PRICE = "last_grn_price"
VALUATION_POLICIES = (STANDARD_COST, WEIGHTED_AVERAGE, LAST_GRN_PRICE)

# --- Active BOM tie-break policies ---
TIE_BREAK_LATEST = "latest_effective_from"
TIE_BREAK_STRICT = "strict"
TIE_BREAK_POLICIES = (TIE_BREAK_LATEST, TIE_BREAK_STRICT)


@dataclass(frozen=True)
class EngineConfig:
    """Organisation-level settings for explosion, shortage and costing."""
    organization_id: Optional[str] = None
    valuation_policy: str = STANDARD_COST
    default_waste_percentage: float = 0.0
    display_precision: int = 2
    max_depth: int = 20
    bom_tie_break: str = TIE_BREAK_LATEST
    default_price_tolerance: float = 5.0

    def __post_init__(self):
        if self.valuation_policy not in VALUATION_POLICIES:
            raise ValueError(f"Unknown valuation policy: {self.valuation_policy!r}")
        if self.bom_tie_break not in TIE_BREAK_POLICIES:
            raise ValueError(f"Unknown BOM tie-break policy: {self.bom_tie_break!r}")
        if not 0 <= self.default_waste_percentage <= 100:
            raise ValueError("default_waste_percentage must be between 0 and 100")
        if self.max_depth < 1:
            raise ValueError("max_depth must be positive")

    @classmethod
    def from_mapping(cls, settings: Dict[str, Any]) -> "EngineConfig":
        """
        Build a config from a settings mapping (e.g. an organisation row).

        Unknown keys are ignored; missing keys keep their defaults.
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in settings.items() if k in known and v is not None})


# --- Logging Configuration ---
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"

LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": LOG_FORMAT,
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": logging.DEBUG,
            "stream": "ext://sys.stderr",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": logging.WARNING,
    },
}


def setup_logging(level: int = logging.WARNING) -> None:
    """Apply LOGGING_CONFIG with the given root level."""
    config = dict(LOGGING_CONFIG)
    config["root"] = dict(LOGGING_CONFIG["root"], level=level)
    logging.config.dictConfig(config)

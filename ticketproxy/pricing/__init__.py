from .hierarchy import (
    HIERARCHY,
    Level,
    LookupContext,
    determine_level,
    rule_applies,
    validate_scope,
)
from .resolver import HospitalityResolver, MarkupResolver, compute_price

__all__ = [
    "HIERARCHY",
    "HospitalityResolver",
    "Level",
    "LookupContext",
    "MarkupResolver",
    "compute_price",
    "determine_level",
    "rule_applies",
    "validate_scope",
]

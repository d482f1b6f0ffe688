"""Quality filter expressions for Bridge."""

from .quality import (
    And,
    Expression,
    FilterValidation,
    Not,
    Or,
    Presence,
    QualityFilterService,
    Value,
)

__all__ = [
    "And",
    "Expression",
    "FilterValidation",
    "Not",
    "Or",
    "Presence",
    "QualityFilterService",
    "Value",
]

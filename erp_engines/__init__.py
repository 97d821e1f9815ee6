"""
Module: erp_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by
    the document lifecycle: line-item pricing, numbering, status
    transitions and payment application.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import erp_kernel.  MUST NOT import erp_modules.

Invariants enforced:
    - Engines never read the clock; dates are explicit parameters.
    - Decimal-only arithmetic.
    - Identical inputs always produce identical outputs.
"""

from erp_engines.line_items import DocumentAmounts, LineItemCalculator
from erp_engines.numbering import (
    DEFAULT_NUMBERING_RULES,
    DocumentNumberGenerator,
    NumberingRule,
    SequenceSource,
    current_financial_year,
    scope_key,
)
from erp_engines.payments import PaymentApplication, PaymentLedger
from erp_engines.transitions import TransitionValidator

__all__ = [
    "LineItemCalculator",
    "DocumentAmounts",
    "DocumentNumberGenerator",
    "NumberingRule",
    "SequenceSource",
    "DEFAULT_NUMBERING_RULES",
    "current_financial_year",
    "scope_key",
    "TransitionValidator",
    "PaymentLedger",
    "PaymentApplication",
]

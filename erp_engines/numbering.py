"""
Numbering Engine - Document numbers per (company, document type, financial year).

Formats ``{prefix}/{FY}/{sequence}`` with a per-type zero padding, e.g.
``INV/2024-25/001`` or ``QUO/2024-25/0001``.  The sequence itself comes
from an injected ``SequenceSource``; this module holds no counter state.

Usage:
    from erp_engines.numbering import DocumentNumberGenerator, current_financial_year

    generator = DocumentNumberGenerator(sequence_source)
    fy = current_financial_year(date(2024, 6, 1))  # "2024-25"
    generator.next_number("acme", DocumentType.INVOICE, fy)  # "INV/2024-25/001"
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from types import MappingProxyType
from typing import Mapping, Protocol, runtime_checkable

from erp_kernel.domain.documents import DocumentType
from erp_kernel.exceptions import NumberGenerationFailedError
from erp_kernel.logging_config import get_logger

logger = get_logger("engines.numbering")

FINANCIAL_YEAR_START_MONTH = 4
_FINANCIAL_YEAR_PATTERN = re.compile(r"^\d{4}-\d{2}$")


@runtime_checkable
class SequenceSource(Protocol):
    """Atomic per-scope counter store.

    ``next_sequence`` must be a single atomic increment returning a value
    strictly greater than any previously returned for ``scope_key``.
    """

    def next_sequence(self, scope_key: str) -> int: ...


@dataclass(frozen=True)
class NumberingRule:
    """Prefix and zero-padding width for one document type."""

    prefix: str
    padding: int

    def __post_init__(self) -> None:
        if not self.prefix:
            raise ValueError("Numbering prefix cannot be empty")
        if not 1 <= self.padding <= 9:
            raise ValueError(f"Numbering padding must be in [1, 9], got {self.padding}")


DEFAULT_NUMBERING_RULES: Mapping[DocumentType, NumberingRule] = MappingProxyType({
    DocumentType.QUOTATION: NumberingRule("QUO", 4),
    DocumentType.CUSTOMER_ORDER: NumberingRule("CO", 4),
    DocumentType.PURCHASE_ORDER: NumberingRule("PO", 4),
    DocumentType.INVOICE: NumberingRule("INV", 3),
})


def current_financial_year(on_date: date) -> str:
    """
    Financial year label (April 1 - March 31) containing ``on_date``.

    >>> current_financial_year(date(2024, 4, 1))
    '2024-25'
    >>> current_financial_year(date(2025, 3, 31))
    '2024-25'
    """
    start = on_date.year if on_date.month >= FINANCIAL_YEAR_START_MONTH else on_date.year - 1
    return f"{start}-{(start + 1) % 100:02d}"


def scope_key(company_id: str, document_type: DocumentType, financial_year: str) -> str:
    """Counter scope key for one numbering sequence."""
    return f"{company_id}:{DocumentType(document_type).value}:{financial_year}"


class DocumentNumberGenerator:
    """
    Produces unique, increasing document numbers.

    Contract:
        One ``SequenceSource.next_sequence`` call per number.  Any failure
        of the source fails closed with ``NumberGenerationFailedError``.

    Guarantees:
        - Numbers are unique within a scope whenever the source's increment
          is atomic.  Gaps from failed creations are tolerated.
        - Padding width is fixed per document type; a sequence wider than
          its padding is printed in full, never truncated.

    Non-goals:
        - Never derives a number from existing documents (no count/max).
    """

    def __init__(
        self,
        sequence_source: SequenceSource,
        numbering_rules: Mapping[DocumentType, NumberingRule] | None = None,
        company_prefixes: Mapping[str, Mapping[DocumentType, str]] | None = None,
    ):
        self._source = sequence_source
        rules = dict(DEFAULT_NUMBERING_RULES)
        rules.update(numbering_rules or {})
        self._rules = MappingProxyType(rules)
        self._company_prefixes = {
            company: dict(prefixes) for company, prefixes in (company_prefixes or {}).items()
        }

    def prefix_for(self, company_id: str, document_type: DocumentType) -> str:
        """Company override if configured, otherwise the type's default prefix."""
        override = self._company_prefixes.get(company_id, {}).get(document_type)
        return override or self._rules[document_type].prefix

    def format_number(
        self,
        company_id: str,
        document_type: DocumentType,
        financial_year: str,
        sequence: int,
    ) -> str:
        rule = self._rules[document_type]
        prefix = self.prefix_for(company_id, document_type)
        return f"{prefix}/{financial_year}/{sequence:0{rule.padding}d}"

    def next_number(
        self,
        company_id: str,
        document_type: DocumentType,
        financial_year: str,
    ) -> str:
        """
        Allocate and format the next number for the scope.

        Raises:
            ValueError: ``financial_year`` is not a ``YYYY-YY`` label.
            NumberGenerationFailedError: the sequence source raised or
                returned something other than a positive integer.
        """
        document_type = DocumentType(document_type)
        if not _FINANCIAL_YEAR_PATTERN.match(financial_year):
            raise ValueError(f"Financial year must look like 'YYYY-YY', got {financial_year!r}")

        key = scope_key(company_id, document_type, financial_year)
        try:
            sequence = self._source.next_sequence(key)
        except Exception as exc:
            logger.error(
                "number_generation_failed",
                extra={"scope_key": key, "error": str(exc)},
                exc_info=True,
            )
            raise NumberGenerationFailedError(key, f"sequence source error: {exc}") from exc

        if isinstance(sequence, bool) or not isinstance(sequence, int) or sequence <= 0:
            logger.error(
                "number_generation_failed",
                extra={"scope_key": key, "error": f"invalid sequence {sequence!r}"},
            )
            raise NumberGenerationFailedError(key, f"sequence source returned {sequence!r}")

        number = self.format_number(company_id, document_type, financial_year, sequence)
        logger.info(
            "document_number_generated",
            extra={
                "scope_key": key,
                "sequence": sequence,
                "document_number": number,
            },
        )
        return number

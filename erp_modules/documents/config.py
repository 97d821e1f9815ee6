"""
Financial Document Configuration Schema.

Defines the structure and sensible defaults for document settings:
currency precision, grand-total rounding, numbering rules, company
number prefixes, editable statuses and payment terms.  Values can be
loaded from YAML with ``load_document_config``.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from erp_engines.numbering import DEFAULT_NUMBERING_RULES, NumberingRule
from erp_kernel.domain.documents import DocumentType
from erp_kernel.domain.values import quantum, to_decimal
from erp_kernel.logging_config import get_logger

logger = get_logger("modules.documents.config")


def _default_numbering() -> dict[DocumentType, NumberingRule]:
    return dict(DEFAULT_NUMBERING_RULES)


def _default_editable_statuses() -> dict[DocumentType, tuple[str, ...]]:
    editable = {t: ("draft",) for t in DocumentType}
    editable[DocumentType.QUOTATION] = ("draft", "sent")
    return editable


def _config_decimal(value: Any) -> Decimal:
    # YAML reads 0.01 as a float; go through its text form.
    if isinstance(value, float):
        return Decimal(str(value))
    return to_decimal(value)


@dataclass
class DocumentConfig:
    """
    Configuration schema for the financial document module.

    Field defaults match the shipped numbering formats.  Override at
    instantiation with company-specific values:

        config = DocumentConfig(
            grand_total_rounding_unit=Decimal("1"),
            company_prefixes={"acme": {DocumentType.INVOICE: "ACM"}},
        )
    """

    # Amounts
    currency_decimal_places: int = 2
    grand_total_rounding_unit: Decimal = Decimal("0.01")

    # Numbering
    numbering: dict[DocumentType, NumberingRule] = field(default_factory=_default_numbering)
    company_prefixes: dict[str, dict[DocumentType, str]] = field(default_factory=dict)

    # Line edits
    editable_statuses: dict[DocumentType, tuple[str, ...]] = field(
        default_factory=_default_editable_statuses,
    )

    # Invoices
    default_payment_terms_days: int = 30

    def __post_init__(self):
        if not 0 <= self.currency_decimal_places <= 6:
            raise ValueError(
                f"currency_decimal_places must be between 0 and 6, "
                f"got {self.currency_decimal_places}"
            )

        self.grand_total_rounding_unit = _config_decimal(self.grand_total_rounding_unit)
        if self.grand_total_rounding_unit <= 0:
            raise ValueError("grand_total_rounding_unit must be positive")
        if self.grand_total_rounding_unit % quantum(self.currency_decimal_places) != 0:
            raise ValueError(
                f"grand_total_rounding_unit {self.grand_total_rounding_unit} must be a "
                f"multiple of the currency unit {quantum(self.currency_decimal_places)}"
            )

        merged = _default_numbering()
        merged.update({DocumentType(k): v for k, v in self.numbering.items()})
        self.numbering = merged

        for company_id, prefixes in self.company_prefixes.items():
            for document_type, prefix in prefixes.items():
                if not prefix or not prefix.strip():
                    raise ValueError(
                        f"company prefix for {company_id}/{DocumentType(document_type).value} "
                        "cannot be empty"
                    )

        editable = _default_editable_statuses()
        editable.update({DocumentType(k): tuple(v) for k, v in self.editable_statuses.items()})
        for document_type, statuses in editable.items():
            valid = {s.value for s in document_type.status_enum}
            unknown = set(statuses) - valid
            if unknown:
                raise ValueError(
                    f"editable_statuses for {document_type.value} contain unknown "
                    f"statuses {sorted(unknown)}"
                )
        self.editable_statuses = editable

        if self.default_payment_terms_days < 0:
            raise ValueError("default_payment_terms_days cannot be negative")

        logger.info(
            "document_config_initialized",
            extra={
                "currency_decimal_places": self.currency_decimal_places,
                "grand_total_rounding_unit": str(self.grand_total_rounding_unit),
                "numbering": {
                    t.value: f"{r.prefix}/{r.padding}" for t, r in self.numbering.items()
                },
                "company_prefix_count": len(self.company_prefixes),
                "default_payment_terms_days": self.default_payment_terms_days,
            },
        )

    def is_editable(self, document_type: DocumentType, status: str) -> bool:
        """Whether line items may be recomputed in ``status``."""
        return status in self.editable_statuses[DocumentType(document_type)]

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with the default numbering and rounding."""
        logger.info("document_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from a dictionary (e.g. parsed YAML)."""
        logger.info(
            "document_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        data = dict(data)
        if "grand_total_rounding_unit" in data:
            data["grand_total_rounding_unit"] = _config_decimal(data["grand_total_rounding_unit"])
        if "numbering" in data:
            data["numbering"] = {
                DocumentType(k): NumberingRule(**v) if isinstance(v, dict) else v
                for k, v in (data["numbering"] or {}).items()
            }
        if "company_prefixes" in data:
            data["company_prefixes"] = {
                str(company): {DocumentType(k): str(v) for k, v in (prefixes or {}).items()}
                for company, prefixes in (data["company_prefixes"] or {}).items()
            }
        if "editable_statuses" in data:
            data["editable_statuses"] = {
                DocumentType(k): tuple(v) for k, v in (data["editable_statuses"] or {}).items()
            }
        return cls(**data)


def load_document_config(path: str | Path) -> DocumentConfig:
    """
    Load a DocumentConfig from a YAML file.

    An empty file yields the defaults.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ValueError: the document is not a mapping, or a value fails
            validation.
    """
    path = Path(path)
    with path.open(encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if data is None:
        return DocumentConfig.with_defaults()
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    logger.info("document_config_file_loaded", extra={"path": str(path)})
    return DocumentConfig.from_dict(data)

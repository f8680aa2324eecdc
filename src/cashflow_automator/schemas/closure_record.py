"""
Canonical closure record (SSOT).

FinancialRecord is the single typed shape produced by the extractor and
consumed by the ledger merge and by file relocation. Monetary fields are
Optional[Decimal]: None means "not found in the document" and is never
conflated with a printed zero.
"""

from dataclasses import dataclass, field, fields
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class Shift(str, Enum):
    """Coarse time-of-day bucket of a closure."""

    MORNING = "Morning"
    EVENING = "Evening"

    @property
    def file_token(self) -> str:
        """Upper-case token used in artifact filenames."""
        return self.value.upper()

    @classmethod
    def parse(cls, value: Any) -> Optional["Shift"]:
        """Parse a shift from ledger/file text, accepting Spanish aliases."""
        if isinstance(value, Shift):
            return value
        if value is None:
            return None
        text = str(value).strip().lower()
        return _SHIFT_ALIASES.get(text)


_SHIFT_ALIASES = {
    "morning": Shift.MORNING,
    "mañana": Shift.MORNING,
    "manana": Shift.MORNING,
    "evening": Shift.EVENING,
    "tarde": Shift.EVENING,
}

# Record attribute names of the monetary fields, in ledger column order
MONETARY_FIELDS = (
    "opening_cash",
    "cash_sales",
    "total_sales",
    "card_sales",
    "digital_payments",
    "closing_cash",
    "cash_withdrawal",
)


@dataclass
class FinancialRecord:
    """
    Typed financial data extracted from one closure document.

    closure_date is kept exactly as printed (DD/MM/YYYY); use
    schemas.keys.normalize_date for the ISO form.
    """

    source_name: str
    closure_date: str
    closure_time: str
    shift: Shift
    branch: str = ""

    opening_cash: Optional[Decimal] = None
    total_sales: Optional[Decimal] = None
    cash_sales: Optional[Decimal] = None
    card_sales: Optional[Decimal] = None
    digital_payments: Optional[Decimal] = None
    closing_cash: Optional[Decimal] = None
    cash_withdrawal: Optional[Decimal] = None

    # Raw matched text per field (debug info)
    raw_matches: dict[str, str] = field(default_factory=dict)

    @property
    def iso_date(self) -> str:
        from .keys import normalize_date

        return normalize_date(self.closure_date)

    @property
    def composite_key(self) -> str:
        from .keys import composite_key

        return composite_key(self.closure_date, self.shift, self.branch)

    def amounts(self) -> dict[str, Optional[Decimal]]:
        """Monetary fields by name, absent ones included as None."""
        return {name: getattr(self, name) for name in MONETARY_FIELDS}

    def present_amounts(self) -> dict[str, Decimal]:
        return {name: value for name, value in self.amounts().items() if value is not None}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, Shift):
                value = value.value
            elif isinstance(value, dict):
                value = dict(value)
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FinancialRecord":
        """Create from dictionary."""
        shift = Shift.parse(data["shift"])
        if shift is None:
            raise ValueError(f"Unknown shift: {data['shift']!r}")
        kwargs: dict[str, Any] = {
            "source_name": data["source_name"],
            "closure_date": data["closure_date"],
            "closure_time": data.get("closure_time", ""),
            "shift": shift,
            "branch": data.get("branch", ""),
            "raw_matches": dict(data.get("raw_matches") or {}),
        }
        for name in MONETARY_FIELDS:
            value = data.get(name)
            kwargs[name] = Decimal(value) if value not in (None, "") else None
        return cls(**kwargs)

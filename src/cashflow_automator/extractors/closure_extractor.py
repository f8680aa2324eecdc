"""
Cash closure report extractor.

Turns the plain text of one closure report into a FinancialRecord using
anchored pattern matching.

Rules:
- Branch: text after the business-name marker on the first line that
  carries both the organization and business markers (empty if none)
- Closure date/time: "<label> DD/MM/YYYY HH:MM:SS" (mandatory)
- Shift: closure hour below the cutoff is the morning shift
- Amounts: label, optional "$", then 1.234,56-style number; first match wins
- Cash withdrawal: first amount on the anchor line or the two lines after it
"""

import logging
import re
from typing import Optional

from ..config import FieldAnchors
from ..schemas.amounts import normalize_amount
from ..schemas.closure_record import FinancialRecord
from ..schemas.keys import shift_for_time
from .base import ExtractionError

logger = logging.getLogger(__name__)

# Argentine-format amount: 1.234.567,89
AMOUNT_NUMBER = r"([0-9]{1,3}(?:\.[0-9]{3})*,[0-9]{2})"

DATE_TIME = r"\s*(\d{2}/\d{2}/\d{4})\s+(\d{2}:\d{2}:\d{2})"

# Lines scanned for the withdrawal amount, anchor line included
WITHDRAWAL_WINDOW = 3


class ClosureExtractor:
    """
    Extract a FinancialRecord from closure report text.

    The extractor is stateless; anchors and the cutoff hour are fixed at
    construction.
    """

    def __init__(self, anchors: Optional[FieldAnchors] = None, shift_cutoff_hour: int = 16):
        self.anchors = anchors or FieldAnchors()
        self.shift_cutoff_hour = shift_cutoff_hour

        self._organization_marker = self.anchors.organization_marker.lower()
        self._business_marker = self.anchors.business_marker.lower()
        self._branch_pattern = re.compile(
            re.escape(self.anchors.business_marker) + r"\s*[-\s]*(.+)", re.IGNORECASE
        )
        self._closure_pattern = re.compile(self.anchors.closure_date + DATE_TIME, re.IGNORECASE)
        self._amount_patterns = {
            name: re.compile(label + r"\s*\$?\s*" + AMOUNT_NUMBER, re.IGNORECASE)
            for name, label in self.anchors.amount_labels().items()
        }
        self._withdrawal_anchor = re.compile(self.anchors.cash_withdrawal, re.IGNORECASE)
        self._withdrawal_amount = re.compile(r"-?\$?\s*" + AMOUNT_NUMBER)

    @property
    def name(self) -> str:
        return "closure_report"

    def can_extract(self, content: str) -> bool:
        """Any non-empty text can be attempted."""
        return bool(content and content.strip())

    def extract(self, content: str, source_name: str) -> FinancialRecord:
        """
        Extract closure data from report text.

        Args:
            content: Plain text of the report
            source_name: Filename, carried into the record and errors

        Returns:
            FinancialRecord with every amount normalized or None

        Raises:
            ExtractionError: If the closure date/time is missing
        """
        if not self.can_extract(content):
            raise ExtractionError(source_name, "Document has no text")

        closure = self._closure_pattern.search(content)
        if not closure:
            raise ExtractionError(source_name, "Could not extract closure date")

        closure_date, closure_time = closure.group(1), closure.group(2)
        record = FinancialRecord(
            source_name=source_name,
            closure_date=closure_date,
            closure_time=closure_time,
            shift=shift_for_time(closure_time, self.shift_cutoff_hour),
            branch=self._extract_branch(content),
        )
        record.raw_matches["closure"] = closure.group(0).strip()

        for field_name, pattern in self._amount_patterns.items():
            match = pattern.search(content)
            if match:
                record.raw_matches[field_name] = match.group(1)
                setattr(record, field_name, normalize_amount(match.group(1)))

        withdrawal = self._extract_withdrawal(content)
        if withdrawal is not None:
            record.raw_matches["cash_withdrawal"] = withdrawal
            record.cash_withdrawal = normalize_amount(withdrawal)

        logger.debug(
            f"Extracted {source_name}: {record.composite_key} "
            f"({len(record.present_amounts())} amounts)"
        )
        return record

    def _extract_branch(self, content: str) -> str:
        """Branch name from the organization line, or "" if there is none."""
        for line in content.split("\n"):
            lowered = line.lower()
            if self._organization_marker in lowered and self._business_marker in lowered:
                match = self._branch_pattern.search(line)
                return match.group(1).strip() if match else ""
        return ""

    def _extract_withdrawal(self, content: str) -> Optional[str]:
        """First amount on the withdrawal anchor line or the two after it."""
        lines = content.split("\n")
        for idx, line in enumerate(lines):
            if self._withdrawal_anchor.search(line):
                for candidate in lines[idx : idx + WITHDRAWAL_WINDOW]:
                    match = self._withdrawal_amount.search(candidate)
                    if match:
                        return match.group(1)
                return None
        return None

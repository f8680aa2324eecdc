"""
Closure report extractors.

Provides:
- ClosureExtractor: anchored pattern extraction of closure reports
- read_pdf_text: PDF text layer reader
- ExtractionError: per-document extraction failure
"""

from .base import ExtractionError
from .closure_extractor import ClosureExtractor
from .pdf_text import read_pdf_text

__all__ = [
    "ClosureExtractor",
    "ExtractionError",
    "read_pdf_text",
]

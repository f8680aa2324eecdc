"""
PDF text layer reader.

Only the embedded text layer is read; there is no OCR or layout analysis.
"""

import io
import logging
from pathlib import Path
from typing import Union

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from .base import ExtractionError

logger = logging.getLogger(__name__)


def read_pdf_text(source: Union[Path, bytes], source_name: str = "") -> str:
    """
    Return the text of every page, joined with newlines.

    Args:
        source: PDF path or raw bytes
        source_name: Name used in error messages

    Raises:
        ExtractionError: If the file is not a readable PDF or has no text
    """
    if isinstance(source, Path):
        source_name = source_name or source.name
        data = source.read_bytes()
    else:
        data = source

    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [(page.extract_text() or "") for page in reader.pages]
    except (PdfReadError, ValueError) as e:
        raise ExtractionError(source_name, f"Unreadable PDF: {e}") from e

    text = "\n".join(pages)
    if not text.strip():
        raise ExtractionError(source_name, "PDF without extractable text")

    logger.debug(f"Read {len(pages)} page(s) of text from {source_name}")
    return text

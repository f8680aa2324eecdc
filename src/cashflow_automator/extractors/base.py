"""
Common extraction types.
"""


class ExtractionError(Exception):
    """A single document could not be turned into a record.

    Raised per item; the batch records it and moves on.
    """

    def __init__(self, source_name: str, reason: str):
        self.source_name = source_name
        self.reason = reason
        super().__init__(f"{source_name}: {reason}")

"""Exception taxonomy for the ingestion engine.

Unresolved headers and columns are not errors; see ``models.UNRESOLVED``.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for every error raised by rfq-ingest."""


class FileReadError(IngestError):
    """The input could not be read (missing, unsupported, or corrupt)."""


class WorkbookStructureError(IngestError):
    """The workbook has no usable sheet index or sheet names."""


class NumericParseError(IngestError, ValueError):
    """A cell value could not be parsed as a number.

    Callers resolve this through ``normalize.parse_numeric`` and an explicit
    fallback context instead of letting it escape.
    """

    def __init__(self, value: object) -> None:
        super().__init__(f"Cannot parse {value!r} as a number")
        self.value = value

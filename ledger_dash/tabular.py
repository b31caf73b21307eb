"""CSV reader turning uploaded statement files into headers and row dicts."""
from __future__ import annotations

import csv
import io
import logging

import pandas as pd

from .errors import MalformedFileError
from .models import ParsedTable

logger = logging.getLogger(__name__)

CANDIDATE_DELIMITERS = ",;\t|"
_SNIFF_SAMPLE_SIZE = 8192


def read_csv(content: bytes | str) -> ParsedTable:
    """Parse a delimited text export into a :class:`ParsedTable`.

    All cells are kept as strings so amount and date parsing stays the
    normalizer's job. Blank lines are skipped and header names are stripped.
    A trailing delimiter on every data row is tolerated; a row wider than the
    rows before it raises :class:`MalformedFileError`.
    """

    text = decode_bytes(content) if isinstance(content, bytes) else content
    if not text.strip():
        return ParsedTable(fields=[], rows=[], delimiter=",")

    delimiter = sniff_delimiter(text)
    try:
        dataframe = pd.read_csv(
            io.StringIO(text),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            index_col=False,
            on_bad_lines="error",
        )
    except pd.errors.ParserError as exc:
        raise MalformedFileError(f"Malformed CSV file: {str(exc).strip()}") from exc
    dataframe.columns = [str(column).strip() for column in dataframe.columns]
    rows = [
        {column: _clean_cell(value) for column, value in record.items()}
        for record in dataframe.to_dict(orient="records")
    ]
    logger.debug("Parsed %d row(s) with delimiter %r", len(rows), delimiter)
    return ParsedTable(fields=list(dataframe.columns), rows=rows, delimiter=delimiter)


def decode_bytes(content: bytes) -> str:
    """Decode an upload as UTF-8 (BOM tolerant), falling back to cp1252."""

    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("Upload is not valid UTF-8, decoding as cp1252")
        return content.decode("cp1252", errors="replace")


def sniff_delimiter(text: str) -> str:
    """Pick the delimiter from the header line.

    Data rows are ignored here: decimal commas and trailing separators make
    them poor evidence. :class:`csv.Sniffer` only breaks ties between
    candidates that appear equally often in the header.
    """

    header = next((line for line in text.splitlines() if line.strip()), "")
    counts = {candidate: header.count(candidate) for candidate in CANDIDATE_DELIMITERS}
    best = max(counts.values())
    leaders = [candidate for candidate, count in counts.items() if count == best]
    if best and len(leaders) == 1:
        return leaders[0]

    sample = text[:_SNIFF_SAMPLE_SIZE]
    try:
        dialect = csv.Sniffer().sniff(sample, delimiters="".join(leaders) if best else CANDIDATE_DELIMITERS)
    except csv.Error:
        return leaders[0] if best else ","
    return dialect.delimiter


def _clean_cell(value: object) -> str:
    if value is None or pd.isna(value):
        return ""
    return str(value)


__all__ = ["read_csv", "decode_bytes", "sniff_delimiter", "CANDIDATE_DELIMITERS"]

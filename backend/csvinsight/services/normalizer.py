"""
CSV Normalizer
Turns an uploaded CSV into cleaned rows, headers and counts
"""
import csv
import io
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pandas as pd
from pandas.errors import EmptyDataError, ParserError

from csvinsight.errors import InputValidationError

logger = logging.getLogger(__name__)

INT_PATTERN = re.compile(r"^[+-]?\d+$")
FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")
WHITESPACE = re.compile(r"\s+")


def clean_header(header: Any) -> str:
    """Collapse whitespace and newlines to single spaces and trim"""
    return WHITESPACE.sub(" ", str(header if header is not None else "")).strip()


def coerce_cell(value: str) -> Any:
    """
    Best-effort typing of a raw cell: int, float, bool, or the original string.
    Blank cells become None.
    """
    stripped = value.strip()
    if not stripped:
        return None
    lowered = stripped.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if INT_PATTERN.match(stripped):
        return int(stripped)
    if FLOAT_PATTERN.match(stripped):
        return float(stripped)
    return value


def serialized_size(rows: List[Dict[str, Any]]) -> int:
    """UTF-8 size of the JSON form of ``rows``"""
    return len(json.dumps(rows, ensure_ascii=False).encode("utf-8"))


def small_dataset_payload(
    rows: List[Dict[str, Any]],
    max_cells: int,
    max_bytes: int,
) -> Optional[List[Dict[str, Any]]]:
    """
    Return ``rows`` when the dataset is small enough to inline in the
    analysis record, otherwise None. Both limits are inclusive.
    """
    if not rows:
        return None
    cells = len(rows) * len(rows[0])
    if cells > max_cells:
        return None
    if serialized_size(rows) > max_bytes:
        return None
    return rows


def _header_width(csv_text: str) -> int:
    """Field count of the first non-blank record"""
    for record in csv.reader(io.StringIO(csv_text)):
        if len(record) > 1 or (record and record[0].strip()):
            return len(record)
    return 0


@dataclass
class NormalizedCsv:
    """Cleaned tabular data"""
    cleaned_rows: List[Dict[str, Any]]
    cleaned_headers: List[str]
    original_headers: List[str] = field(default_factory=list)
    parse_warnings: List[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.cleaned_rows)

    @property
    def column_count(self) -> int:
        return len(self.cleaned_headers)

    @property
    def is_empty(self) -> bool:
        return self.row_count == 0 or self.column_count == 0

    def sample(self, size: int, max_chars: int) -> List[Dict[str, Optional[str]]]:
        """First ``size`` rows with every value stringified and truncated"""
        return [
            {
                key: (str(value)[:max_chars] if value is not None else None)
                for key, value in row.items()
            }
            for row in self.cleaned_rows[:size]
        ]

    def to_csv(self) -> str:
        frame = pd.DataFrame(self.cleaned_rows, columns=self.cleaned_headers, dtype=object)
        return frame.to_csv(index=False)


class CsvNormalizer:
    """
    Parses and cleans CSV text
    
    Steps:
    1. Parse every cell as text; the first record is the header
    2. Clean headers (whitespace collapsed, trimmed, blanks named by position)
    3. Drop rows that are blank in every column
    4. Drop columns that are blank in every remaining row
    5. Drop rows left blank by the column pruning
    6. Coerce cell values (numbers, booleans) on a best-effort basis
    
    A row with more fields than the header keeps its first fields and the
    extra ones are dropped with a parse warning.
    """
    
    MAX_LOGGED_WARNINGS = 5
    
    def __init__(self):
        self.parse_warnings: List[str] = []
        self._width = 0
    
    def normalize(self, csv_text: str) -> NormalizedCsv:
        if not isinstance(csv_text, str):
            raise InputValidationError("Invalid CSV content provided for preprocessing.")
        
        self.parse_warnings = []
        table = self._read(csv_text)
        if table is None or len(table) < 2:
            return NormalizedCsv([], [], parse_warnings=self.parse_warnings)
        
        original_headers = list(table.iloc[0].fillna("").astype(str))
        frame = table.iloc[1:].copy()
        frame.columns = self._dedupe([
            clean_header(header) or f"Unnamed: {position}"
            for position, header in enumerate(original_headers)
        ])
        frame = frame.fillna("").astype(str)
        
        blank = frame.apply(lambda column: column.str.strip().eq(""))
        
        keep_rows = ~blank.all(axis=1)
        frame, blank = frame[keep_rows], blank[keep_rows]
        if frame.empty:
            logger.info("No data rows after initial filtering")
            return NormalizedCsv([], [], original_headers, self.parse_warnings)
        
        keep_columns = ~blank.all(axis=0)
        frame, blank = frame.loc[:, keep_columns], blank.loc[:, keep_columns]
        
        keep_rows = ~blank.all(axis=1)
        frame = frame[keep_rows]
        
        headers = list(frame.columns)
        rows = [
            {header: coerce_cell(value) for header, value in zip(headers, values)}
            for values in frame.itertuples(index=False, name=None)
        ]
        if not rows:
            headers = []
        
        return NormalizedCsv(rows, headers, original_headers, self.parse_warnings)
    
    def _read(self, csv_text: str) -> Optional[pd.DataFrame]:
        """
        Read the whole file, header included, as text cells
        
        With ``header=None`` the header record fixes the column count, so a
        longer data row always reaches ``_on_bad_line`` instead of turning the
        first column into an index.
        """
        if not csv_text.strip():
            return None
        self._width = _header_width(csv_text)
        try:
            return pd.read_csv(
                io.StringIO(csv_text),
                header=None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                engine="python",
                on_bad_lines=self._on_bad_line,
            )
        except EmptyDataError:
            return None
        except ParserError as exc:
            raise InputValidationError(f"CSV could not be parsed: {exc}") from exc
    
    def _on_bad_line(self, fields: List[str]) -> List[str]:
        """Log a row with too many fields and keep the fields under the header"""
        warning = f"Row has {len(fields)} fields, expected {self._width}; extra fields dropped: {fields[:5]}"
        if len(self.parse_warnings) < self.MAX_LOGGED_WARNINGS:
            logger.warning("CSV parse warning: %s", warning)
        self.parse_warnings.append(warning)
        return fields[:self._width]
    
    @staticmethod
    def _dedupe(headers: List[str]) -> List[str]:
        """Suffix repeated header names so every column stays addressable"""
        seen: Dict[str, int] = {}
        result = []
        for header in headers:
            count = seen.get(header, 0)
            seen[header] = count + 1
            result.append(header if count == 0 else f"{header} ({count + 1})")
        return result

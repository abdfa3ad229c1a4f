"""
CSV Tokenizer
Quote-aware, character-level scanner turning raw review exports into a grid of cells.
"""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple
import logging
import re

logger = logging.getLogger(__name__)

QUOTE = '"'
BOM = "\ufeff"
_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class RawGrid(tuple):
    """
    Immutable rows x columns grid of strings. Row 0 is the header row.

    Rows may be ragged; use `cell()` for tolerant access.
    """

    def __new__(cls, rows: Iterable[Sequence[str]] = ()):
        return super().__new__(cls, (tuple(r) for r in rows))

    @property
    def header(self) -> Tuple[str, ...]:
        return self[0] if self else ()

    @property
    def data_rows(self) -> Tuple[Tuple[str, ...], ...]:
        return tuple(self[1:])

    def cell(self, row: int, col: int) -> str:
        """Out-of-range indices read as an empty cell, never an error."""
        if row < 0 or col < 0 or row >= len(self):
            return ""
        cells = self[row]
        if col >= len(cells):
            return ""
        return cells[col]

    def __repr__(self) -> str:
        return f"RawGrid(rows={len(self)})"


def detect_delimiter(text: str) -> str:
    """Compare comma and semicolon counts on the first line; commas win ties."""
    first_line = _LINE_BREAK.split(text, 1)[0]
    comma_count = first_line.count(",")
    semi_count = first_line.count(";")
    return ";" if semi_count > comma_count else ","


def tokenize(text: str, delimiter: Optional[str] = None) -> RawGrid:
    """
    Single pass over `text` with one character of lookahead.

    Known degenerate case: an unterminated quote swallows the remainder of the
    input into a single cell. That is surfaced as a data-quality issue by the
    normalizer and is not corrected here.
    """
    if not text:
        return RawGrid()
    if text.startswith(BOM):
        text = text[len(BOM):]
    if delimiter is None:
        delimiter = detect_delimiter(text)

    rows: List[List[str]] = []
    row: List[str] = []
    cell: List[str] = []
    in_quoted_field = False
    # True once the current row has seen any character (even structural ones)
    row_started = False

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if ch == QUOTE and in_quoted_field and nxt == QUOTE:
            cell.append(QUOTE)
            row_started = True
            i += 2
            continue

        if ch == QUOTE:
            in_quoted_field = not in_quoted_field
            row_started = True
        elif ch == delimiter and not in_quoted_field:
            row.append("".join(cell))
            cell = []
            row_started = True
        elif ch == "\r" and nxt == "\n" and not in_quoted_field:
            row.append("".join(cell))
            rows.append(row)
            row, cell, row_started = [], [], False
            i += 2
            continue
        elif ch in ("\n", "\r") and not in_quoted_field:
            row.append("".join(cell))
            rows.append(row)
            row, cell, row_started = [], [], False
        else:
            cell.append(ch)
            row_started = True
        i += 1

    # Text ending on a line break leaves nothing pending: no phantom row.
    if row_started:
        row.append("".join(cell))
        rows.append(row)

    if in_quoted_field:
        logger.warning(
            "CSV tokenizer: unterminated quoted field; remainder of input absorbed into one cell (rows=%d)",
            len(rows),
        )

    return RawGrid(_drop_trailing_blank_rows(rows))


def _drop_trailing_blank_rows(rows: List[List[str]]) -> List[List[str]]:
    end = len(rows)
    while end > 0 and is_blank_row(rows[end - 1]):
        end -= 1
    return rows[:end]


def is_blank_row(cells: Sequence[str]) -> bool:
    """True when every cell is empty or whitespace (blank lines, `,,,` rows)."""
    return all(not c.strip() for c in cells)


def join_row(cells: Sequence[str], delimiter: str = ",") -> str:
    """Serialize a row of plain (unquoted) cells back to one line."""
    return delimiter.join(cells)

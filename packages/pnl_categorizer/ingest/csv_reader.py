"""Read bank-export CSV files into header-keyed rows.

Exports differ in encoding (UTF-8 with or without BOM, occasionally
cp1250 from Polish banks) and delimiter (``,`` or ``;``). Both are detected
from the file content. Header preambles are not supported.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Any

from ..errors import InputError

_ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp1250")
_DELIMITERS = ",;\t|"


@dataclass(frozen=True, slots=True)
class CsvBatch:
    headers: tuple[str, ...]
    rows: list[dict[str, Any]]

    def sample(self, n: int) -> list[dict[str, Any]]:
        return self.rows[:n]


def _decode(data: bytes) -> str:
    for enc in _ENCODINGS:
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    raise InputError("CSV file is not valid UTF-8 or cp1250 text", reason="empty_csv")


def _delimiter_for(text: str) -> str:
    header_line = text.split("\n", 1)[0]
    best = max(_DELIMITERS, key=header_line.count)
    return best if header_line.count(best) > 0 else ","


def parse_csv_text(text: str) -> CsvBatch:
    """Parse CSV ``text`` with a header row.

    Raises :class:`InputError` (``empty_csv``) when there is no header or no
    data row.
    """

    text = text.lstrip("\ufeff")
    if not text.strip():
        raise InputError("CSV file is empty", reason="empty_csv")

    reader = csv.DictReader(io.StringIO(text, newline=""), delimiter=_delimiter_for(text))
    fieldnames = reader.fieldnames or []
    headers = tuple(h.strip() for h in fieldnames if h is not None)
    if not any(headers):
        raise InputError("CSV file has no header row", reason="empty_csv")

    rows: list[dict[str, Any]] = []
    for raw in reader:
        rows.append({(k.strip() if isinstance(k, str) else k): v for k, v in raw.items()})
    if not rows:
        raise InputError("CSV file has a header but no data rows", reason="empty_csv")
    return CsvBatch(headers=headers, rows=rows)


def read_csv_file(csv_path: str | PathLike[str]) -> CsvBatch:
    p = Path(csv_path)
    try:
        data = p.read_bytes()
    except FileNotFoundError as exc:
        raise InputError(f"CSV file not found: {p}", reason="missing_file") from exc
    return parse_csv_text(_decode(data))


__all__ = ["CsvBatch", "parse_csv_text", "read_csv_file"]

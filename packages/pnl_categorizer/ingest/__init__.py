"""CSV reading and row-to-transaction parsing."""

from .csv_reader import CsvBatch, parse_csv_text, read_csv_file
from .rows import parse_amount, parse_date, row_to_transaction

__all__ = [
    "CsvBatch",
    "parse_amount",
    "parse_csv_text",
    "parse_date",
    "read_csv_file",
    "row_to_transaction",
]

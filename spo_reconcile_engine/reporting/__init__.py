"""Reporting package — spreadsheet-friendly output of finished runs."""

from .csv_export import export_csv

__all__ = [
    "export_csv",
]

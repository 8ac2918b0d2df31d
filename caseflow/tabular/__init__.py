"""Tabular extraction over vault documents."""

from .cell_agent import extract_cell, extract_row, parse_extracted_value
from .grid import ExtractionGrid, compute_progress

__all__ = [
    "ExtractionGrid",
    "compute_progress",
    "extract_cell",
    "extract_row",
    "parse_extracted_value",
]

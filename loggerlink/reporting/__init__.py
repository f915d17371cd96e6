"""Reporting helpers."""
from __future__ import annotations

from .chart import (
    Chart,
    Series,
    build_chart,
    render_chart,
    render_single_chart,
    select_series,
    series_from_rows,
)
from .exporters import export_readings, write_csv, write_json

__all__ = [
    "Chart",
    "Series",
    "build_chart",
    "export_readings",
    "render_chart",
    "render_single_chart",
    "select_series",
    "series_from_rows",
    "write_csv",
    "write_json",
]

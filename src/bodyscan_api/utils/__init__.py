"""Utility functions."""

from .dates import days_between, parse_scan_date, utc_now

__all__ = ["days_between", "parse_scan_date", "utc_now"]

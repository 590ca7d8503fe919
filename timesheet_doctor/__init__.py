"""Timesheet CSV ingestion, normalization and utilization alerts."""

__version__ = "0.3.0"

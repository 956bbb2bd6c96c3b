"""Batch visual regression driver for Playwright + Applitools Eyes."""

from visual_batch.entries import read_entries
from visual_batch.models import ComparisonResult, ComparisonStatus, Entry, RunSummary, Verdict
from visual_batch.orchestrator import drive_batch, run_batch
from visual_batch.summary import SummaryAggregator, render

__version__ = "0.1.0"

__all__ = [
    "ComparisonResult",
    "ComparisonStatus",
    "Entry",
    "RunSummary",
    "SummaryAggregator",
    "Verdict",
    "drive_batch",
    "read_entries",
    "render",
    "run_batch",
]

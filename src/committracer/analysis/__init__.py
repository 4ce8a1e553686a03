"""Commit analytics: ticket extraction, test detection and author aggregation."""

from committracer.analysis.aggregator import AggregationEngine
from committracer.analysis.stats import AggregationResult, AuthorStats
from committracer.analysis.test_files import commit_touches_tests, is_test_file
from committracer.analysis.tickets import extract_tickets

__all__ = [
    "AggregationEngine",
    "AggregationResult",
    "AuthorStats",
    "extract_tickets",
    "is_test_file",
    "commit_touches_tests",
]

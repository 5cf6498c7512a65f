"""
HTML report generation for batch scans.

Key exports:
    - generate_report: Render a batch's HTML report
    - write_report: Render and write it to disk
"""

from .generator import generate_report, write_report

__all__ = [
    "generate_report",
    "write_report",
]

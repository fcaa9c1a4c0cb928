"""
Core Module Package.

This package contains the core infrastructure components
that all other modules depend on.

Components:
- clock: Testable wall clock and timestamp helpers
- exceptions: Custom exception hierarchy
- constants: System-wide constants
"""

from .clock import ClockProtocol, MockClock, SystemClock
from .exceptions import IndexerException, Severity

__all__ = [
    "ClockProtocol",
    "MockClock",
    "SystemClock",
    "IndexerException",
    "Severity",
]

"""
Enumeration types for enipam.

This module defines the enumeration types shared across the engine and CLI.
"""

from enum import Enum


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with backtrace and variable diagnosis
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"


# =============================================================================
# Diagnostic Enums
# =============================================================================


class DiagnosticSeverity(str, Enum):
    """
    How bad an afflicted diagnostic rule is.

    - INFO: Cosmetic or informational mismatch
    - DEGRADED: Allocation still works but some path is unreliable
    - BROKEN: Invariants of the engine are violated on this instance
    """

    INFO = "info"
    DEGRADED = "degraded"
    BROKEN = "broken"

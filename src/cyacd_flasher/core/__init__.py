"""
Core module for cyacd flasher.

This module provides:
- Device discovery with retry policy (discovery.py)
- CLI value parsing (parsing.py)
- Session result objects (results.py)
- Error codes and remediation hints (messages.py)
"""

from .discovery import RetryPolicy, discover_transport
from .parsing import parse_key, parse_int, parse_mode
from .results import SessionResult, SessionState
from .messages import ErrorCode, error_code_for, remediation_for

__all__ = [
    # Discovery
    "RetryPolicy",
    "discover_transport",
    # Parsing
    "parse_key",
    "parse_int",
    "parse_mode",
    # Results
    "SessionResult",
    "SessionState",
    # Messages
    "ErrorCode",
    "error_code_for",
    "remediation_for",
]

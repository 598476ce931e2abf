"""
Utility helpers shared across workunit packages.
"""

from .logging import configure_logging, get_correlation_id, get_logger, set_correlation_id, time_call
from .redaction import redact_mapping, redact_params, redact_value

__all__ = [
    "configure_logging",
    "get_correlation_id",
    "get_logger",
    "set_correlation_id",
    "time_call",
    "redact_mapping",
    "redact_params",
    "redact_value",
]

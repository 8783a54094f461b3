"""Utility modules."""

from .logging_setup import (
    setup_category_logging,
    flush_all_loggers,
    shutdown_logging,
    reset_session_run_number,
    get_logger,
    set_verbose_mode,
)
from .timezone import now_utc, now_ms, ms_to_datetime, month_key

__all__ = [
    # Logging setup
    "setup_category_logging",
    "flush_all_loggers",
    "shutdown_logging",
    "reset_session_run_number",
    "get_logger",
    "set_verbose_mode",
    # Time helpers
    "now_utc",
    "now_ms",
    "ms_to_datetime",
    "month_key",
]

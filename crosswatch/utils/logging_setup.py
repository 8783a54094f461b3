"""
Logging setup with categories and per-run log files.

Provides:
- 4 log categories: system, stream, model, data
- Automatic module → category routing
- File logging through a queue listener (non-blocking for the event loop)
- Console output (opt-in)
- JSON line formatting with optional structured payloads

Categories:
- system: Startup, shutdown, config, orchestration, resource guard
- stream: Exchange connectivity, symbol sessions, supervisor reconciliation
- model: Hyperparameter search, training, registry, predictions
- data: Training data store, label backfill, CSV export
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from queue import Queue
from typing import Dict, List, Optional

# =============================================================================
# GLOBAL STATE
# =============================================================================

# Global run number for this session (determined at startup)
_session_run_number: Optional[int] = None

# Global verbose flag (set via --verbose CLI flag)
_verbose_mode: bool = False

# Global log level override (set via --log-level CLI flag)
_log_level_override: Optional[str] = None

# Configured category loggers
_category_loggers: Dict[str, logging.Logger] = {}

# Queue listeners for async file logging (one per category)
_queue_listeners: List[logging.handlers.QueueListener] = []

# =============================================================================
# LOG CATEGORIES AND ROUTING
# =============================================================================

ROOT_LOGGER = "crosswatch"

CATEGORIES = ["system", "stream", "model", "data"]

CATEGORY_SUFFIXES = {
    "system": "sys",
    "stream": "str",
    "model": "mdl",
    "data": "dat",
}

# Module path → category routing
# More specific paths should come first
MODULE_ROUTING: List[tuple[str, str]] = [
    # Exchange connectivity and sessions
    ("crosswatch.infrastructure.adapters.binance_futures", "stream"),
    ("crosswatch.application.symbol_session", "stream"),
    ("crosswatch.application.stream_supervisor", "stream"),

    # Model lifecycle
    ("crosswatch.infrastructure.adapters.file_model_registry", "model"),
    ("crosswatch.application.model_training_service", "model"),
    ("crosswatch.application.prediction_service", "model"),
    ("crosswatch.application.prediction_tracker", "model"),
    ("crosswatch.domain.ml", "model"),

    # Training data
    ("crosswatch.infrastructure.stores", "data"),
    ("crosswatch.application.label_backfill", "data"),

    # Monitoring
    ("crosswatch.infrastructure.monitoring", "system"),

    # Default fallback
    ("crosswatch", "system"),
]


def get_category_for_module(module_name: str) -> str:
    """
    Determine the log category for a given module name.

    Args:
        module_name: Full module path (e.g., "crosswatch.application.symbol_session").

    Returns:
        Category name (system, stream, model, or data).
    """
    for prefix, category in MODULE_ROUTING:
        if module_name.startswith(prefix):
            return category
    return "system"


# =============================================================================
# GLOBAL CONFIGURATION
# =============================================================================

def set_verbose_mode(enabled: bool) -> None:
    """Enable or disable verbose mode (DEBUG level logging)."""
    global _verbose_mode
    _verbose_mode = enabled


def set_log_level_override(level: Optional[str]) -> None:
    """Set a global log level override."""
    global _log_level_override
    _log_level_override = level.upper() if level else None


def get_effective_log_level() -> str:
    """Get the effective log level (considering verbose mode and overrides)."""
    if _verbose_mode:
        return "DEBUG"
    if _log_level_override:
        return _log_level_override
    return "INFO"


# =============================================================================
# FORMATTERS
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Formats log records as single-line JSON with timestamp, level, category,
    message, the optional ``data`` payload passed through ``extra`` and the
    exception text when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "cat": self._get_category(record.name),
            "msg": record.getMessage(),
        }

        if hasattr(record, "data") and record.data:
            log_entry["data"] = record.data

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)

    def _get_category(self, logger_name: str) -> str:
        """Extract category from logger name."""
        if logger_name.startswith(f"{ROOT_LOGGER}."):
            parts = logger_name.split(".")
            if len(parts) >= 2 and parts[1] in CATEGORIES:
                return parts[1]
        return "system"


class ConsoleFormatter(logging.Formatter):
    """
    Console formatter with color support.

    Format: [LEVEL] [category] message
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname
        category = record.name.rsplit(".", 1)[-1]
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        if self.use_colors:
            color = self.COLORS.get(level, "")
            return f"{color}[{level:7}]{self.RESET} [{category}] {message}"
        return f"[{level:7}] [{category}] {message}"


# =============================================================================
# LOGGER FACTORY
# =============================================================================

def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for the given module, routed to the correct category.

    Args:
        module_name: Module name (typically __name__).

    Returns:
        Logger instance for the module's category.

    Example:
        from crosswatch.utils.logging_setup import get_logger
        logger = get_logger(__name__)
        logger.info("Processing...")
    """
    category = get_category_for_module(module_name)
    return logging.getLogger(f"{ROOT_LOGGER}.{category}")


# =============================================================================
# RUN NUMBER MANAGEMENT
# =============================================================================

def _get_next_run_number(log_dir: str, env: str, date_str: str) -> int:
    """Find the next available run number for today's date."""
    log_path = Path(log_dir) / date_str
    if not log_path.exists():
        return 1

    # Pattern: crosswatch_{env}_{suffix}_{date}_{N}.log
    suffixes = "|".join(CATEGORY_SUFFIXES.values())
    pattern = re.compile(
        rf'^crosswatch_{re.escape(env)}_(?:{suffixes})_{re.escape(date_str)}_(\d+)\.log$'
    )

    max_num = 0
    for filename in os.listdir(log_path):
        match = pattern.match(filename)
        if match:
            max_num = max(max_num, int(match.group(1)))

    return max_num + 1


def _get_session_run_number(log_dir: str, env: str) -> int:
    """Get or initialize the session run number."""
    global _session_run_number

    if _session_run_number is None:
        date_str = datetime.now().strftime('%Y-%m-%d')
        _session_run_number = _get_next_run_number(log_dir, env, date_str)

    return _session_run_number


def reset_session_run_number() -> None:
    """Reset the session run number (for testing)."""
    global _session_run_number
    _session_run_number = None


# =============================================================================
# CATEGORY LOGGING SETUP
# =============================================================================

def setup_category_logging(
    env: str,
    log_dir: str = "./logs",
    level: str = "INFO",
    console: bool = False,
    verbose: bool = False,
    json_files: bool = True,
) -> Dict[str, logging.Logger]:
    """
    Set up separate log files for each category.

    Creates log files in a date-specific subdirectory:
    - logs/{date}/crosswatch_{env}_sys_{date}_{run}.log - System events
    - logs/{date}/crosswatch_{env}_str_{date}_{run}.log - Stream events
    - logs/{date}/crosswatch_{env}_mdl_{date}_{run}.log - Model events
    - logs/{date}/crosswatch_{env}_dat_{date}_{run}.log - Training data events

    Args:
        env: Environment name (dev/prod).
        log_dir: Base directory for log files.
        level: Default logging level.
        console: Enable console output.
        verbose: Enable verbose (DEBUG) mode.
        json_files: Write JSON lines (True) or plain text (False) to files.

    Returns:
        Dict mapping category name to logger.
    """
    global _category_loggers, _queue_listeners

    # Tear down previous handlers so reconfiguration does not leak file handles
    for listener in _queue_listeners:
        listener.stop()
    _queue_listeners.clear()

    for category in CATEGORIES:
        logger = logging.getLogger(f"{ROOT_LOGGER}.{category}")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    set_verbose_mode(verbose)
    if not verbose:
        set_log_level_override(level)

    date_str = datetime.now().strftime('%Y-%m-%d')
    log_path = Path(log_dir) / date_str
    log_path.mkdir(parents=True, exist_ok=True)

    run_number = _get_session_run_number(log_dir, env)
    effective_level = getattr(logging, get_effective_log_level(), logging.INFO)

    for category in CATEGORIES:
        suffix = CATEGORY_SUFFIXES[category]
        filename = f"crosswatch_{env}_{suffix}_{date_str}_{run_number}.log"

        logger = logging.getLogger(f"{ROOT_LOGGER}.{category}")
        logger.setLevel(effective_level)
        logger.propagate = False

        file_handler = logging.FileHandler(
            filename=str(log_path / filename),
            mode='a',
            encoding='utf-8'
        )
        if json_files:
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
        file_handler.setLevel(effective_level)

        log_queue: Queue = Queue(-1)
        logger.addHandler(logging.handlers.QueueHandler(log_queue))

        listener = logging.handlers.QueueListener(
            log_queue, file_handler, respect_handler_level=True
        )
        listener.start()
        _queue_listeners.append(listener)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(ConsoleFormatter(use_colors=sys.stderr.isatty()))
            console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
            logger.addHandler(console_handler)

        _category_loggers[category] = logger

    return _category_loggers


def flush_all_loggers() -> None:
    """Flush all handlers to ensure logs are written to disk."""
    for category in CATEGORIES:
        logger = logging.getLogger(f"{ROOT_LOGGER}.{category}")
        for handler in logger.handlers:
            handler.flush()


def shutdown_logging() -> None:
    """Shutdown all queue listeners (call during application shutdown)."""
    global _queue_listeners
    for listener in _queue_listeners:
        listener.stop()
    _queue_listeners.clear()

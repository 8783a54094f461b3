"""Runtime resource monitoring."""

from .resource_guard import MemoryGuard, process_rss_mb

__all__ = ["MemoryGuard", "process_rss_mb"]

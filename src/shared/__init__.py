"""Shared utilities and helpers."""
from shared.diagnostics import (
    log_comprehensive_diagnostics,
    log_memory_usage,
    log_thread_status,
)
from shared.progress import ConsoleProgress, SingleLineRenderer

__all__ = [
    'ConsoleProgress',
    'SingleLineRenderer',
    'log_comprehensive_diagnostics',
    'log_memory_usage',
    'log_thread_status',
]

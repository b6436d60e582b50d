"""
Run Logging Module

Provides per-run logging capabilities for workflow executions.
"""
from flowcore.logging.run_logger import LogEntry, RunLogger, get_run_logger, release_run_logger

__all__ = ['LogEntry', 'RunLogger', 'get_run_logger', 'release_run_logger']

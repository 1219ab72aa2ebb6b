"""
Centralized logging for the dictation pipeline.

Provides structured JSON logging with service tagging and
log rotation.
"""

from dictation.logging.setup import get_logger, setup_logging

__all__ = ["setup_logging", "get_logger"]

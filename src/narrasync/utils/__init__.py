"""Utility functions for narrasync."""

from narrasync.utils.logging import get_logger
from narrasync.utils.polling import PollTimeoutError, poll_until_complete

__all__ = ["get_logger", "PollTimeoutError", "poll_until_complete"]

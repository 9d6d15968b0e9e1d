"""Utilities — logging setup."""

from req_traceability.utils.logger import setup_logging

__all__ = ["setup_logging"]

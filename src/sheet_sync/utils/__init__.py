"""Utility modules for sheet-sync."""

from sheet_sync.utils.logging import get_logger, setup_logging
from sheet_sync.utils.storage import StorageManager

__all__ = ["get_logger", "setup_logging", "StorageManager"]

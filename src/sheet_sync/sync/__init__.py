"""Synchronization between spreadsheets and the record store."""

from sheet_sync.sync.conflict import ConflictPolicy
from sheet_sync.sync.engine import ConfigSyncResult, PullSyncJob, SyncResult
from sheet_sync.sync.mapper import RowMapper
from sheet_sync.sync.writeback import (
    WriteBackEvent,
    WriteBackHandler,
    WriteBackResult,
    WriteOperation,
)

__all__ = [
    "ConfigSyncResult",
    "ConflictPolicy",
    "PullSyncJob",
    "RowMapper",
    "SyncResult",
    "WriteBackEvent",
    "WriteBackHandler",
    "WriteBackResult",
    "WriteOperation",
]

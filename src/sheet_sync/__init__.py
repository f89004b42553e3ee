"""Two-way synchronization between Google Sheets and entity records."""

__version__ = "0.1.0"

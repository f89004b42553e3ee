"""Error types raised by the synchronization engine."""


class SheetSyncError(Exception):
    """Base class for all sheet-sync errors."""


class ConfigError(SheetSyncError):
    """Malformed sheet URL, missing configuration, or invalid mapping."""


class AuthError(SheetSyncError):
    """No stored credential, or the provider rejected the refresh token.

    Not retryable: the user has to reconnect their Google account.
    """


class RemoteError(SheetSyncError):
    """The Google API answered with a non-2xx status or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize remote error.

        Args:
            message: Error description.
            status_code: HTTP status code, if a response was received.
        """
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(SheetSyncError):
    """A store read or write failed."""

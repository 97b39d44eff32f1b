class RndcBridgeError(Exception):
    """Base exception for RNDC Bridge errors."""
    pass

class ConfigError(RndcBridgeError):
    """Configuration loading specific errors."""
    pass

class DataSourceError(RndcBridgeError):
    """Spreadsheet ingestion specific errors."""
    pass

class UnsupportedOperationError(RndcBridgeError, ValueError):
    """Operation kind cannot be used in this context (e.g. a query as a batch)."""
    pass

class EmptyBatchError(RndcBridgeError):
    """A batch needs at least one submission record."""
    pass

class BatchNotFoundError(RndcBridgeError):
    pass

class InvalidTransitionError(RndcBridgeError):
    """Status change not allowed by the batch/submission state machine."""
    pass

class ConnectionFailure(RndcBridgeError):
    """The batch API could not be reached or answered with an HTTP error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

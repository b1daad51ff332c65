class LogScanError(Exception):
    """Base class for logscan failures."""


class ConfigurationError(LogScanError):
    """Job parameters or configuration cannot be used to run a job."""


class LocationAccessError(LogScanError):
    """A location root or a single file cannot be reached (missing, denied, unreachable host)."""


class ArchiveError(LogScanError):
    """The output archive cannot be opened or closed."""


class WriteError(LogScanError):
    """A result sink failed to write an item."""

"""Error types raised by the event sync core."""


class SyncError(Exception):
    """Base class for all event sync errors."""


class NotFoundError(SyncError):
    """Lookup miss on the store or the registry."""


class PersistenceError(SyncError):
    """Reading or writing a persisted event record failed."""


class PlatformActionError(SyncError):
    """A call to the chat platform failed."""


class ValidationError(SyncError):
    """Malformed or missing required input."""

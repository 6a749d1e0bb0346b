"""Exception hierarchy for the backend layer."""


class CachedStoreError(Exception):
    """Base class for all cachedstore errors."""


class BackendError(CachedStoreError):
    """A durable storage operation failed."""

    def __init__(self, message: str, uri: str = ""):
        self.uri = uri
        super().__init__(f"{message} ({uri})" if uri else message)


class SerializationError(BackendError):
    """A value could not be encoded for storage."""

"""Exception types raised across the bot."""


class ConfigurationError(ValueError):
    """Required configuration is missing or invalid."""


class PolicyLoadError(Exception):
    """The persisted policy document could not be read or parsed."""


class RehostError(Exception):
    """Base class for failures while re-hosting a single link."""


class ProbeError(RehostError):
    """The metadata (HEAD) request failed."""


class OversizeError(RehostError):
    """The resource is larger than the allowed maximum."""

    def __init__(self, url: str, size: int, limit: int) -> None:
        super().__init__(f"{url} is {size} bytes (limit {limit})")
        self.url = url
        self.size = size
        self.limit = limit


class FetchError(RehostError):
    """Non-success response or transport failure while downloading."""


class StagingWriteError(RehostError):
    """The staged file could not be created or written."""


class RepublishError(RehostError):
    """The replacement message could not be published."""


class CleanupError(RehostError):
    """A staged file could not be removed."""

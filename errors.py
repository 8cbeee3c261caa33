"""
Error types raised across the sync process
"""


class SyncError(Exception):
    """Base class for all address issue sync errors"""


class ConfigurationError(SyncError):
    """Missing credentials or unresolvable tag - the process must not start"""


class SourceUnavailable(SyncError):
    """A page of source orders could not be fetched after all retries"""


class DestinationLookupFailure(SyncError):
    """Destination order lookup failed with a transient or API error"""


class TagApplicationFailure(SyncError):
    """Applying the tag to a destination order failed"""

class RegistryIndexError(Exception):
    """Base class for indexing pipeline failures."""
    pass


class DiscoveryError(RegistryIndexError):
    """
    Raised when the registry archive cannot be downloaded or its listing
    is unrecognized. Fatal to an indexing run.
    """
    pass


class RegistryFetchError(RegistryIndexError):
    """Raised for a single registry data file; the fetcher skips that registry."""
    def __init__(self, identifier: str, reason: str):
        self.identifier = identifier
        self.reason = reason
        super().__init__(f"{identifier}: {reason}")


class IndexingInProgressError(RegistryIndexError):
    """Raised when a run is triggered while another is still running."""
    def __init__(self, history_id: int | None = None):
        self.history_id = history_id
        super().__init__("Indexing already in progress")


class IndexingNotRunningError(RegistryIndexError):
    pass

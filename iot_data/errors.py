"""Data-access error taxonomy shared by adapters, repositories and the data context."""


class DataAccessError(Exception):
    """Base class for failures surfaced by the data layer."""


class AdapterError(DataAccessError):
    """One source failed. Recorded and used to trigger fallback."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"[{source}] {message}")
        self.source = source


class AllSourcesFailedError(DataAccessError):
    """Every configured source failed for one request."""


class NotConfiguredError(DataAccessError):
    """A repository was built without any adapter."""


class NormalizationError(DataAccessError):
    """A raw record could not be turned into a canonical one."""

"""Error taxonomy for batch visual comparison runs."""


class VisualBatchError(Exception):
    pass


class ConfigurationError(VisualBatchError):
    pass


class SourceNotFoundError(VisualBatchError):
    """The entry source is missing or unreadable; no entry can be attempted."""


class EntryFailure(VisualBatchError):
    """Base for failures isolated to a single entry."""


class PageAcquisitionFailure(EntryFailure):
    pass


class SessionOpenFailure(EntryFailure):
    pass


class NavigationFailure(EntryFailure):
    pass


class NavigationTimeout(NavigationFailure):
    pass


class CheckpointFailure(EntryFailure):
    pass


class SessionCloseFailure(EntryFailure):
    pass


class AbortFailure(VisualBatchError):
    """Cleanup failure; logged only, never recorded on a result."""

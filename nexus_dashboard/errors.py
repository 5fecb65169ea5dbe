"""Exceptions raised by the dashboard core."""


class DashboardError(Exception):
    """Base class for every recoverable dashboard failure."""


class BusyError(DashboardError):
    """An operation of the same kind is already in flight."""


class RefreshFailed(DashboardError):
    """A data refresh was discarded; the previous snapshot is still current."""


class FetchTimeout(RefreshFailed):
    """The remote data source did not answer within the fetch timeout."""


class StoreClosed(DashboardError):
    """The data store was torn down while a refresh was outstanding."""


class SessionClosed(DashboardError):
    """The chat session was torn down."""


class NotAuthenticated(DashboardError):
    """No identity is stored, so the dashboard refuses to operate."""

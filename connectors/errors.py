"""
Module: connectors.errors

Exceptions raised by collaborator connectors. The optimization core
catches these per listing; they never cross a cadence boundary.
"""


class ConnectorError(Exception):
    """Base class for collaborator failures."""


class CatalogError(ConnectorError):
    """A catalog read or write failed (unknown listing, rejected write, ...)."""

    def __init__(self, message: str, listing_id: str | None = None):
        super().__init__(message)
        self.listing_id = listing_id


class MetricsUnavailableError(ConnectorError):
    """Requested analytics could not be produced."""


class ContentGenerationError(ConnectorError):
    """The content generator returned nothing usable."""

"""Exceptions raised by the catalog engine."""


class CatalogError(Exception):
    """Base class for catalog errors."""


class CatalogWriteError(CatalogError):
    """A batch write transaction failed and was rolled back."""


class ScanError(CatalogError):
    """A scan could not be performed at all."""


class ScanInProgressError(ScanError):
    """Another scan is already running against the same catalog."""


class TagError(CatalogError, ValueError):
    """Invalid operation on the tag tree."""


class TagNotFoundError(TagError):
    """A referenced tag does not exist."""

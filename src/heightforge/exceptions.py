"""Custom exceptions for terrain generation."""


class TerrainError(Exception):
    """Base exception for terrain errors."""

    pass


class ConfigurationError(TerrainError, ValueError):
    """Raised when an operation is configured in a way it cannot run.

    Always raised before the target heightfield is touched.
    """

    pass


class MissingResourceError(TerrainError, LookupError):
    """Raised when a required input (height image, prototype) is absent."""

    pass


class OutOfRangeError(TerrainError, AssertionError):
    """Raised when a finished heightfield holds values outside [0, 1]."""

    pass

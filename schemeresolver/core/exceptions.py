"""
Typed failures raised by the scheme resolution engine.

Components raise these; ``SchemeResolver`` turns them into ``Result`` values
so that callers can skip an unavailable scheme and carry on with the rest.
"""


class SchemeResolverError(Exception):
    """Base exception for scheme resolution failures."""

    def __init__(self, message: str, scheme_id: int = None):
        super().__init__(message)
        self.message = message
        self.scheme_id = scheme_id

    def __str__(self):
        if self.scheme_id is None:
            return self.message
        return f"{self.message} (scheme {self.scheme_id})"


class DatabaseConnectionException(SchemeResolverError):
    """Raised when a scheme's backing store cannot be reached or queried."""


class DatabaseConfigurationException(SchemeResolverError):
    """Raised when scheme metadata is unusable (no primary key, bad types)."""


class CacheBuildException(DatabaseConnectionException):
    """Raised when the profile cache could not be built; nothing is kept."""

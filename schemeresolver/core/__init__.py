from .data_models import (
    AlleleDesignation,
    ErrorKind,
    ResolutionError,
    ResolvedFieldValues,
    Result,
    Scheme,
    Status,
)
from .exceptions import (
    CacheBuildException,
    DatabaseConfigurationException,
    DatabaseConnectionException,
    SchemeResolverError,
)

__all__ = [
    # DATA MODEL
    "AlleleDesignation",
    "ErrorKind",
    "ResolutionError",
    "ResolvedFieldValues",
    "Result",
    "Scheme",
    "Status",
    # EXCEPTIONS
    "CacheBuildException",
    "DatabaseConfigurationException",
    "DatabaseConnectionException",
    "SchemeResolverError",
]

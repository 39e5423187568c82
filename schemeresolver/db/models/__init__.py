from .model_schemes import SchemeModel, LocusModel, SchemeMember, SchemeField
from .model_isolates import AlleleDesignationModel

__all__ = [
    # SCHEME METADATA
    "SchemeModel",
    "LocusModel",
    "SchemeMember",
    "SchemeField",
    # ISOLATE DATA
    "AlleleDesignationModel",
]

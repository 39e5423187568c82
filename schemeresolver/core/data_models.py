import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

import pandas as pd
from sqlalchemy.engine import URL

WILDCARD_MARKER = "N"
LEGACY_MISSING_VALUE = "-999"
WILDCARD_VALUES = (WILDCARD_MARKER, LEGACY_MISSING_VALUE)

T = TypeVar("T")


class Status(str, Enum):
    CONFIRMED = "confirmed"
    PROVISIONAL = "provisional"

    def __str__(self):
        return self.value


class ValueType(str, Enum):
    INTEGER = "integer"
    TEXT = "text"

    def __str__(self):
        return self.value


def sanitize_identifier(name: str) -> str:
    """
    Turn a locus or profile name into a safe column name.

    Primes become ``_PRIME_`` as in the profile databases themselves; any other
    character outside ``[A-Za-z0-9_]`` becomes ``_``. A leading digit gets an
    ``l_`` prefix.
    """
    cleaned = name.replace("'", "_PRIME_")
    cleaned = re.sub(r"[^A-Za-z0-9_]", "_", cleaned)
    if cleaned[:1].isdigit():
        cleaned = f"l_{cleaned}"
    return cleaned


def is_wildcard(value) -> bool:
    """True for stored locus values that stand for 'any allele'."""
    if value is None:
        return True
    text = str(value)
    return text == "" or text in WILDCARD_VALUES


@dataclass(frozen=True)
class AlleleDesignation:
    locus: str
    allele_id: str
    status: Status = Status.CONFIRMED
    date_entered: Optional[datetime] = None

    def __post_init__(self):
        object.__setattr__(self, "allele_id", str(self.allele_id))
        object.__setattr__(self, "status", Status(self.status))

    @property
    def is_confirmed(self) -> bool:
        return self.status is Status.CONFIRMED

    @classmethod
    def from_dict(cls, data: dict) -> "AlleleDesignation":
        return cls(
            locus=data["locus"],
            allele_id=data["allele_id"],
            status=data.get("status", Status.CONFIRMED),
            date_entered=data.get("date_entered"),
        )


@dataclass(frozen=True)
class Locus:
    name: str
    profile_name: Optional[str] = None
    value_type: ValueType = ValueType.TEXT
    allow_missing: bool = False

    @property
    def profile_column(self) -> str:
        """Column holding this locus in the scheme's own profile table."""
        return self.profile_name or self.name

    @property
    def cache_column(self) -> str:
        return sanitize_identifier(self.profile_column)


@dataclass(frozen=True)
class Field:
    name: str
    value_type: ValueType = ValueType.TEXT
    primary_key: bool = False

    @property
    def cache_column(self) -> str:
        return sanitize_identifier(self.name)


@dataclass(frozen=True)
class StoreDescriptor:
    """Connection attributes for a scheme database; no name means local."""

    dbase_name: Optional[str] = None
    driver: str = "postgresql"
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    table: Optional[str] = None

    @property
    def is_remote(self) -> bool:
        return bool(self.dbase_name)

    @property
    def key(self) -> Tuple:
        return (self.driver, self.host, self.port, self.dbase_name, self.user)

    def url(self) -> URL:
        if self.driver.startswith("sqlite"):
            return URL.create(self.driver, database=self.dbase_name)
        return URL.create(
            self.driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.dbase_name,
        )


@dataclass(frozen=True)
class Scheme:
    id: int
    description: str = ""
    loci: Tuple[Locus, ...] = ()
    fields: Tuple[Field, ...] = ()
    primary_key: Optional[str] = None
    allow_missing_loci: bool = False
    max_missing: Optional[int] = None
    store: StoreDescriptor = StoreDescriptor()
    use_temp_scheme_table: bool = True

    @property
    def locus_names(self) -> List[str]:
        return [locus.name for locus in self.loci]

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def get_locus(self, name: str) -> Optional[Locus]:
        for locus in self.loci:
            if locus.name == name:
                return locus
        return None

    def get_field(self, name: str) -> Optional[Field]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass
class ProfileRow:
    """One matching profile: field values plus the locus values it stores."""

    fields: Dict[str, Any]
    loci: Dict[str, Any]


class ResolvedFieldValues(dict):
    """
    Mapping of field name -> {value: Status}.

    ``record`` enforces that a confirmed value is never downgraded to
    provisional, whatever order the contributing rows arrive in.
    """

    def record(self, field_name: str, value, status: Status) -> None:
        values = self.setdefault(field_name, {})
        if values.get(value) is Status.CONFIRMED:
            return
        values[value] = Status(status)

    def values_for(self, field_name: str) -> Dict[Any, Status]:
        return self.get(field_name, {})

    def to_dataframe(self) -> pd.DataFrame:
        records = [
            {"field": f, "value": value, "status": str(status)}
            for f, values in self.items()
            for value, status in values.items()
        ]
        return pd.DataFrame(records, columns=["field", "value", "status"])


class ErrorKind(str, Enum):
    CONNECTION = "connection"
    CONFIGURATION = "configuration"
    CACHE_BUILD = "cache_build"


@dataclass(frozen=True)
class ResolutionError:
    kind: ErrorKind
    message: str
    scheme_id: Optional[int] = None
    exception: Optional[Exception] = field(default=None, compare=False)


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[ResolutionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            if self.error.exception is not None:
                raise self.error.exception
            raise RuntimeError(self.error.message)
        return self.value

    def value_or(self, default: T) -> T:
        return default if self.error is not None else self.value

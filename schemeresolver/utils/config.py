import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

from schemeresolver.core.exceptions import DatabaseConfigurationException
from schemeresolver.utils.logger import Logger

CONFIG_FILE_NAME = ".schemeresolver.toml"

MISSING_LOCUS_POLICIES = ("wildcard", "marker_only")


@dataclass
class Settings:
    """
    Runtime switches for scheme resolution.

    Defaults match a plain local install: profile caching on, persistent
    caches off, and ten loci per composite index.
    """

    db_uri: Optional[str] = None
    use_temp_scheme_table: bool = True
    materialized_views: bool = False
    max_columns_per_index: int = 10
    query_cache_size: int = 256
    metadata_ttl: Optional[float] = None
    copy_chunk_size: int = 10_000
    missing_locus_policy: str = "wildcard"
    connect_timeout: Optional[int] = None
    statement_timeout: Optional[int] = None
    extra: dict = field(default_factory=dict)

    def __post_init__(self):
        for name in ("use_temp_scheme_table", "materialized_views"):
            if not isinstance(getattr(self, name), bool):
                raise DatabaseConfigurationException(f"{name} must be true or false")  # noqa E501
        for name in ("max_columns_per_index", "query_cache_size", "copy_chunk_size"):  # noqa E501
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:  # noqa E501
                raise DatabaseConfigurationException(
                    f"{name} must be a positive integer"
                )
        for name in ("metadata_ttl", "connect_timeout", "statement_timeout"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:  # noqa E501
                raise DatabaseConfigurationException(
                    f"{name} must be a non-negative number of seconds"
                )
        if self.missing_locus_policy not in MISSING_LOCUS_POLICIES:
            raise DatabaseConfigurationException(
                f"Unknown missing_locus_policy '{self.missing_locus_policy}'"
            )

    @classmethod
    def from_dict(cls, config: dict) -> "Settings":
        known = {f.name for f in fields(cls)} - {"extra"}
        values = {}
        extra = {}
        for section in ("database", "schemes", "connections"):
            for key, value in config.get(section, {}).items():
                if key in known:
                    values[key] = value
                else:
                    extra[key] = value
        if extra:
            Logger().log(
                f"Ignoring unknown configuration keys: {', '.join(sorted(extra))}",  # noqa E501
                "WARNING",
            )
        return cls(extra=extra, **values)


def load_settings(config_file: Optional[Path] = None) -> Settings:
    if config_file is None:
        config_file = Path.cwd() / CONFIG_FILE_NAME
    config_file = Path(config_file)
    if not config_file.exists():
        return Settings()
    with config_file.open("rb") as f:
        try:
            config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise DatabaseConfigurationException(
                f"Invalid configuration file {config_file}: {e}"
            ) from e
    return Settings.from_dict(config)


def get_db_uri_from_config(config_file: Optional[Path] = None):
    return load_settings(config_file).db_uri

from __future__ import annotations

from enum import Enum

"""Data source codes and their staging tables.

Each uploaded file of a run belongs to exactly one data source. The code
decides the staging table the rows land in and whether the sanitizer uses
the dedicated column layout or the generic JSON layout.
"""

__all__ = [
    "DataSourceCode",
    "STAGING_TABLES",
    "UnknownDataSourceError",
]


class UnknownDataSourceError(ValueError):
    """Raised when a string does not name a known data source."""


class DataSourceCode(str, Enum):
    BASCAR = "BASCAR"
    BAPRPO = "BAPRPO"
    DATPOL = "DATPOL"
    PAGAPL = "PAGAPL"
    PAGPLA = "PAGPLA"
    DETTRA = "DETTRA"
    BASACT = "BASACT"
    PAGLOG = "PAGLOG"

    @classmethod
    def parse(cls, value: str | DataSourceCode) -> DataSourceCode:
        if isinstance(value, DataSourceCode):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as e:
            raise UnknownDataSourceError(f"unknown data source: {value!r}") from e

    @property
    def table_name(self) -> str:
        return STAGING_TABLES[self]


# Static map, checked for completeness by tests
STAGING_TABLES: dict[DataSourceCode, str] = {
    DataSourceCode.BASCAR: "data_source_bascar",
    DataSourceCode.BAPRPO: "data_source_baprpo",
    DataSourceCode.DATPOL: "data_source_datpol",
    DataSourceCode.PAGAPL: "data_source_pagapl",
    DataSourceCode.PAGPLA: "data_source_pagpla",
    DataSourceCode.DETTRA: "data_source_dettra",
    DataSourceCode.BASACT: "data_source_basact",
    DataSourceCode.PAGLOG: "data_source_paglog",
}

"""Database-side introspection: catalogs, statement description and decoder sampling."""
from .catalog import AsyncpgCatalogSource, CatalogIntrospector, CatalogSource
from .describer import AsyncpgPreparer, PreparedStatementInfo, StatementDescriber, StatementPreparer
from .type_samples import DEFAULT_SAMPLE_VALUES, UNKNOWN_HOST_TYPE, TypeSampleResolver

__all__ = [
    "AsyncpgCatalogSource",
    "AsyncpgPreparer",
    "CatalogIntrospector",
    "CatalogSource",
    "DEFAULT_SAMPLE_VALUES",
    "PreparedStatementInfo",
    "StatementDescriber",
    "StatementPreparer",
    "TypeSampleResolver",
    "UNKNOWN_HOST_TYPE",
]

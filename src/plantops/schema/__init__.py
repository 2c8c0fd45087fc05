"""Runtime schema discovery for the structured resource."""

from plantops.schema.odata import ODataClient, ResourceTransportError
from plantops.schema.provider import (
    EntitySetSchema,
    ODataMetadataProvider,
    PropertySchema,
    SchemaCache,
    SchemaFetchError,
    SchemaMap,
    SchemaProvider,
    StaticSchemaProvider,
)

__all__ = [
    "EntitySetSchema",
    "ODataClient",
    "ODataMetadataProvider",
    "PropertySchema",
    "ResourceTransportError",
    "SchemaCache",
    "SchemaFetchError",
    "SchemaMap",
    "SchemaProvider",
    "StaticSchemaProvider",
]
